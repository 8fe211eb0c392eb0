import unittest
from datetime import datetime, timedelta

from sqlalchemy import select, text

from chanboard.db import (
    SqlDbClient,
    StorageError,
    StorageErrorKind,
    threads_table,
)
from chanboard.moderation import hash_password
from chanboard.seed import SEED_BOARDS


class SteppingClock:
    """Returns a strictly increasing timestamp on every call."""

    def __init__(self, start=datetime(2024, 1, 1, 12, 0, 0), step=timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self):
        self.current += self.step
        return self.current


class SqlDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the SQL client logic.
    """

    def setUp(self):
        self.clock = SteppingClock()
        self.db = SqlDbClient("sqlite+pysqlite:///:memory:", clock=self.clock)
        self.db.seed_boards(SEED_BOARDS)
        self.board = self.db.get_board_by_code("b")

    def tearDown(self):
        self.db.close()

    def _thread(self, text="hello world", board_id=None):
        return self.db.insert_thread(
            board_id or self.board.id,
            subject=None,
            name="Anonymous",
            text=text,
            password_hash=None,
            image_url=None,
            ip_address="127.0.0.1",
        )

    def _post(self, thread_id, password=None, text="reply"):
        return self.db.add_post_and_bump(
            thread_id,
            name="Anonymous",
            text=text,
            password_hash=hash_password(password),
            image_url=None,
            ip_address="127.0.0.1",
        )

    def test_seed_is_idempotent(self):
        self.assertEqual(self.db.seed_boards(SEED_BOARDS), 0)
        boards = self.db.list_boards()
        self.assertEqual([b.code for b in boards], [s.code for s in SEED_BOARDS])

    def test_get_board_lookups(self):
        self.assertEqual(self.db.get_board(self.board.id).code, "b")
        self.assertIsNone(self.db.get_board_by_code("nope"))
        self.assertIsNone(self.db.get_board(9999))

    def test_new_thread_bump_equals_created(self):
        thread_id = self._thread()
        self.assertEqual(thread_id, 1)
        thread = self.db.get_thread(thread_id)
        self.assertEqual(thread.bump_time, thread.created_at)
        self.assertEqual(thread.reply_count, 0)
        self.assertFalse(thread.is_sticky)
        self.assertFalse(thread.is_locked)

    def test_post_bumps_and_counts(self):
        thread_id = self._thread()
        before = self.db.get_thread(thread_id)
        post_id = self._post(thread_id)
        after = self.db.get_thread(thread_id)
        self.assertEqual(post_id, 1)
        self.assertEqual(after.reply_count, 1)
        self.assertGreater(after.bump_time, before.bump_time)
        self.assertEqual(after.created_at, before.created_at)

    def test_bump_time_never_moves_backwards(self):
        thread_id = self._thread()
        self._post(thread_id)
        bumped = self.db.get_thread(thread_id).bump_time
        self.clock.current -= timedelta(hours=1)
        self._post(thread_id)
        thread = self.db.get_thread(thread_id)
        self.assertEqual(thread.bump_time, bumped)
        self.assertEqual(thread.reply_count, 2)

    def test_reply_count_ignores_deletions(self):
        thread_id = self._thread()
        post_ids = [self._post(thread_id, password="pw") for _ in range(3)]
        for post_id in post_ids:
            self.assertEqual(self.db.delete_post(post_id), 1)
        self.assertEqual(self.db.get_thread(thread_id).reply_count, 3)
        self.assertEqual(self.db.list_thread_posts(thread_id), [])

    def test_thread_posts_ordered_and_limited(self):
        thread_id = self._thread()
        for i in range(5):
            self._post(thread_id, text=f"reply {i}")
        posts = self.db.list_thread_posts(thread_id, limit=3)
        self.assertEqual([p.text for p in posts], ["reply 0", "reply 1", "reply 2"])

    def test_board_listing_sticky_and_limit(self):
        thread_ids = [self._thread(text=f"thread {i}") for i in range(25)]
        self.db.set_thread_flags(thread_ids[0], is_sticky=True)
        self.db.set_thread_flags(thread_ids[1], is_sticky=True)

        listing = self.db.list_board_threads(self.board.id)
        self.assertEqual(len(listing), 22)
        self.assertEqual([t.id for t in listing[:2]], [thread_ids[1], thread_ids[0]])
        self.assertFalse(any(t.is_sticky for t in listing[2:]))
        self.assertEqual(listing[2].id, thread_ids[-1])

    def test_bumped_thread_moves_to_top(self):
        thread_ids = [self._thread(text=f"thread {i}") for i in range(21)]
        listing = [t.id for t in self.db.list_board_threads(self.board.id)]
        self.assertNotIn(thread_ids[0], listing)

        self._post(thread_ids[0])
        listing = [t.id for t in self.db.list_board_threads(self.board.id)]
        self.assertEqual(listing[0], thread_ids[0])
        self.assertNotIn(thread_ids[1], listing)
        self.assertEqual(len(listing), 20)

    def test_listing_is_per_board(self):
        other = self.db.get_board_by_code("g")
        self._thread(board_id=other.id)
        self.assertEqual(self.db.list_board_threads(self.board.id), [])
        self.assertEqual(len(self.db.list_board_threads(other.id)), 1)

    def test_recent_posts_join_board_and_subject(self):
        thread_id = self.db.insert_thread(
            self.board.id,
            subject="Topic",
            name="Anonymous",
            text="hello world",
            password_hash=None,
            image_url=None,
            ip_address=None,
        )
        self._post(thread_id, text="older")
        self._post(thread_id, text="newer")
        recent = self.db.list_recent_posts(limit=1)
        self.assertEqual(len(recent), 1)
        self.assertEqual(recent[0].text, "newer")
        self.assertEqual(recent[0].board_code, "b")
        self.assertEqual(recent[0].thread_subject, "Topic")

    def test_count_stats(self):
        thread_id = self._thread()
        self._post(thread_id)
        stats = self.db.count_stats()
        self.assertEqual(stats.total_threads, 1)
        self.assertEqual(stats.total_posts, 1)
        self.assertEqual(stats.total_boards, len(SEED_BOARDS))

    def test_set_thread_flags_unknown_thread(self):
        self.assertEqual(self.db.set_thread_flags(42, is_locked=True), 0)
        self.assertEqual(self.db.set_thread_flags(42), 0)

    def test_foreign_key_violation_is_constraint_error(self):
        with self.assertRaises(StorageError) as ctx:
            self._thread(board_id=9999)
        self.assertEqual(ctx.exception.kind, StorageErrorKind.CONSTRAINT)

    def test_post_on_missing_thread_writes_nothing(self):
        self.assertIsNone(self._post(9999))
        self.assertEqual(self.db.count_stats().total_posts, 0)

    def test_locked_thread_is_neither_bumped_nor_posted_to(self):
        thread_id = self._thread()
        before = self.db.get_thread(thread_id)
        self.db.set_thread_flags(thread_id, is_locked=True)
        self.assertIsNone(self._post(thread_id))
        after = self.db.get_thread(thread_id)
        self.assertEqual(after.reply_count, 0)
        self.assertEqual(after.bump_time, before.bump_time)
        self.assertEqual(self.db.list_thread_posts(thread_id), [])

    def test_primitives(self):
        thread_id = self._thread()
        rows = self.db.fetch_all(select(threads_table.c.id))
        self.assertEqual([row.id for row in rows], [thread_id])
        self.assertIsNone(
            self.db.fetch_one(select(threads_table).where(threads_table.c.id == 999))
        )

    def test_malformed_statement(self):
        with self.assertRaises(StorageError) as ctx:
            self.db.fetch_all(text("SELECT * FROM missing_table"))
        self.assertIn(
            ctx.exception.kind,
            (StorageErrorKind.MALFORMED, StorageErrorKind.CONNECTIVITY),
        )


if __name__ == "__main__":
    unittest.main()
