import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from chanboard.app import create_app
from chanboard.config import Settings, get_settings
from chanboard.db import InMemoryDbClient, SqlDbClient
from chanboard.dependencies import get_db_client, get_rate_limiter
from chanboard.ratelimit import InMemoryRateLimiter
from chanboard.seed import SEED_BOARDS


class ForumApiTests(unittest.TestCase):
    def make_db(self):
        return InMemoryDbClient()

    def setUp(self):
        self.db = self.make_db()
        self.addCleanup(self.db.close)
        self.db.seed_boards(SEED_BOARDS)
        self.limiter = InMemoryRateLimiter(points=20, window_seconds=60)
        self.app = create_app()
        self.app.dependency_overrides[get_db_client] = lambda: self.db
        self.app.dependency_overrides[get_rate_limiter] = lambda: self.limiter
        self.client = TestClient(self.app)

    def _create_thread(self, **overrides):
        payload = {"board": "b", "text": "hello world"}
        payload.update(overrides)
        return self.client.post("/api/thread/create", json=payload)

    def test_list_boards(self):
        response = self.client.get("/api/boards")
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload["success"])
        self.assertEqual([b["code"] for b in payload["data"]], [s.code for s in SEED_BOARDS])

    def test_create_thread_reply_and_view(self):
        response = self._create_thread(subject="Hi", password="pw")
        self.assertEqual(response.status_code, 200)
        created = response.json()
        self.assertEqual(created["threadId"], 1)
        self.assertEqual(created["board"], "b")
        self.assertEqual(created["message"], "Thread created")

        reply = self.client.post(
            "/api/post/create", json={"thread_id": 1, "text": "first reply"}
        )
        self.assertEqual(reply.status_code, 200)
        self.assertEqual(reply.json()["postId"], 1)

        view = self.client.get("/api/thread/1")
        self.assertEqual(view.status_code, 200)
        data = view.json()["data"]
        self.assertEqual(data["thread"]["reply_count"], 1)
        self.assertEqual(data["thread"]["subject"], "Hi")
        self.assertNotIn("password_hash", data["thread"])
        self.assertNotIn("ip_address", data["thread"])
        self.assertEqual([p["text"] for p in data["posts"]], ["first reply"])
        self.assertEqual(data["board"]["code"], "b")

    def test_board_page(self):
        self._create_thread()
        response = self.client.get("/api/board/b")
        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["board"]["code"], "b")
        self.assertEqual(len(data["threads"]), 1)

    def test_unknown_board_and_thread(self):
        self.assertEqual(self.client.get("/api/board/zzz").status_code, 404)
        response = self.client.get("/api/thread/99")
        self.assertEqual(response.status_code, 404)
        self.assertIn("error", response.json())

    def test_ids_out_of_range_are_rejected(self):
        huge = 10**30
        responses = [
            self.client.get(f"/api/thread/{huge}"),
            self.client.get("/api/thread/0"),
            self.client.post(
                "/api/post/create", json={"thread_id": huge, "text": "reply"}
            ),
            self.client.post(
                "/api/post/delete", json={"post_id": huge, "password": "pw"}
            ),
            self.client.post("/api/post/delete", json={"post_id": -1, "password": "pw"}),
        ]
        for response in responses:
            self.assertEqual(response.status_code, 400)
            self.assertIn("error", response.json())

    def test_thread_validation(self):
        response = self._create_thread(text="hey")
        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.json())

        response = self.client.post("/api/thread/create", json={"text": "hello world"})
        self.assertEqual(response.status_code, 400)

    def test_locked_thread(self):
        self._create_thread()
        self.db.set_thread_flags(1, is_locked=True)
        response = self.client.post(
            "/api/post/create", json={"thread_id": 1, "text": "reply"}
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.db.get_thread(1).reply_count, 0)

    def test_delete_post(self):
        self._create_thread()
        self.client.post(
            "/api/post/create", json={"thread_id": 1, "text": "reply", "password": "pw"}
        )

        wrong = self.client.post("/api/post/delete", json={"post_id": 1, "password": "x"})
        missing = self.client.post("/api/post/delete", json={"post_id": 9, "password": "pw"})
        self.assertEqual(wrong.status_code, missing.status_code)
        self.assertEqual(wrong.json(), missing.json())

        no_password = self.client.post("/api/post/delete", json={"post_id": 1})
        self.assertEqual(no_password.status_code, 400)

        ok = self.client.post("/api/post/delete", json={"post_id": 1, "password": "pw"})
        self.assertEqual(ok.status_code, 200)
        self.assertTrue(ok.json()["success"])
        self.assertEqual(self.db.get_thread(1).reply_count, 1)

    def test_rate_limit_on_mutations(self):
        self.limiter.points = 3
        statuses = [self._create_thread().status_code for _ in range(3)]
        self.assertEqual(statuses, [200, 200, 200])

        response = self.client.post(
            "/api/post/create", json={"thread_id": 1, "text": "reply"}
        )
        self.assertEqual(response.status_code, 429)
        self.assertEqual(self.db.count_stats().total_posts, 0)

        # Reads are not limited.
        self.assertEqual(self.client.get("/api/boards").status_code, 200)

    def test_recent_posts_and_stats(self):
        self._create_thread(subject="Topic")
        for i in range(3):
            self.client.post(
                "/api/post/create", json={"thread_id": 1, "text": f"reply {i}"}
            )

        recent = self.client.get("/api/posts/recent", params={"limit": 2})
        self.assertEqual(recent.status_code, 200)
        posts = recent.json()["data"]
        self.assertEqual(len(posts), 2)
        self.assertEqual(posts[0]["board_code"], "b")
        self.assertEqual(posts[0]["thread_subject"], "Topic")

        stats = self.client.get("/api/stats").json()["data"]
        self.assertEqual(stats["total_threads"], 1)
        self.assertEqual(stats["total_posts"], 3)
        self.assertEqual(stats["total_boards"], len(SEED_BOARDS))

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")
        self.assertIn("environment", response.json())


class SqlForumApiTests(ForumApiTests):
    def make_db(self):
        return SqlDbClient("sqlite+pysqlite:///:memory:")


class BackupEndpointTests(unittest.TestCase):
    def _client(self, settings: Settings) -> TestClient:
        app = create_app()
        app.dependency_overrides[get_settings] = lambda: settings
        return TestClient(app)

    def test_forbidden_in_production(self):
        client = self._client(Settings(environment="production"))
        self.assertEqual(client.get("/api/backup").status_code, 403)

    def test_missing_database_file(self):
        client = self._client(
            Settings(
                environment="development",
                use_in_memory_backends=False,
                database_url="sqlite+pysqlite:////nonexistent/dir/forum.db",
            )
        )
        self.assertEqual(client.get("/api/backup").status_code, 404)

    def test_downloads_sqlite_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "forum.db"
            path.write_bytes(b"SQLite format 3\x00")
            settings = Settings(
                environment="development",
                use_in_memory_backends=False,
                database_url=f"sqlite+pysqlite:///{path}",
            )
            client = self._client(settings)
            response = client.get("/api/backup")
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.content, b"SQLite format 3\x00")
            self.assertIn("chanboard-backup.db", response.headers["content-disposition"])


if __name__ == "__main__":
    unittest.main()
