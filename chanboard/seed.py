"""
Boards created at startup. Seeding is insert-if-absent by code.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class BoardSeed:
    code: str
    name: str
    description: str


SEED_BOARDS: tuple[BoardSeed, ...] = (
    BoardSeed("b", "Random", "Completely random content"),
    BoardSeed("ykt", "Yakutsk", "Local news and discussion"),
    BoardSeed("pol", "Politics", "Political discussion"),
    BoardSeed("a", "Anime", "Anime and manga"),
    BoardSeed("g", "Technology", "Computers and programming"),
    BoardSeed("mu", "Music", "Music and audio"),
    BoardSeed("tv", "Television", "Movies and TV series"),
    BoardSeed("v", "Video Games", "Games and consoles"),
)
