"""Plain data types passed between the client and the pipeline."""

from __future__ import annotations

import enum
from dataclasses import dataclass


@dataclass(frozen=True)
class ListItem:
    """One row of a gallery list page."""
    identifier: str
    subject: str
    has_image: bool
    url: str


@dataclass(frozen=True)
class FetchedImage:
    data: bytes
    filename: str


class ImageOutcome(enum.Enum):
    STORED = "stored"
    DUPLICATE = "duplicate"


class ArticleStatus(enum.Enum):
    COMMITTED = "committed"
    ALREADY_SEEN = "already_seen"
    FAILED = "failed"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class ArticleResult:
    identifier: str
    status: ArticleStatus
    stored: int = 0
    duplicates: int = 0
    failed: int = 0
