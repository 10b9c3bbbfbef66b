"""Configuration and environment settings for the gallery watcher."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import parse_qs, urlparse

from .errors import ConfigurationError

_BOARD_PATH_RE = re.compile(r"/board/([A-Za-z0-9_]+)")
_GALLERY_ID_RE = re.compile(r"^[A-Za-z0-9_]+$")


def _optional_float(value: str | None) -> float | None:
    if value is None or value.strip() == "":
        return None
    return float(value)


@dataclass(frozen=True)
class DCInsideConfig:
    """DCInside mobile site settings.  ``timeout=None`` waits forever."""
    base_url: str = "https://m.dcinside.com"
    user_agent: str = (
        "Mozilla/5.0 (Linux; Android 13) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0 Mobile Safari/537.36"
    )
    timeout: float | None = None

    @classmethod
    def from_env(cls) -> DCInsideConfig:
        return cls(
            base_url=os.getenv("DCINSIDE_BASE_URL", "https://m.dcinside.com"),
            timeout=_optional_float(os.getenv("GALLWATCH_TIMEOUT")),
        )


@dataclass(frozen=True)
class WatcherConfig:
    gallery_id: str
    target_dir: Path = Path("image")
    interval: float = 3.0
    article_workers: int = 32
    image_workers: int = 64
    rehash: bool = False
    dcinside: DCInsideConfig = field(default_factory=DCInsideConfig.from_env)

    @property
    def gallery_dir(self) -> Path:
        return self.target_dir / self.gallery_id


def gallery_id_from_url(url: str) -> str:
    """Extract the gallery id from a list URL.

    Both the legacy ``list.php?id=<gallery>`` form and the current
    ``/board/<gallery>`` form are understood.
    """
    parsed = urlparse(url)
    ids = parse_qs(parsed.query).get("id")
    if ids and ids[0]:
        return ids[0]
    m = _BOARD_PATH_RE.search(parsed.path)
    if m:
        return m.group(1)
    raise ConfigurationError(f"cannot find a gallery id in {url!r}")


def resolve_gallery_id(gallery: str | None, url: str | None) -> str:
    """Return the gallery id from exactly one of *gallery* or *url*."""
    if gallery and url:
        raise ConfigurationError("give either a gallery id or a list URL, not both")
    gallery_id = gallery_id_from_url(url) if url else gallery
    if not gallery_id:
        raise ConfigurationError("no gallery id or list URL given")
    if not _GALLERY_ID_RE.match(gallery_id):
        raise ConfigurationError(f"invalid gallery id {gallery_id!r}")
    return gallery_id
