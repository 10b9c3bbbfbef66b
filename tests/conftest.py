"""
Pytest configuration and shared fixtures for the gallery watcher tests.
"""

from __future__ import annotations

import hashlib
import threading
from pathlib import Path

import pytest

from gallwatch.config import DCInsideConfig, WatcherConfig
from gallwatch.errors import FetchError
from gallwatch.harvester import Harvester
from gallwatch.models import FetchedImage, ListItem


def digest_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FakeGallery:
    """In-memory stand-in for the DCInside client.

    Values in ``pages``, ``articles`` and ``images`` may be exceptions, which
    are raised instead of returned.
    """

    def __init__(self) -> None:
        self.pages: list[ListItem] | Exception = []
        self.articles: dict[str, list[str] | Exception] = {}
        self.images: dict[str, FetchedImage | Exception] = {}
        self.list_calls = 0
        self.article_calls: list[str] = []
        self.image_calls: list[str] = []
        self.download_hook = None
        self._lock = threading.Lock()

    def add_article(self, identifier: str, images: dict[str, tuple[bytes, str]], *, subject: str = "") -> ListItem:
        item = ListItem(
            identifier=identifier,
            subject=subject or f"article {identifier}",
            has_image=bool(images),
            url=f"https://gallery.test/board/foo/{identifier}",
        )
        self.articles[identifier] = list(images)
        for url, (data, filename) in images.items():
            self.images[url] = FetchedImage(data=data, filename=filename)
        return item

    def get_list(self, gallery_id: str, page: int = 1) -> list[ListItem]:
        with self._lock:
            self.list_calls += 1
        if isinstance(self.pages, Exception):
            raise self.pages
        return list(self.pages)

    def get_image_urls(self, item: ListItem) -> list[str]:
        with self._lock:
            self.article_calls.append(item.identifier)
        urls = self.articles.get(item.identifier)
        if urls is None:
            raise FetchError(f"no article {item.identifier}")
        if isinstance(urls, Exception):
            raise urls
        return list(urls)

    def download_image(self, url: str, *, referer: str | None = None) -> FetchedImage:
        with self._lock:
            self.image_calls.append(url)
        if self.download_hook is not None:
            self.download_hook(url)
        image = self.images.get(url)
        if image is None:
            raise FetchError(f"404: {url}")
        if isinstance(image, Exception):
            raise image
        return image


@pytest.fixture
def gallery() -> FakeGallery:
    return FakeGallery()


@pytest.fixture
def watcher_cfg(tmp_path: Path) -> WatcherConfig:
    return WatcherConfig(
        gallery_id="foo",
        target_dir=tmp_path / "image",
        interval=0.05,
        article_workers=4,
        image_workers=8,
        dcinside=DCInsideConfig(),
    )


@pytest.fixture
def harvester(watcher_cfg: WatcherConfig, gallery: FakeGallery):
    h = Harvester(watcher_cfg, source=gallery)
    h.reconcile()
    yield h
    h.close()
