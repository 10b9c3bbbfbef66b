"""Core watching logic – orchestrates Gallery list → image downloads → disk."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait

from .api import DCInsideAPI, GallerySource
from .config import WatcherConfig
from .errors import FetchError, GallwatchError
from .models import ArticleResult, ArticleStatus, ImageOutcome, ListItem
from .storage import DiskStorage, ReconcileReport, normalize_extension, sha256, storage_name
from .store import DigestStore, SeenRegistry

logger = logging.getLogger("gallwatch.core")


class _ArticleTally:
    """Outcome counts for one article, written by its image tasks."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.all_succeeded = True
        self.stored = 0
        self.duplicates = 0
        self.failed = 0

    def record(self, outcome: ImageOutcome | None) -> None:
        with self._lock:
            if outcome is ImageOutcome.STORED:
                self.stored += 1
            elif outcome is ImageOutcome.DUPLICATE:
                self.duplicates += 1
            else:
                self.failed += 1
                self.all_succeeded = False


class Harvester:
    """Polls one gallery and stores every image it finds exactly once."""

    def __init__(self, cfg: WatcherConfig, source: GallerySource | None = None) -> None:
        self.cfg = cfg
        self._owns_source = source is None
        self.source: GallerySource = source if source is not None else DCInsideAPI(cfg.dcinside)
        self.storage = DiskStorage(cfg.gallery_dir)
        self.digests = DigestStore()
        self.seen = SeenRegistry()
        self.reconcile_report: ReconcileReport | None = None

        # Separate pools: an article waiting on its images never holds an image worker.
        self._articles = ThreadPoolExecutor(max_workers=cfg.article_workers, thread_name_prefix="article")
        self._images = ThreadPoolExecutor(max_workers=cfg.image_workers, thread_name_prefix="image")
        self._pending: list[Future[ArticleResult]] = []
        self._stop = threading.Event()
        # Stats, only touched from the polling thread
        self.stats = {"polls": 0, "articles": 0, "images": 0, "duplicates": 0, "skipped": 0, "retries": 0, "errors": 0}

    # ── startup ──────────────────────────────────────────────────

    def reconcile(self) -> ReconcileReport:
        """Create the gallery directory and seed the digest store from it."""
        self.storage.ensure_directory()
        self.reconcile_report = self.storage.reconcile(self.digests, rehash=self.cfg.rehash)
        return self.reconcile_report

    # ── image handling ───────────────────────────────────────────

    def process_image(self, url: str, *, referer: str | None = None) -> ImageOutcome:
        """Download one image and store it unless its digest is already known.

        Raises FetchError or PersistenceError; in both cases the digest store
        is left untouched.
        """
        image = self.source.download_image(url, referer=referer)
        digest = sha256(image.data)

        if self.digests.contains(digest) or not self.digests.claim(digest):
            logger.debug("Image %s already stored (hash=%s)", image.filename, digest[:12])
            return ImageOutcome.DUPLICATE

        # claimed: check, write and insert happen once per digest
        name = storage_name(digest, normalize_extension(image.filename))
        try:
            created = self.storage.write(name, image.data)
            # the file is on disk either way, so the digest is now known
            self.digests.insert(digest)
        finally:
            self.digests.release(digest)
        if not created:
            return ImageOutcome.DUPLICATE
        logger.info("Stored %s as %s", image.filename, name)
        return ImageOutcome.STORED

    def _image_task(self, item: ListItem, url: str, tally: _ArticleTally) -> None:
        outcome: ImageOutcome | None = None
        try:
            outcome = self.process_image(url, referer=item.url)
        except GallwatchError as exc:
            logger.warning("#%s image %s failed: %s", item.identifier, url, exc)
        except Exception:
            logger.exception("#%s image %s crashed", item.identifier, url)
        tally.record(outcome)

    # ── article handling ─────────────────────────────────────────

    def process_article(self, item: ListItem) -> ArticleResult:
        """Download every image of an article; mark it seen only if none failed."""
        try:
            urls = self.source.get_image_urls(item)
        except FetchError as exc:
            logger.warning("#%s could not be fetched: %s", item.identifier, exc)
            return ArticleResult(item.identifier, ArticleStatus.UNRESOLVED)

        if self.seen.contains(item.identifier):
            logger.debug("#%s already seen", item.identifier)
            return ArticleResult(item.identifier, ArticleStatus.ALREADY_SEEN)

        logger.info("#%s %s: %d image(s)", item.identifier, item.subject, len(urls))
        tally = _ArticleTally()
        futures = [self._images.submit(self._image_task, item, url, tally) for url in urls]
        wait(futures)

        if not tally.all_succeeded:
            logger.warning(
                "#%s incomplete (%d failed), will retry on a later poll", item.identifier, tally.failed
            )
            return ArticleResult(
                item.identifier, ArticleStatus.FAILED,
                stored=tally.stored, duplicates=tally.duplicates, failed=tally.failed,
            )

        self.seen.insert(item.identifier)
        logger.info(
            "#%s done: %d stored, %d duplicate", item.identifier, tally.stored, tally.duplicates
        )
        return ArticleResult(
            item.identifier, ArticleStatus.COMMITTED,
            stored=tally.stored, duplicates=tally.duplicates,
        )

    def _article_task(self, item: ListItem) -> ArticleResult:
        try:
            return self.process_article(item)
        except Exception:
            logger.exception("#%s processing crashed", item.identifier)
            return ArticleResult(item.identifier, ArticleStatus.FAILED)

    # ── dispatch / polling ───────────────────────────────────────

    def dispatch(self, items: list[ListItem]) -> list[Future[ArticleResult]]:
        """Start one article task per item that carries an image.  Does not wait."""
        futures = [self._articles.submit(self._article_task, item) for item in items if item.has_image]
        self._pending.extend(futures)
        return futures

    def poll_once(self) -> list[Future[ArticleResult]]:
        """Fetch page 1 of the gallery and dispatch it.  A failed fetch skips this tick."""
        self.stats["polls"] += 1
        try:
            items = self.source.get_list(self.cfg.gallery_id, 1)
        except FetchError as exc:
            logger.warning("List fetch for %s failed: %s", self.cfg.gallery_id, exc)
            self.stats["errors"] += 1
            return []
        logger.debug("Poll %d: %d items", self.stats["polls"], len(items))
        return self.dispatch(items)

    def _reap(self) -> None:
        """Fold finished article results into stats."""
        still_running: list[Future[ArticleResult]] = []
        for fut in self._pending:
            if not fut.done():
                still_running.append(fut)
                continue
            result = fut.result()
            self.stats["images"] += result.stored
            self.stats["duplicates"] += result.duplicates
            self.stats["errors"] += result.failed
            if result.status is ArticleStatus.COMMITTED:
                self.stats["articles"] += 1
            elif result.status is ArticleStatus.ALREADY_SEEN:
                self.stats["skipped"] += 1
            elif result.status is ArticleStatus.FAILED:
                self.stats["retries"] += 1
            else:
                self.stats["errors"] += 1
        self._pending = still_running

    def watch(self, *, once: bool = False) -> None:
        """Poll every ``cfg.interval`` seconds until :meth:`stop` is called.

        The first poll happens immediately.  With *once* a single poll is made
        and its work drained before returning.
        """
        if self.reconcile_report is None:
            self.reconcile()
        logger.info(
            "Watching gallery %s every %.1fs → %s", self.cfg.gallery_id, self.cfg.interval, self.storage.directory
        )
        next_tick = time.monotonic()
        while not self._stop.is_set():
            self._reap()
            self.poll_once()
            if once:
                break
            next_tick += self.cfg.interval
            delay = next_tick - time.monotonic()
            if delay < 0:
                # fell behind; drop the missed ticks
                next_tick = time.monotonic()
                delay = 0
            self._stop.wait(delay)
        self.drain()

    def stop(self) -> None:
        self._stop.set()

    def drain(self) -> None:
        """Wait for every dispatched article to finish."""
        wait(list(self._pending))
        self._reap()

    # ── lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        self.stop()
        self._articles.shutdown(wait=True)
        self._images.shutdown(wait=True)
        self._reap()
        if self._owns_source and isinstance(self.source, DCInsideAPI):
            self.source.close()

    def __enter__(self) -> Harvester:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
