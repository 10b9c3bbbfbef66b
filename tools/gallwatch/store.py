"""In-memory identity sets shared by every download task."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger("gallwatch.store")


class ReadWriteLock:
    """Many concurrent readers, or one writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            # readers yield to waiting writers
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class _ConcurrentSet:
    """Insert-only string set.  The backing container never leaves the class."""

    kind = "entry"

    def __init__(self) -> None:
        self._items: set[str] = set()
        self._lock = ReadWriteLock()

    def contains(self, key: str) -> bool:
        with self._lock.read():
            return key in self._items

    def insert(self, key: str) -> None:
        with self._lock.write():
            if key in self._items:
                return
            self._items.add(key)
        logger.debug("Registered %s %s", self.kind, key)

    def snapshot(self) -> frozenset[str]:
        with self._lock.read():
            return frozenset(self._items)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.contains(key)

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._items)


class DigestStore(_ConcurrentSet):
    """Digests of every image persisted in the gallery directory.

    A digest is inserted only after the file named by it has been written.
    """

    kind = "digest"

    def __init__(self) -> None:
        super().__init__()
        self._claims: set[str] = set()
        self._claim_cond = threading.Condition(threading.Lock())

    def claim(self, digest: str) -> bool:
        """Reserve *digest* for writing.

        Blocks while another task holds the claim.  Returns False when the
        digest is (or has meanwhile become) known; otherwise the caller owns
        the claim and must :meth:`release` it.
        """
        with self._claim_cond:
            while digest in self._claims:
                self._claim_cond.wait()
            if self.contains(digest):
                return False
            self._claims.add(digest)
            return True

    def release(self, digest: str) -> None:
        with self._claim_cond:
            self._claims.discard(digest)
            self._claim_cond.notify_all()


class SeenRegistry(_ConcurrentSet):
    """Article identifiers whose images have all been stored or found duplicate.

    Not persisted; after a restart articles are reprocessed and their images
    resolve to duplicates through :class:`DigestStore`.
    """

    kind = "article"
