"""Content-addressed disk storage – write images and reconcile the gallery directory."""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .errors import PersistenceError, ReconciliationError
from .store import DigestStore

logger = logging.getLogger("gallwatch.storage")

# SHA-256 hex digest
DIGEST_LENGTH = 64
_HEX = frozenset("0123456789abcdef")

PARTIAL_SUFFIX = ".part"
CHUNK_SIZE = 1 << 16

# Map file extension → MIME type
MIME_MAP: dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webm": "video/webm",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".mp4": "video/mp4",
}

# First entry wins, so image/jpeg → .jpg
EXTENSION_FOR_MIME: dict[str, str] = {}
for _ext, _mime in MIME_MAP.items():
    EXTENSION_FOR_MIME.setdefault(_mime, _ext)


# ── naming helpers ───────────────────────────────────────────────

def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def file_sha256(path: Path) -> str:
    hasher = hashlib.sha256()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def is_digest(name: str) -> bool:
    return len(name) == DIGEST_LENGTH and set(name) <= _HEX


def split_name(filename: str) -> tuple[str, str]:
    """Split *filename* at its last ``.`` into ``(name, extension)``."""
    name, dot, ext = filename.rpartition(".")
    if not dot:
        return filename, ""
    return name, ext


def normalize_extension(filename: str) -> str:
    """Lowercased extension of a suggested filename, without the dot.

    >>> normalize_extension("Foo.JPG")
    'jpg'
    """
    base = filename.strip().strip('"').replace("\\", "/").rsplit("/", 1)[-1]
    name, ext = split_name(base)
    if not name:
        return ""
    return ext.strip().lower()


def storage_name(digest: str, ext: str) -> str:
    return f"{digest}.{ext}" if ext else digest


@dataclass
class ReconcileReport:
    scanned: int = 0
    trusted: int = 0
    renamed: int = 0
    removed: int = 0
    stale: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return dict(self.__dict__)


class DiskStorage:
    """Flat directory of ``<digest>.<ext>`` files for one gallery."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        return self.directory / name

    # ── write ────────────────────────────────────────────────────

    def write(self, name: str, data: bytes) -> bool:
        """Persist *data* as *name*.

        The bytes go to a hidden temp file first, which is then hard-linked
        into place; a name that already exists is never overwritten.
        Returns False when *name* already existed.
        """
        final = self.path_for(name)
        try:
            fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=".", suffix=PARTIAL_SUFFIX)
        except OSError as exc:
            raise PersistenceError(f"cannot create temp file in {self.directory}: {exc}") from exc
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.link(tmp, final)
        except FileExistsError:
            logger.debug("%s appeared concurrently", name)
            return False
        except OSError as exc:
            raise PersistenceError(f"cannot write {final}: {exc}") from exc
        finally:
            try:
                os.unlink(tmp)
            except OSError as exc:
                logger.warning("Could not remove temp file %s: %s", tmp, exc)
        logger.debug("Wrote %s (%d bytes)", final, len(data))
        return True

    # ── reconciliation ──────────────────────────────────────────

    def reconcile(self, store: DigestStore, *, rehash: bool = False) -> ReconcileReport:
        """Align filenames with content digests and seed *store*.

        Files whose stem already looks like a digest are trusted unless
        *rehash* is set; only an upper-case extension gets lowercased.
        Anything else is hashed and renamed to ``<digest>.<ext>``.  Per-file
        failures are logged and skipped.
        """
        report = ReconcileReport()
        if not self.directory.is_dir():
            logger.info("Nothing to reconcile, %s does not exist yet", self.directory)
            return report

        for entry in sorted(self.directory.iterdir()):
            if entry.name.startswith("."):
                if entry.name.endswith(PARTIAL_SUFFIX):
                    self._remove_stale(entry, report)
                continue
            if not entry.is_file():
                continue
            report.scanned += 1
            try:
                digest = self._reconcile_file(entry, report, rehash=rehash)
            except ReconciliationError as exc:
                logger.warning("Skipping %s: %s", entry.name, exc)
                report.failed += 1
                continue
            store.insert(digest)

        logger.info(
            "Reconciled %s: %d files, %d renamed, %d removed, %d failed",
            self.directory, report.scanned, report.renamed, report.removed, report.failed,
        )
        return report

    def _reconcile_file(self, entry: Path, report: ReconcileReport, *, rehash: bool) -> str:
        name, ext = split_name(entry.name)
        if is_digest(name) and not rehash:
            digest = name
        else:
            try:
                digest = file_sha256(entry)
            except OSError as exc:
                raise ReconciliationError(f"cannot hash: {exc}") from exc

        if digest == name and ext == ext.lower():
            report.trusted += 1
            return digest

        self._move(entry, self.path_for(storage_name(digest, ext.lower())), report)
        return digest

    def _move(self, entry: Path, target: Path, report: ReconcileReport) -> None:
        try:
            # a case-insensitive filesystem reports a case-only rename target as existing
            if target.exists() and not os.path.samefile(entry, target):
                # same digest, same extension: a byte-identical copy
                entry.unlink()
                report.removed += 1
                logger.info("Removed %s, identical to %s", entry.name, target.name)
            else:
                entry.rename(target)
                report.renamed += 1
                logger.info("Renamed %s → %s", entry.name, target.name)
        except OSError as exc:
            raise ReconciliationError(f"cannot rename to {target.name}: {exc}") from exc

    def _remove_stale(self, entry: Path, report: ReconcileReport) -> None:
        try:
            entry.unlink()
        except OSError as exc:
            logger.warning("Could not remove stale partial %s: %s", entry.name, exc)
            return
        report.stale += 1
        logger.debug("Removed stale partial %s", entry.name)
