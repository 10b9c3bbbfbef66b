"""DCInside mobile-site client – list pages, article images, image bytes."""

from __future__ import annotations

import logging
import re
from typing import Protocol
from urllib.parse import parse_qs, unquote, urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from .config import DCInsideConfig
from .errors import FetchError
from .models import FetchedImage, ListItem
from .storage import EXTENSION_FOR_MIME, MIME_MAP, split_name

logger = logging.getLogger("gallwatch.api")

_ARTICLE_NO_RE = re.compile(r"/(\d+)/?$")
_FILENAME_STAR_RE = re.compile(r"filename\*\s*=\s*(?:[\w-]+)?'[^']*'([^;]+)", re.IGNORECASE)
_FILENAME_RE = re.compile(r'filename\s*=\s*"?([^";]+)"?', re.IGNORECASE)


class GallerySource(Protocol):
    """What the pipeline needs from a remote gallery.  Every call may raise FetchError."""

    def get_list(self, gallery_id: str, page: int = 1) -> list[ListItem]: ...

    def get_image_urls(self, item: ListItem) -> list[str]: ...

    def download_image(self, url: str, *, referer: str | None = None) -> FetchedImage: ...


def article_number(url: str) -> str | None:
    """Post number of an article link (``/board/<gall>/<no>`` or ``?no=<no>``)."""
    parsed = urlparse(url)
    nos = parse_qs(parsed.query).get("no")
    if nos and nos[0].isdigit():
        return nos[0]
    m = _ARTICLE_NO_RE.search(parsed.path)
    return m.group(1) if m else None


def filename_from_disposition(header: str) -> str | None:
    """Pull the filename out of a Content-Disposition header."""
    if not header:
        return None
    m = _FILENAME_STAR_RE.search(header)
    if m:
        return unquote(m.group(1).strip())
    m = _FILENAME_RE.search(header)
    if m:
        return unquote(m.group(1).strip())
    return None


def suggested_filename(resp: httpx.Response) -> str:
    """Best filename for a downloaded image.

    Content-Disposition first, then the last URL path segment if it ends in
    a known image extension, then a name built from Content-Type.  Raises
    FetchError when none of them yields an extension.
    """
    name = filename_from_disposition(resp.headers.get("content-disposition", ""))
    if name and "." in name:
        return name
    path_name = unquote(urlparse(str(resp.url)).path.rsplit("/", 1)[-1])
    stem, ext = split_name(path_name)
    if f".{ext.lower()}" in MIME_MAP:
        return path_name
    mime = resp.headers.get("content-type", "").split(";", 1)[0].strip().lower()
    mime_ext = EXTENSION_FOR_MIME.get(mime)
    if mime_ext:
        return f"{name or stem or 'image'}{mime_ext}"
    raise FetchError(f"cannot find a filename for {resp.url}")


class DCInsideAPI:
    """Thin wrapper around the DCInside mobile gallery pages."""

    def __init__(self, cfg: DCInsideConfig | None = None, *, transport: httpx.BaseTransport | None = None) -> None:
        self.cfg = cfg or DCInsideConfig.from_env()
        self._client = httpx.Client(
            timeout=self.cfg.timeout,
            headers={"User-Agent": self.cfg.user_agent},
            follow_redirects=True,
            transport=transport,
        )

    def _get(self, url: str, *, referer: str | None = None) -> httpx.Response:
        headers = {"Referer": referer} if referer else None
        try:
            resp = self._client.get(url, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise FetchError(f"GET {url} failed: {exc}") from exc
        return resp

    # ── public API ───────────────────────────────────────────────

    def list_url(self, gallery_id: str, page: int = 1) -> str:
        return f"{self.cfg.base_url}/board/{gallery_id}?page={page}"

    def get_list(self, gallery_id: str, page: int = 1) -> list[ListItem]:
        """Fetch one page of a gallery's article list."""
        url = self.list_url(gallery_id, page)
        resp = self._get(url)
        soup = BeautifulSoup(resp.text, "html.parser")
        items: list[ListItem] = []
        for li in soup.select("ul.gall-detail-lst > li"):
            link = li.find("a", href=True)
            if link is None:
                continue
            href = urljoin(url, link["href"])
            identifier = article_number(href)
            if identifier is None:
                continue
            subject_el = li.select_one(".subjectin")
            subject = subject_el.get_text(strip=True) if subject_el else link.get_text(strip=True)
            has_image = li.select_one(".sp-lst-img") is not None
            items.append(ListItem(identifier=identifier, subject=subject, has_image=has_image, url=href))
        logger.debug("Fetched %d items from %s", len(items), url)
        return items

    def get_image_urls(self, item: ListItem) -> list[str]:
        """Fetch an article and return its full-size image URLs in page order."""
        resp = self._get(item.url)
        soup = BeautifulSoup(resp.text, "html.parser")
        urls: list[str] = []
        for img in soup.select(".thum-txtin img"):
            src = img.get("data-original") or img.get("src")
            if src:
                urls.append(urljoin(item.url, src))
        for a in soup.select('a[href*="download"]'):
            urls.append(urljoin(item.url, a["href"]))
        # drop repeats, keep order
        return list(dict.fromkeys(urls))

    def download_image(self, url: str, *, referer: str | None = None) -> FetchedImage:
        """Download one image's bytes along with its suggested filename."""
        resp = self._get(url, referer=referer)
        return FetchedImage(data=resp.content, filename=suggested_filename(resp))

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> DCInsideAPI:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
