"""Resolve inline image references in turn bodies to base64 payloads."""

from __future__ import annotations

import asyncio
import base64
import logging
import re
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

import httpx

from .models import ChatImage

__all__ = [
    "AttachmentResolver",
    "VaultAttachmentResolver",
    "ImageExtractor",
    "mime_type_for",
]

LOGGER = logging.getLogger(__name__)

_LOCAL_REFERENCE = re.compile(r"!\[\[([^\]]+)\]\]")
_REMOTE_REFERENCE = re.compile(r"!\[[^\]]*\]\((https?://[^\s)]+)\)")
_DEFAULT_MIME_TYPE = "image/png"
_MIME_TYPES: dict[str, str] = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
}


def mime_type_for(name: str) -> str:
    """Return the image MIME type for ``name`` based on its extension."""

    suffix = Path(name).suffix.lower().lstrip(".")
    return _MIME_TYPES.get(suffix, _DEFAULT_MIME_TYPE)


@runtime_checkable
class AttachmentResolver(Protocol):
    """Host collaborator that maps attachment links to binary assets."""

    def resolve(self, link: str) -> Optional[Path]:
        ...

    async def read_binary(self, path: Path) -> bytes:
        ...


class VaultAttachmentResolver:
    """Filesystem resolver rooted at a notes directory.

    Lookup order: next to the source document, then relative to the vault root,
    then the first file anywhere in the vault with a matching name.
    """

    def __init__(self, root: Path | str, *, source_dir: Path | str | None = None) -> None:
        self._root = Path(root)
        self._source_dir = Path(source_dir) if source_dir is not None else None

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, link: str) -> Optional[Path]:
        name = link.strip()
        if not name:
            return None
        candidates = []
        if self._source_dir is not None:
            candidates.append(self._source_dir / name)
        candidates.append(self._root / name)
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        basename = Path(name).name
        if not self._root.is_dir():
            return None
        for match in sorted(self._root.rglob(basename)):
            if match.is_file():
                return match
        return None

    async def read_binary(self, path: Path) -> bytes:
        return await asyncio.to_thread(Path(path).read_bytes)


class ImageExtractor:
    """Collect images referenced by a turn body.

    Local ``![[name|alias]]`` references are processed first, then remote
    ``![alt](https://...)`` references; within each pass matches keep their
    left-to-right order. Anything that cannot be resolved or fetched is left
    out, so :meth:`extract` never raises.
    """

    def __init__(
        self,
        resolver: AttachmentResolver | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._resolver = resolver
        self._http_client = http_client

    async def extract(self, body: str) -> list[ChatImage]:
        images: list[ChatImage] = []
        if not body:
            return images
        images.extend(await self._extract_local(body))
        remote_urls = [match.group(1) for match in _REMOTE_REFERENCE.finditer(body)]
        if remote_urls:
            images.extend(await self._extract_remote(remote_urls))
        return images

    async def _extract_local(self, body: str) -> list[ChatImage]:
        images: list[ChatImage] = []
        for match in _LOCAL_REFERENCE.finditer(body):
            key = match.group(1).split("|", 1)[0].strip()
            image = await self._load_attachment(key)
            if image is not None:
                images.append(image)
        return images

    async def _load_attachment(self, key: str) -> ChatImage | None:
        if self._resolver is None or not key:
            return None
        path = self._resolver.resolve(key)
        if path is None:
            LOGGER.debug("Attachment %s could not be resolved; skipping", key)
            return None
        try:
            payload = await self._resolver.read_binary(path)
        except OSError as exc:
            LOGGER.warning("Unable to read attachment %s: %s", path, exc)
            return None
        return ChatImage(
            data=base64.b64encode(payload).decode("ascii"),
            mime_type=mime_type_for(path.name),
        )

    async def _extract_remote(self, urls: list[str]) -> list[ChatImage]:
        if self._http_client is not None:
            return await self._fetch_all(self._http_client, urls)
        async with httpx.AsyncClient() as client:
            return await self._fetch_all(client, urls)

    async def _fetch_all(self, client: httpx.AsyncClient, urls: list[str]) -> list[ChatImage]:
        images: list[ChatImage] = []
        for url in urls:
            image = await self._fetch(client, url)
            if image is not None:
                images.append(image)
        return images

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> ChatImage | None:
        try:
            response = await client.get(url, follow_redirects=True)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            # UnicodeError (bad IDNA host) is a ValueError subclass.
            LOGGER.warning("Skipping remote image %s: %s", url, exc)
            return None
        if response.status_code != 200:
            LOGGER.debug("Skipping remote image %s: HTTP %s", url, response.status_code)
            return None
        content_type = response.headers.get("content-type") or _DEFAULT_MIME_TYPE
        mime_type = content_type.split(";", 1)[0].strip().lower()
        if not mime_type.startswith("image/"):
            LOGGER.debug("Skipping remote image %s: content-type %s", url, content_type)
            return None
        return ChatImage(data=base64.b64encode(response.content).decode("ascii"), mime_type=mime_type)
