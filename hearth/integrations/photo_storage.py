"""
Hearth Kiosk — Local photo and frame storage.

Google Photos Picker URLs stop working about an hour after picking, so
picked media is downloaded to disk and the kiosk shows it from there.
At most a few downloads run at once. The photo listing is kept in memory,
newest first, and rebuilt from the directory at start-up.

Collage frames are PNG/WebP overlays a parent uploads; they live in a
`frames/` directory inside the photo storage.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from hearth.ports.provider_port import (
    AuthExpired,
    HearthError,
    NotFoundError,
    ProviderClientError,
    TransientFailure,
    ValidationError,
)

logger = logging.getLogger(__name__)

MAX_CONCURRENT_DOWNLOADS = 3
MAX_FRAME_BYTES = 10 * 1024 * 1024
FRAME_CONTENT_TYPES = {"image/png", "image/webp"}

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")
_PARTIAL_SUFFIX = ".part"


def clean_filename(name: str) -> str:
    """Replace anything but letters, digits, dots and dashes with '_'."""
    cleaned = _UNSAFE_CHARS.sub("_", name or "")
    if not cleaned.strip("."):
        raise ValidationError("Filename is required")
    return cleaned


def _existing_file(directory: Path, filename: str, what: str) -> Path:
    # Only plain names produced by clean_filename can ever be on disk
    if not filename or _UNSAFE_CHARS.search(filename) or not filename.strip("."):
        raise NotFoundError(f"{what} not found")
    path = directory / filename
    if not path.is_file():
        raise NotFoundError(f"{what} not found")
    return path


def _media_type(filename: str, mime_type: str | None = None) -> str:
    if mime_type:
        return "video" if mime_type.startswith("video/") else "image"
    return "video" if filename.lower().endswith(".mp4") else "image"


def _thumbnail_name(filename: str) -> str:
    return f"{Path(filename).stem}_thumb.jpg"


@dataclass
class StoredPhoto:
    filename: str
    type: str
    mtime: float
    thumbnail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "url": f"/api/storage/{self.filename}",
            "thumbnailUrl": f"/api/storage/{self.thumbnail}" if self.thumbnail else None,
            "type": self.type,
            "mtime": int(self.mtime * 1000),
        }


class PhotoStorage:
    """Downloads media into a directory and keeps a listing of it."""

    def __init__(
        self,
        storage_dir: str | Path | None = None,
        max_concurrent: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        if storage_dir is None or max_concurrent is None or timeout is None:
            from hearth.config import settings

            storage_dir = storage_dir if storage_dir is not None else settings.PHOTO_STORAGE_DIR
            max_concurrent = (
                max_concurrent if max_concurrent is not None else settings.MAX_CONCURRENT_DOWNLOADS
            )
            timeout = timeout if timeout is not None else settings.PHOTO_DOWNLOAD_TIMEOUT_SECONDS

        self.directory = Path(storage_dir)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._transport = transport
        self._timeout = timeout
        self._photos: list[StoredPhoto] = []
        self.load()

    def load(self) -> None:
        """Rebuild the listing from what is on disk."""
        names = {path.name for path in self.directory.iterdir()}
        photos = []
        for path in self.directory.iterdir():
            name = path.name
            if (
                name.startswith(".")
                or "_thumb." in name
                or name.endswith((".json", _PARTIAL_SUFFIX))
                or not path.is_file()
            ):
                continue
            thumbnail = _thumbnail_name(name)
            photos.append(StoredPhoto(
                filename=name,
                type=_media_type(name),
                mtime=path.stat().st_mtime,
                thumbnail=thumbnail if thumbnail in names else None,
            ))
        photos.sort(key=lambda p: p.mtime, reverse=True)
        self._photos = photos
        logger.info("Photo storage loaded: %d file(s) in %s", len(photos), self.directory)

    def list(self, page: int = 1, limit: int = 1000) -> dict[str, Any]:
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        start = (page - 1) * limit
        total = len(self._photos)
        return {
            "data": [p.to_dict() for p in self._photos[start:start + limit]],
            "pagination": {
                "total": total,
                "page": page,
                "limit": limit,
                "totalPages": math.ceil(total / limit),
            },
        }

    def path_for(self, filename: str) -> Path:
        return _existing_file(self.directory, filename, "File")

    async def download(
        self,
        url: str,
        filename: str,
        mime_type: str | None = None,
        access_token: str | None = None,
    ) -> dict[str, Any]:
        """Save `url` as `filename`, unless a file of that name is already stored.

        Raises:
            ValidationError: malformed URL or filename.
            AuthExpired: the media host rejected the access token.
            TransientFailure: network trouble, 429 or 5xx.
            ProviderClientError: any other non-200 answer.
        """
        if not url.startswith(("http://", "https://")):
            raise ValidationError("Invalid URL provided")
        name = clean_filename(filename)
        path = self.directory / name

        async with self._semaphore:
            if path.exists():
                logger.debug("Already stored: %s", name)
                return {"success": True, "filename": name, "url": f"/api/storage/{name}", "cached": True}

            logger.info("Downloading %s", name)
            headers = {"Authorization": f"Bearer {access_token}"} if access_token else {}
            partial = path.with_name(name + _PARTIAL_SUFFIX)
            try:
                await self._fetch(url, headers, partial)
                partial.replace(path)
            except BaseException:
                partial.unlink(missing_ok=True)
                raise

        self._add(name, mime_type)
        return {"success": True, "filename": name, "url": f"/api/storage/{name}"}

    async def _fetch(self, url: str, headers: dict[str, str], target: Path) -> None:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport, follow_redirects=True
            ) as client:
                async with client.stream("GET", url, headers=headers) as resp:
                    if resp.status_code != 200:
                        raise _download_error(resp.status_code)
                    with target.open("wb") as fh:
                        async for chunk in resp.aiter_bytes():
                            fh.write(chunk)
        except httpx.HTTPError as exc:
            raise TransientFailure(f"Download failed: {exc}") from exc
        except OSError as exc:
            raise HearthError(f"Download failed: could not write {target.name}: {exc}") from exc

    def _add(self, name: str, mime_type: str | None) -> None:
        if "_thumb." in name:
            owner = name.split("_thumb.")[0]
            for photo in self._photos:
                if Path(photo.filename).stem == owner:
                    photo.thumbnail = name
            return
        self._photos = [p for p in self._photos if p.filename != name]
        thumbnail = _thumbnail_name(name)
        self._photos.insert(0, StoredPhoto(
            filename=name,
            type=_media_type(name, mime_type),
            mtime=time.time(),
            thumbnail=thumbnail if (self.directory / thumbnail).exists() else None,
        ))

    def delete(self, filename: str) -> None:
        path = self.path_for(filename)
        path.unlink()
        (self.directory / _thumbnail_name(filename)).unlink(missing_ok=True)
        self._photos = [p for p in self._photos if p.filename != filename]
        logger.info("Photo %s deleted", filename)


def _download_error(status: int) -> HearthError:
    if status == 401:
        return AuthExpired("Media host rejected the access token")
    if status == 429 or status >= 500:
        return TransientFailure(f"Download failed: media host answered {status}")
    return ProviderClientError(f"Download failed: media host answered {status}", status=status)


class FrameStorage:
    """Uploaded collage frames, one file each."""

    def __init__(
        self,
        frames_dir: str | Path,
        max_bytes: int = MAX_FRAME_BYTES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.directory = Path(frames_dir)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._max_bytes = max_bytes
        self._clock = clock

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def list(self) -> list[dict[str, str]]:
        return [
            {"filename": path.name, "url": f"/api/frames/storage/{path.name}"}
            for path in sorted(self.directory.iterdir())
            if path.is_file() and not path.name.startswith(".")
        ]

    def save(self, original_name: str, content_type: str | None, data: bytes) -> dict[str, Any]:
        if content_type not in FRAME_CONTENT_TYPES:
            raise ValidationError("Only .png and .webp formats allowed!")
        if not data:
            raise ValidationError("No file uploaded")
        if len(data) > self._max_bytes:
            raise ValidationError(f"Frame is larger than {self._max_bytes // (1024 * 1024)} MB")

        name = f"{int(self._clock() * 1000)}_{clean_filename(original_name)}"
        (self.directory / name).write_bytes(data)
        logger.info("Frame uploaded: %s (%d bytes)", name, len(data))
        return {"success": True, "filename": name, "url": f"/api/frames/storage/{name}"}

    def path_for(self, filename: str) -> Path:
        return _existing_file(self.directory, filename, "Frame")

    def delete(self, filename: str) -> None:
        self.path_for(filename).unlink()
        logger.info("Frame %s deleted", filename)
