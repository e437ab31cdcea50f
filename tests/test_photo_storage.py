"""Tests for hearth.integrations.photo_storage — downloads, listing, frames.

Media hosts are httpx.MockTransport handlers; files go to tmp_path.
"""

import asyncio
import os

import httpx
import pytest

from hearth.integrations.photo_storage import (
    FrameStorage,
    PhotoStorage,
    clean_filename,
)
from hearth.ports.provider_port import (
    AuthExpired,
    NotFoundError,
    ProviderClientError,
    TransientFailure,
    ValidationError,
)


def _storage(tmp_path, handler=None, max_concurrent=3):
    transport = httpx.MockTransport(handler or (lambda request: httpx.Response(200, content=b"jpeg")))
    return PhotoStorage(tmp_path / "storage", max_concurrent=max_concurrent, transport=transport, timeout=5)


class TestCleanFilename:
    def test_replaces_unsafe_characters(self):
        assert clean_filename("My Photo (1).jpg") == "My_Photo__1_.jpg"
        assert clean_filename("../../etc/passwd") == ".._.._etc_passwd"

    @pytest.mark.parametrize("name", ["", ".", ".."])
    def test_rejects_empty_names(self, name):
        with pytest.raises(ValidationError):
            clean_filename(name)


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class TestListing:
    def test_load_skips_thumbs_hidden_and_partial_files(self, tmp_path):
        directory = tmp_path / "storage"
        (directory / "frames").mkdir(parents=True)
        for name in ("old.jpg", "clip.mp4", "clip_thumb.jpg", ".DS_Store", "half.jpg.part", "meta.json"):
            (directory / name).write_bytes(b"x")
        os.utime(directory / "old.jpg", (1_000, 1_000))

        listing = _storage(tmp_path).list()

        assert [p["filename"] for p in listing["data"]] == ["clip.mp4", "old.jpg"]
        clip = listing["data"][0]
        assert clip["type"] == "video"
        assert clip["url"] == "/api/storage/clip.mp4"
        assert clip["thumbnailUrl"] == "/api/storage/clip_thumb.jpg"
        assert listing["data"][1]["thumbnailUrl"] is None

    def test_pagination(self, tmp_path):
        directory = tmp_path / "storage"
        directory.mkdir()
        for i in range(5):
            (directory / f"{i}.jpg").write_bytes(b"x")
            os.utime(directory / f"{i}.jpg", (1_000 + i, 1_000 + i))

        page = _storage(tmp_path).list(page=2, limit=2)

        assert [p["filename"] for p in page["data"]] == ["2.jpg", "1.jpg"]
        assert page["pagination"] == {"total": 5, "page": 2, "limit": 2, "totalPages": 3}

    def test_invalid_page(self, tmp_path):
        with pytest.raises(ValidationError):
            _storage(tmp_path).list(page=0)


# ---------------------------------------------------------------------------
# Downloads
# ---------------------------------------------------------------------------


class TestDownload:
    @pytest.mark.asyncio
    async def test_saves_file_and_lists_it_first(self, tmp_path):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, content=b"video-bytes")

        storage = _storage(tmp_path, handler)

        result = await storage.download(
            "https://lh3.googleusercontent.com/abc=dv", "m 1.mp4", mime_type="video/mp4", access_token="tok"
        )

        assert result == {"success": True, "filename": "m_1.mp4", "url": "/api/storage/m_1.mp4"}
        assert (storage.directory / "m_1.mp4").read_bytes() == b"video-bytes"
        assert seen[0].headers["Authorization"] == "Bearer tok"
        first = storage.list()["data"][0]
        assert (first["filename"], first["type"]) == ("m_1.mp4", "video")

    @pytest.mark.asyncio
    async def test_existing_file_is_not_fetched_again(self, tmp_path):
        calls = []
        storage = _storage(tmp_path, lambda r: calls.append(r) or httpx.Response(200, content=b"x"))

        await storage.download("https://media.test/a", "a.jpg")
        again = await storage.download("https://media.test/a", "a.jpg")

        assert again["cached"] is True
        assert len(calls) == 1
        assert len(storage.list()["data"]) == 1

    @pytest.mark.asyncio
    async def test_thumbnail_attaches_to_its_video(self, tmp_path):
        storage = _storage(tmp_path)
        await storage.download("https://media.test/v", "v1.mp4", mime_type="video/mp4")
        await storage.download("https://media.test/t", "v1_thumb.jpg")

        listing = storage.list()["data"]

        assert [p["filename"] for p in listing] == ["v1.mp4"]
        assert listing[0]["thumbnailUrl"] == "/api/storage/v1_thumb.jpg"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,error", [
        (401, AuthExpired),
        (404, ProviderClientError),
        (429, TransientFailure),
        (503, TransientFailure),
    ])
    async def test_failed_download_leaves_nothing_behind(self, tmp_path, status, error):
        storage = _storage(tmp_path, lambda r: httpx.Response(status))

        with pytest.raises(error):
            await storage.download("https://media.test/a", "a.jpg")

        assert list(storage.directory.iterdir()) == []
        assert storage.list()["data"] == []

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, tmp_path):
        def handler(request):
            raise httpx.ConnectError("refused")

        with pytest.raises(TransientFailure):
            await _storage(tmp_path, handler).download("https://media.test/a", "a.jpg")

    @pytest.mark.asyncio
    async def test_rejects_non_http_urls(self, tmp_path):
        with pytest.raises(ValidationError):
            await _storage(tmp_path).download("file:///etc/passwd", "a.jpg")

    @pytest.mark.asyncio
    async def test_concurrent_downloads_are_bounded(self, tmp_path):
        in_flight = 0
        peak = 0

        async def handler(request):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return httpx.Response(200, content=b"x")

        storage = _storage(tmp_path, handler, max_concurrent=2)

        await asyncio.gather(*(
            storage.download(f"https://media.test/{i}", f"{i}.jpg") for i in range(6)
        ))

        assert peak == 2
        assert len(storage.list()["data"]) == 6


class TestDelete:
    @pytest.mark.asyncio
    async def test_removes_file_thumbnail_and_listing(self, tmp_path):
        storage = _storage(tmp_path)
        await storage.download("https://media.test/v", "v1.mp4", mime_type="video/mp4")
        await storage.download("https://media.test/t", "v1_thumb.jpg")

        storage.delete("v1.mp4")

        assert list(storage.directory.iterdir()) == []
        assert storage.list()["data"] == []

    @pytest.mark.parametrize("name", ["missing.jpg", "../secret.jpg", ".."])
    def test_unknown_or_unsafe_names(self, tmp_path, name):
        (tmp_path / "secret.jpg").write_bytes(b"x")
        storage = _storage(tmp_path)
        with pytest.raises(NotFoundError):
            storage.delete(name)
        assert (tmp_path / "secret.jpg").exists()


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------


class TestFrameStorage:
    def test_save_list_delete(self, tmp_path):
        frames = FrameStorage(tmp_path / "frames", clock=lambda: 1718000000.5)

        saved = frames.save("gold border.png", "image/png", b"png-bytes")

        assert saved == {
            "success": True,
            "filename": "1718000000500_gold_border.png",
            "url": "/api/frames/storage/1718000000500_gold_border.png",
        }
        assert frames.list() == [{"filename": saved["filename"], "url": saved["url"]}]
        assert frames.path_for(saved["filename"]).read_bytes() == b"png-bytes"

        frames.delete(saved["filename"])
        assert frames.list() == []
        with pytest.raises(NotFoundError):
            frames.delete(saved["filename"])

    def test_only_png_and_webp(self, tmp_path):
        frames = FrameStorage(tmp_path / "frames")
        with pytest.raises(ValidationError):
            frames.save("photo.jpg", "image/jpeg", b"jpeg")
        assert frames.list() == []

    def test_size_limit(self, tmp_path):
        frames = FrameStorage(tmp_path / "frames", max_bytes=4)
        with pytest.raises(ValidationError):
            frames.save("big.webp", "image/webp", b"12345")

    def test_empty_upload(self, tmp_path):
        with pytest.raises(ValidationError):
            FrameStorage(tmp_path / "frames").save("empty.png", "image/png", b"")
