"""Tests for sending files with the matching Telegram method."""
from unittest.mock import AsyncMock

import pytest

from drivebot import delivery
from drivebot.classifier import ClassificationResult, Confidence, DetectionMethod, MediaCategory
from drivebot.delivery import send_file


def classified(mime_type, extension="bin"):
    return ClassificationResult(extension, mime_type, DetectionMethod.MAGIC_NUMBERS, Confidence.HIGH)


@pytest.fixture
def small_file(tmp_path):
    path = tmp_path / "payload"
    path.write_bytes(b"x" * 100)
    return path


@pytest.mark.asyncio
async def test_video_is_sent_streamable(small_file):
    client = AsyncMock()

    category = await send_file(client, 42, small_file, "movie.mp4", classified("video/mp4"), "caption")

    assert category == MediaCategory.VIDEO
    client.send_video.assert_awaited_once()
    kwargs = client.send_video.call_args.kwargs
    assert kwargs["supports_streaming"] is True
    assert kwargs["file_name"] == "movie.mp4"
    assert kwargs["caption"] == "caption"
    client.send_document.assert_not_called()


@pytest.mark.asyncio
async def test_image_is_sent_as_photo(small_file):
    client = AsyncMock()

    category = await send_file(client, 42, small_file, "cat.png", classified("image/png"))

    assert category == MediaCategory.IMAGE
    client.send_photo.assert_awaited_once()
    assert client.send_photo.call_args.kwargs["photo"] == str(small_file)


@pytest.mark.asyncio
async def test_gif_is_sent_as_animation(small_file):
    client = AsyncMock()

    category = await send_file(client, 42, small_file, "dance.gif", classified("image/gif"))

    assert category == MediaCategory.IMAGE
    client.send_animation.assert_awaited_once()
    client.send_photo.assert_not_called()


@pytest.mark.asyncio
async def test_large_image_falls_back_to_document(tmp_path, monkeypatch):
    path = tmp_path / "huge.png"
    path.write_bytes(b"x" * 200)
    monkeypatch.setattr(delivery, "PHOTO_SIZE_LIMIT", 100)
    client = AsyncMock()

    category = await send_file(client, 42, path, "huge.png", classified("image/png"))

    assert category == MediaCategory.DOCUMENT
    client.send_document.assert_awaited_once()
    client.send_photo.assert_not_called()


@pytest.mark.asyncio
async def test_audio_is_sent_as_audio(small_file):
    client = AsyncMock()

    category = await send_file(client, 42, small_file, "song.mp3", classified("audio/mpeg"))

    assert category == MediaCategory.AUDIO
    client.send_audio.assert_awaited_once()


@pytest.mark.asyncio
async def test_pdf_is_sent_as_document(small_file):
    client = AsyncMock()

    category = await send_file(client, 42, small_file, "paper.pdf", classified("application/pdf"))

    assert category == MediaCategory.DOCUMENT
    client.send_document.assert_awaited_once()
    assert client.send_document.call_args.kwargs["file_name"] == "paper.pdf"
