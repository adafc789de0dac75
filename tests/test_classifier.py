"""Tests for file type detection and delivery categories."""
from unittest.mock import patch

import pytest

from drivebot import classifier
from drivebot.classifier import (
    ClassificationResult,
    Confidence,
    DetectionMethod,
    MediaCategory,
    categorize,
    detect_file_type,
    format_size,
    is_animation,
    security_warnings,
)


@pytest.mark.parametrize("mime_type,expected", [
    ("video/mp4", MediaCategory.VIDEO),
    ("video/x-matroska", MediaCategory.VIDEO),
    ("image/png", MediaCategory.IMAGE),
    ("image/gif", MediaCategory.IMAGE),
    ("audio/mpeg", MediaCategory.AUDIO),
    ("audio/ogg", MediaCategory.AUDIO),
    ("application/pdf", MediaCategory.DOCUMENT),
    ("application/zip", MediaCategory.DOCUMENT),
    ("text/plain", MediaCategory.DOCUMENT),
    (None, MediaCategory.DOCUMENT),
])
def test_categorize(mime_type, expected):
    assert categorize(mime_type) == expected


def test_categorize_gif_by_file_name():
    assert categorize("application/octet-stream", "funny.GIF") == MediaCategory.IMAGE


def test_detect_uses_magic_numbers_first(tmp_path):
    path = tmp_path / "clip.bin"
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42")

    with patch.object(classifier.magic, "from_file", return_value="video/mp4") as from_file:
        result = detect_file_type(path)

    from_file.assert_called_once_with(str(path), mime=True)
    assert result == ClassificationResult("mp4", "video/mp4", DetectionMethod.MAGIC_NUMBERS, Confidence.HIGH)
    assert result.category == MediaCategory.VIDEO


def test_detect_falls_back_to_extension(tmp_path):
    path = tmp_path / "song.mp3"
    path.write_bytes(b"not really audio")

    with patch.object(classifier.magic, "from_file", return_value="application/octet-stream"), \
            patch.object(classifier.magic, "from_buffer") as from_buffer:
        result = detect_file_type(path)

    assert result.mime_type == "audio/mpeg"
    assert result.extension == "mp3"
    assert result.detection_method == DetectionMethod.EXTENSION
    assert result.confidence == Confidence.MEDIUM
    from_buffer.assert_not_called()


def test_detect_falls_back_to_buffer_sniffing(tmp_path):
    path = tmp_path / "mystery"
    path.write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 5000)

    with patch.object(classifier.magic, "from_file", return_value="application/octet-stream"), \
            patch.object(classifier.magic, "from_buffer", return_value="image/png") as from_buffer:
        result = detect_file_type(path)

    assert len(from_buffer.call_args.args[0]) == classifier.SNIFF_BYTES
    assert result.mime_type == "image/png"
    assert result.detection_method == DetectionMethod.BUFFER_ANALYSIS


def test_detect_defaults_to_octet_stream(tmp_path):
    path = tmp_path / "mystery"
    path.write_bytes(b"\x01\x02\x03")

    with patch.object(classifier.magic, "from_file", return_value="application/octet-stream"), \
            patch.object(classifier.magic, "from_buffer", return_value="application/octet-stream"):
        result = detect_file_type(path)

    assert result == ClassificationResult("bin", "application/octet-stream", DetectionMethod.DEFAULT, Confidence.LOW)
    assert result.category == MediaCategory.DOCUMENT


def test_detect_error_fallback(tmp_path):
    result = detect_file_type(tmp_path / "does-not-exist.pdf")

    assert result.mime_type == "application/octet-stream"
    assert result.detection_method == DetectionMethod.ERROR_FALLBACK
    assert result.confidence == Confidence.LOW


def test_detect_real_pdf(tmp_path):
    path = tmp_path / "download"
    path.write_bytes(b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n1 0 obj\n<< /Type /Catalog >>\nendobj\n")

    result = detect_file_type(path)

    assert result.mime_type == "application/pdf"
    assert result.category == MediaCategory.DOCUMENT


def test_is_animation():
    gif = ClassificationResult("gif", "image/gif", DetectionMethod.MAGIC_NUMBERS, Confidence.HIGH)
    png = ClassificationResult("png", "image/png", DetectionMethod.MAGIC_NUMBERS, Confidence.HIGH)

    assert is_animation(gif)
    assert is_animation(png, "renamed.gif")
    assert not is_animation(png, "photo.png")


def test_security_warnings_for_executables():
    result = ClassificationResult("exe", "application/x-dosexec", DetectionMethod.MAGIC_NUMBERS, Confidence.HIGH)

    warnings = security_warnings("setup.exe", result)

    assert any(".exe" in w for w in warnings)
    assert any("Suspicious MIME type" in w for w in warnings)


def test_security_warnings_for_spoofed_extension():
    result = ClassificationResult("exe", "application/x-dosexec", DetectionMethod.MAGIC_NUMBERS, Confidence.HIGH)

    warnings = security_warnings("holiday.jpg", result)

    assert any("Extension mismatch" in w for w in warnings)


def test_no_security_warnings_for_plain_pdf():
    result = ClassificationResult("pdf", "application/pdf", DetectionMethod.MAGIC_NUMBERS, Confidence.HIGH)

    assert security_warnings("paper.pdf", result) == []


@pytest.mark.parametrize("size,expected", [
    (0, "0 B"),
    (512, "512 B"),
    (2048, "2.0 KB"),
    (5 * 1024 * 1024, "5.0 MB"),
    (3 * 1024 ** 3, "3.0 GB"),
])
def test_format_size(size, expected):
    assert format_size(size) == expected
