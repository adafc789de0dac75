"""
File type detection and delivery category selection.

Detection runs in three tiers: libmagic on the whole file, then the
extension table, then libmagic on the first bytes only. The resulting
MIME type is turned into one of four delivery categories by
``categorize``.
"""

import logging
import mimetypes
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

import magic

logger = logging.getLogger(__name__)

SNIFF_BYTES = 4100
GENERIC_MIME = 'application/octet-stream'

DANGEROUS_EXTENSIONS = {
    'exe', 'bat', 'cmd', 'com', 'pif', 'scr', 'vbs', 'js', 'jar',
    'msi', 'dll', 'scf', 'lnk', 'inf', 'reg',
}
SUSPICIOUS_MIME_TYPES = {
    'application/x-msdownload',
    'application/x-executable',
    'application/x-dosexec',
    'application/x-msdos-program',
    'application/javascript',
}

# libmagic names some formats differently from the extension table
PREFERRED_EXTENSIONS = {
    'image/jpeg': 'jpg',
    'video/mp4': 'mp4',
    'audio/mpeg': 'mp3',
    'text/plain': 'txt',
    'application/pdf': 'pdf',
    GENERIC_MIME: 'bin',
}


class MediaCategory(Enum):
    VIDEO = "video"
    IMAGE = "image"
    AUDIO = "audio"
    DOCUMENT = "document"


class DetectionMethod(Enum):
    MAGIC_NUMBERS = "magic-numbers"
    EXTENSION = "extension"
    BUFFER_ANALYSIS = "buffer-analysis"
    DEFAULT = "default"
    ERROR_FALLBACK = "error-fallback"


class Confidence(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class ClassificationResult:
    extension: str
    mime_type: str
    detection_method: DetectionMethod
    confidence: Confidence

    @property
    def category(self) -> MediaCategory:
        return categorize(self.mime_type)


def extension_for(mime_type: str) -> str:
    if mime_type in PREFERRED_EXTENSIONS:
        return PREFERRED_EXTENSIONS[mime_type]
    guessed = mimetypes.guess_extension(mime_type)
    return guessed.lstrip('.') if guessed else 'bin'


def _useful(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and mime_type != GENERIC_MIME


def detect_file_type(file_path: Union[str, Path]) -> ClassificationResult:
    """Detect the type of a downloaded file"""
    file_path = Path(file_path)
    try:
        detected = magic.from_file(str(file_path), mime=True)
        if _useful(detected):
            logger.debug("Type of %s detected via magic numbers: %s", file_path.name, detected)
            return ClassificationResult(extension_for(detected), detected,
                                        DetectionMethod.MAGIC_NUMBERS, Confidence.HIGH)

        guessed, _ = mimetypes.guess_type(file_path.name)
        if guessed:
            extension = file_path.suffix.lower().lstrip('.')
            logger.debug("Type of %s detected via extension: %s", file_path.name, guessed)
            return ClassificationResult(extension, guessed, DetectionMethod.EXTENSION, Confidence.MEDIUM)

        with open(file_path, 'rb') as handle:
            head = handle.read(SNIFF_BYTES)
        if head:
            detected = magic.from_buffer(head, mime=True)
            if _useful(detected):
                logger.debug("Type of %s detected via buffer analysis: %s", file_path.name, detected)
                return ClassificationResult(extension_for(detected), detected,
                                            DetectionMethod.BUFFER_ANALYSIS, Confidence.HIGH)

        logger.warning("Could not determine type of %s, using default", file_path.name)
        return ClassificationResult('bin', GENERIC_MIME, DetectionMethod.DEFAULT, Confidence.LOW)

    except (OSError, magic.MagicException) as e:
        logger.error("Error detecting type of %s: %s", file_path.name, e)
        return ClassificationResult('bin', GENERIC_MIME, DetectionMethod.ERROR_FALLBACK, Confidence.LOW)


def categorize(mime_type: Optional[str], file_name: str = '') -> MediaCategory:
    """Pick the delivery category for a MIME type"""
    mime_type = (mime_type or GENERIC_MIME).lower()

    if mime_type.startswith('video/'):
        return MediaCategory.VIDEO
    if mime_type.startswith('image/'):
        return MediaCategory.IMAGE
    if mime_type.startswith('audio/'):
        return MediaCategory.AUDIO
    if file_name.lower().endswith('.gif'):
        return MediaCategory.IMAGE
    return MediaCategory.DOCUMENT


def is_animation(classification: ClassificationResult, file_name: str = '') -> bool:
    return classification.mime_type == 'image/gif' or file_name.lower().endswith('.gif')


def security_warnings(file_name: str, classification: ClassificationResult) -> List[str]:
    """Warnings worth showing next to a delivered file"""
    warnings = []
    extension = os.path.splitext(file_name)[1].lower().lstrip('.')

    if extension in DANGEROUS_EXTENSIONS:
        warnings.append(f"Potentially dangerous file extension: .{extension}")
    if classification.mime_type in SUSPICIOUS_MIME_TYPES:
        warnings.append(f"Suspicious MIME type: {classification.mime_type}")
    if (classification.detection_method in (DetectionMethod.MAGIC_NUMBERS, DetectionMethod.BUFFER_ANALYSIS)
            and extension and classification.extension != 'bin'
            and mimetypes.guess_type(file_name)[0] not in (None, classification.mime_type)):
        warnings.append(f"Extension mismatch: filename has .{extension} "
                        f"but content suggests .{classification.extension}")
    return warnings


def format_size(size: Optional[float]) -> str:
    """Human readable byte count"""
    if not size:
        return "0 B"
    for unit in ('B', 'KB', 'MB', 'GB'):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == 'B' else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"
