"""
Google Drive link detection.

Recognises the sharing-link shapes Drive and Docs hand out, pulls the file
id out of them and builds the unauthenticated download endpoints.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from drivebot.errors import InvalidFileId

DRIVE_BASE_URL = "https://drive.google.com"
DOWNLOAD_URL = DRIVE_BASE_URL + "/uc?export=download&id={file_id}"
CONFIRM_URL = DRIVE_BASE_URL + "/uc?export=download&confirm={token}&id={file_id}"
SHARING_URL = DRIVE_BASE_URL + "/file/d/{file_id}/view?usp=sharing"

FILE_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]{25,50}$')


class SourceFormat(Enum):
    STANDARD_VIEW = "standardView"
    OPEN_FORMAT = "openFormat"
    DOCS_FORMAT = "docsFormat"
    DIRECT_DOWNLOAD = "directDownload"
    EDIT_FORMAT = "editFormat"


# Order matters: the first pattern that matches decides the format.
# The edit shape is a special case of the standard one, so it goes first.
DRIVE_PATTERNS: List[Tuple[SourceFormat, re.Pattern]] = [
    (SourceFormat.EDIT_FORMAT,
     re.compile(r'(?:https?://)?(?:www\.)?drive\.google\.com/file/d/([A-Za-z0-9_-]+)/edit', re.IGNORECASE)),
    (SourceFormat.STANDARD_VIEW,
     re.compile(r'(?:https?://)?(?:www\.)?drive\.google\.com/file/d/([A-Za-z0-9_-]+)(?:/view)?', re.IGNORECASE)),
    (SourceFormat.OPEN_FORMAT,
     re.compile(r'(?:https?://)?(?:www\.)?drive\.google\.com/open\?id=([A-Za-z0-9_-]+)', re.IGNORECASE)),
    (SourceFormat.DOCS_FORMAT,
     re.compile(r'(?:https?://)?(?:www\.)?docs\.google\.com/(?:document|spreadsheets|presentation)/d/([A-Za-z0-9_-]+)',
                re.IGNORECASE)),
    (SourceFormat.DIRECT_DOWNLOAD,
     re.compile(r'(?:https?://)?(?:www\.)?drive\.google\.com/uc\?(?:[^\s]*?&)?id=([A-Za-z0-9_-]+)', re.IGNORECASE)),
]


@dataclass(frozen=True)
class DriveReference:
    """A file id pulled out of a Drive link"""
    file_id: str
    source_format: SourceFormat
    url: str = ""


def is_valid_file_id(file_id: Optional[str]) -> bool:
    """Drive ids are 25-50 characters of letters, digits, '-' and '_'"""
    if not file_id or not isinstance(file_id, str):
        return False
    return bool(FILE_ID_PATTERN.match(file_id))


def parse_drive_url(text: Optional[str]) -> Optional[DriveReference]:
    """Return the first Drive reference found in text, or None"""
    if not text or not isinstance(text, str):
        return None

    for source_format, pattern in DRIVE_PATTERNS:
        match = pattern.search(text)
        if match and match.group(1):
            return DriveReference(match.group(1), source_format, match.group(0))
    return None


def find_drive_references(text: Optional[str]) -> List[DriveReference]:
    """Find every distinct Drive file referenced in free-form text.

    References are returned in the order they appear in the text and are
    de-duplicated by file id, so the same file linked twice (even in two
    different shapes) is only reported once.
    """
    if not text or not isinstance(text, str):
        return []

    found = []
    for rank, (source_format, pattern) in enumerate(DRIVE_PATTERNS):
        for match in pattern.finditer(text):
            found.append((match.start(), rank, DriveReference(match.group(1), source_format, match.group(0))))

    references = []
    seen = set()
    for _, _, reference in sorted(found, key=lambda item: (item[0], item[1])):
        if reference.file_id in seen:
            continue
        seen.add(reference.file_id)
        references.append(reference)
    return references


def build_download_url(file_id: str) -> str:
    if not is_valid_file_id(file_id):
        raise InvalidFileId(f"Invalid file ID: {file_id!r}", stage="validation")
    return DOWNLOAD_URL.format(file_id=file_id)


def build_confirmation_url(file_id: str, token: str) -> str:
    if not is_valid_file_id(file_id):
        raise InvalidFileId(f"Invalid file ID: {file_id!r}", stage="validation")
    return CONFIRM_URL.format(file_id=file_id, token=token)


def normalize_drive_url(text: Optional[str]) -> Optional[str]:
    """Rewrite any supported Drive link as the standard sharing URL"""
    reference = parse_drive_url(text)
    if reference is None:
        return None
    return sharing_url(reference.file_id)


def sharing_url(file_id: str) -> str:
    return SHARING_URL.format(file_id=file_id)

