"""Tests for Google Drive link parsing."""
import pytest

from drivebot.errors import InvalidFileId
from drivebot.links import (
    SourceFormat,
    build_confirmation_url,
    build_download_url,
    find_drive_references,
    is_valid_file_id,
    normalize_drive_url,
    parse_drive_url,
    sharing_url,
)

FILE_ID = "1AbCdEfGhIjKlMnOpQrStUvWxYz0123-_"
OTHER_ID = "0ZyXwVuTsRqPoNmLkJiHgFeDcBa98765"


@pytest.mark.parametrize("url,expected_format", [
    (f"https://drive.google.com/file/d/{FILE_ID}/view?usp=sharing", SourceFormat.STANDARD_VIEW),
    (f"https://drive.google.com/file/d/{FILE_ID}", SourceFormat.STANDARD_VIEW),
    (f"https://drive.google.com/open?id={FILE_ID}", SourceFormat.OPEN_FORMAT),
    (f"https://docs.google.com/document/d/{FILE_ID}/edit", SourceFormat.DOCS_FORMAT),
    (f"https://docs.google.com/spreadsheets/d/{FILE_ID}", SourceFormat.DOCS_FORMAT),
    (f"https://drive.google.com/uc?id={FILE_ID}&export=download", SourceFormat.DIRECT_DOWNLOAD),
    (f"https://drive.google.com/uc?export=download&id={FILE_ID}", SourceFormat.DIRECT_DOWNLOAD),
    (f"https://drive.google.com/file/d/{FILE_ID}/edit", SourceFormat.EDIT_FORMAT),
])
def test_every_link_shape_yields_same_file_id(url, expected_format):
    """Equivalent links in different shapes resolve to the same id."""
    reference = parse_drive_url(url)

    assert reference is not None
    assert reference.file_id == FILE_ID
    assert reference.source_format == expected_format


def test_parse_link_embedded_in_text():
    text = f"hey, grab this: drive.google.com/file/d/{FILE_ID}/view thanks!"
    assert parse_drive_url(text).file_id == FILE_ID


@pytest.mark.parametrize("text", [
    None,
    "",
    "no links here",
    "https://example.com/file/d/abc/view",
    "https://dropbox.com/s/abc/file.pdf?dl=0",
])
def test_non_drive_text_is_rejected(text):
    assert parse_drive_url(text) is None


def test_file_id_length_bounds():
    assert is_valid_file_id("a" * 25)
    assert is_valid_file_id("Z" * 50)
    assert is_valid_file_id("abc-DEF_123" * 3)
    assert not is_valid_file_id("a" * 24)
    assert not is_valid_file_id("a" * 51)


def test_file_id_alphabet():
    assert not is_valid_file_id("a" * 20 + "!@#$%")
    assert not is_valid_file_id("a" * 24 + " ")
    assert not is_valid_file_id(None)
    assert not is_valid_file_id("")


def test_short_id_is_parsed_but_flagged_invalid():
    reference = parse_drive_url("https://drive.google.com/file/d/short123/view")

    assert reference.file_id == "short123"
    assert not is_valid_file_id(reference.file_id)


def test_build_download_url():
    assert build_download_url(FILE_ID) == f"https://drive.google.com/uc?export=download&id={FILE_ID}"


def test_build_confirmation_url():
    assert build_confirmation_url(FILE_ID, "t0k3n") == (
        f"https://drive.google.com/uc?export=download&confirm=t0k3n&id={FILE_ID}"
    )


def test_build_urls_reject_invalid_id():
    with pytest.raises(InvalidFileId):
        build_download_url("tooshort")
    with pytest.raises(InvalidFileId):
        build_confirmation_url("tooshort", "t")


def test_find_references_deduplicates_by_file_id():
    text = (
        f"first https://drive.google.com/file/d/{FILE_ID}/view\n"
        f"again https://drive.google.com/open?id={FILE_ID}\n"
        f"other https://drive.google.com/uc?export=download&id={OTHER_ID}"
    )

    references = find_drive_references(text)

    assert [r.file_id for r in references] == [FILE_ID, OTHER_ID]
    assert references[0].source_format == SourceFormat.STANDARD_VIEW
    assert references[1].source_format == SourceFormat.DIRECT_DOWNLOAD


def test_find_references_keeps_text_order():
    text = (
        f"https://docs.google.com/presentation/d/{OTHER_ID}/edit and "
        f"https://drive.google.com/file/d/{FILE_ID}/view"
    )

    assert [r.file_id for r in find_drive_references(text)] == [OTHER_ID, FILE_ID]


def test_find_references_in_empty_text():
    assert find_drive_references("") == []
    assert find_drive_references(None) == []


def test_normalize_drive_url():
    assert normalize_drive_url(f"https://drive.google.com/open?id={FILE_ID}") == (
        f"https://drive.google.com/file/d/{FILE_ID}/view?usp=sharing"
    )
    assert normalize_drive_url("https://example.com") is None


def test_sharing_url():
    assert sharing_url(FILE_ID) == f"https://drive.google.com/file/d/{FILE_ID}/view?usp=sharing"
