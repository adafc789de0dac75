"""
Google Drive downloader.

Downloads a publicly shared Drive file through the unauthenticated
``uc?export=download`` endpoint. Large files are answered with an HTML
"can't scan this file for viruses" page first; the confirmation token on
that page is extracted and the download is re-issued once against the
confirmation URL. Bodies are streamed to the temp directory with a byte
cap enforced both from Content-Length and from the running byte count.
"""

import asyncio
import logging
import os
import re
import time
import urllib.parse
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

import requests
import urllib3

from drivebot.errors import (
    ConfirmationTokenNotFound,
    DownloadError,
    FileTooLarge,
    InvalidFileId,
    NetworkTimeout,
    NetworkUnreachable,
    UnknownDownloadFailure,
    UpstreamAccessDenied,
    UpstreamNotFound,
    from_http_status,
)
from drivebot.links import build_confirmation_url, build_download_url, is_valid_file_id
from drivebot.log import short_id

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1MB
SNIFF_CHUNK_SIZE = 64 * 1024
DEFAULT_CONTENT_TYPE = 'application/octet-stream'

BROWSER_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Referer': 'https://drive.google.com/',
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.5',
    # Uncompressed, so Content-Length and the streamed byte count agree
    'Accept-Encoding': 'identity',
    'DNT': '1',
    'Connection': 'keep-alive',
    'Upgrade-Insecure-Requests': '1',
}

CONFIRM_TOKEN_PATTERNS = [
    re.compile(r'confirm=([0-9A-Za-z_\-]+)'),
    re.compile(r'name="confirm"\s+value="([^"]+)"'),
    re.compile(r'&confirm=([0-9A-Za-z_\-]+)'),
    re.compile(r'"confirm"\s*:\s*"([^"]+)"'),
]

FILENAME_PATTERNS = [
    re.compile(r"filename\*\s*=\s*UTF-8''([^;]+)", re.IGNORECASE),
    re.compile(r'filename\s*=\s*"([^"]+)"', re.IGNORECASE),
    re.compile(r'filename\s*=\s*([^;]+)', re.IGNORECASE),
]

UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
RESERVED_FILENAMES = re.compile(r'^(CON|PRN|AUX|NUL|COM[1-9]|LPT[1-9])$', re.IGNORECASE)
# Linux NAME_MAX, counted in bytes
MAX_FILENAME_BYTES = 255

# Errors raised while reading a response body; urllib3 can leak through iter_content
TRANSFER_ERRORS = (requests.exceptions.RequestException, urllib3.exceptions.ProtocolError)


def create_drive_session() -> requests.Session:
    """Create a pooled session with browser-like headers for Google Drive"""
    session = requests.Session()

    # Retries are handled by the download loop, not by urllib3
    adapter = requests.adapters.HTTPAdapter(
        pool_connections=10,
        pool_maxsize=10,
        max_retries=0,
        pool_block=False
    )
    session.mount('http://', adapter)
    session.mount('https://', adapter)
    session.headers.update(BROWSER_HEADERS)
    return session


def extract_confirm_token(response_text: Optional[str]) -> Optional[str]:
    """Extract the confirmation token from a Drive virus-scan warning page"""
    if not response_text:
        return None

    for pattern in CONFIRM_TOKEN_PATTERNS:
        match = pattern.search(response_text)
        if match and match.group(1):
            return match.group(1)
    return None


def extract_filename(content_disposition: Optional[str]) -> Optional[str]:
    """Extract the declared filename from a Content-Disposition header (RFC 5987 aware)"""
    if not content_disposition:
        return None

    for pattern in FILENAME_PATTERNS:
        match = pattern.search(content_disposition)
        if match and match.group(1):
            value = match.group(1).strip().strip('"\'')
            if value:
                return urllib.parse.unquote(value)
    return None


def _utf8_len(text: str) -> int:
    return len(text.encode('utf-8'))


def _truncate_utf8(text: str, max_bytes: int) -> str:
    """Cut text to at most max_bytes of UTF-8 without splitting a character"""
    return text.encode('utf-8')[:max(max_bytes, 0)].decode('utf-8', errors='ignore')


def _fit_filename(stem: str, ext: str, suffix: str = '', max_bytes: int = MAX_FILENAME_BYTES) -> str:
    """stem + suffix + ext, with the stem shortened until the whole fits in max_bytes"""
    tail = suffix + ext
    if _utf8_len(tail) >= max_bytes:
        # Absurdly long extension: keep what fits of the whole name
        return _truncate_utf8(stem + tail, max_bytes)
    return _truncate_utf8(stem, max_bytes - _utf8_len(tail)) + tail


def sanitize_filename(file_name: Optional[str], replacement: str = '_',
                      max_length: int = MAX_FILENAME_BYTES) -> str:
    """Make a remote-supplied name safe to use inside the temp directory.

    ``max_length`` is measured in UTF-8 bytes, as file systems count it.
    """
    if not file_name:
        return 'untitled'

    sanitized = UNSAFE_FILENAME_CHARS.sub(replacement, file_name)
    sanitized = sanitized.strip().strip('.')

    if RESERVED_FILENAMES.match(sanitized):
        sanitized = f"{sanitized}_file"

    if _utf8_len(sanitized) > max_length:
        stem, ext = os.path.splitext(sanitized)
        sanitized = _fit_filename(stem, ext, max_bytes=max_length)

    return sanitized or 'untitled'


def reserve_file_path(directory: Union[str, Path], file_name: str) -> Path:
    """Create an empty file named after file_name and return its path.

    When the name is taken, ``_1``, ``_2``... is appended before the
    extension, shortening the stem if needed to stay within the file
    name limit. The file is created with O_EXCL, so two downloads racing
    for the same name always end up with distinct paths.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    stem, ext = os.path.splitext(file_name)
    candidate = directory / _fit_filename(stem, ext)
    counter = 1
    while True:
        try:
            with open(candidate, 'xb'):
                pass
            return candidate
        except FileExistsError:
            candidate = directory / _fit_filename(stem, ext, f"_{counter}")
            counter += 1


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay to wait after the given (1-based) failed attempt"""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


async def retry_with_backoff(operation: Callable[[int], Awaitable[Any]], max_retries: int = 3,
                             base_delay: float = 1.0, max_delay: float = 10.0,
                             should_retry: Optional[Callable[[Exception], bool]] = None,
                             on_retry: Optional[Callable[[int, Exception, float], None]] = None) -> Any:
    """Run operation(attempt) until it succeeds or the attempts run out.

    The last error is re-raised unchanged. ``should_retry`` can veto a
    retry for errors that would fail again anyway.
    """
    if max_retries < 1:
        raise ValueError("max_retries must be at least 1")

    for attempt in range(1, max_retries + 1):
        try:
            return await operation(attempt)
        except Exception as e:
            if attempt >= max_retries or (should_retry is not None and not should_retry(e)):
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            if on_retry is not None:
                on_retry(attempt, e, delay)
            await asyncio.sleep(delay)


def is_retryable(error: Exception) -> bool:
    return isinstance(error, DownloadError) and error.retryable


@dataclass
class DownloadResult:
    """Outcome of a download. The caller owns (and must delete) local_path."""
    success: bool
    local_path: Optional[Path] = None
    declared_file_name: Optional[str] = None
    byte_size: int = 0
    content_type: str = DEFAULT_CONTENT_TYPE
    error_message: Optional[str] = None
    error: Optional[DownloadError] = None
    attempts: int = 0
    elapsed: float = 0.0

    @classmethod
    def ok(cls, local_path: Path, declared_file_name: str, byte_size: int,
           content_type: str = DEFAULT_CONTENT_TYPE) -> 'DownloadResult':
        return cls(True, local_path, declared_file_name, byte_size, content_type)

    @classmethod
    def failed(cls, error: DownloadError, attempts: int = 0, elapsed: float = 0.0) -> 'DownloadResult':
        return cls(False, error_message=str(error), error=error, attempts=attempts, elapsed=elapsed)


@dataclass
class FileProbe:
    """Metadata learnt from a HEAD request, without downloading"""
    file_name: Optional[str]
    size: Optional[int]
    content_type: str
    too_large: bool


def _content_type(response: requests.Response) -> str:
    value = response.headers.get('content-type', '')
    return value.split(';')[0].strip().lower() or DEFAULT_CONTENT_TYPE


def _is_html(response: requests.Response) -> bool:
    return _content_type(response).startswith('text/html')


def _content_length(response: requests.Response) -> Optional[int]:
    value = response.headers.get('content-length')
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _translate_request_error(error: Exception, stage: str, url: str) -> DownloadError:
    if isinstance(error, requests.exceptions.Timeout):
        return NetworkTimeout(f"Request timed out: {error}", stage=stage, url=url)
    # A body cut off mid-transfer (IncompleteRead, connection reset while reading)
    if isinstance(error, (requests.exceptions.ChunkedEncodingError, urllib3.exceptions.ProtocolError)):
        return NetworkUnreachable(f"Connection broken during transfer: {error}", stage=stage, url=url)
    if isinstance(error, requests.exceptions.ConnectionError):
        # requests reports read timeouts during iter_content as ConnectionError
        if 'timed out' in str(error).lower():
            return NetworkTimeout(f"Request timed out: {error}", stage=stage, url=url)
        return NetworkUnreachable(f"Network error: {error}", stage=stage, url=url)
    return UnknownDownloadFailure(f"Request failed: {error}", stage=stage, url=url)


class DriveDownloader:
    """Downloads publicly shared Drive files into a temp directory"""

    def __init__(self, temp_dir: Union[str, Path], max_file_size: int, timeout: float = 30.0,
                 max_retries: int = 3, base_delay: float = 1.0, max_delay: float = 5.0,
                 confirm_page_max_bytes: int = 1024 * 1024, session: Optional[requests.Session] = None,
                 chunk_size: int = CHUNK_SIZE):
        self.temp_dir = Path(temp_dir)
        self.max_file_size = max_file_size
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.confirm_page_max_bytes = confirm_page_max_bytes
        self.session = session or create_drive_session()
        self.chunk_size = chunk_size

    @classmethod
    def from_settings(cls, settings, session: Optional[requests.Session] = None) -> 'DriveDownloader':
        return cls(
            temp_dir=settings.temp_dir,
            max_file_size=settings.max_file_size_bytes,
            timeout=settings.download_timeout,
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            confirm_page_max_bytes=settings.confirm_page_max_bytes,
            session=session,
        )

    async def download(self, file_id: str) -> DownloadResult:
        """Download a Drive file. Failures come back as a failed DownloadResult."""
        start_time = time.monotonic()
        attempts = 0

        if not is_valid_file_id(file_id):
            error = InvalidFileId(f"Invalid file ID: {file_id!r}", stage="validation")
            logger.warning("Rejected invalid file id %r", file_id)
            return DownloadResult.failed(error)

        async def operation(attempt: int) -> DownloadResult:
            nonlocal attempts
            attempts = attempt
            logger.debug("Download attempt %d/%d for %s", attempt, self.max_retries, short_id(file_id))
            return await asyncio.to_thread(self._attempt, file_id, attempt)

        def on_retry(attempt: int, error: Exception, delay: float) -> None:
            logger.warning("Download attempt %d/%d for %s failed (%s), retrying in %.1fs",
                           attempt, self.max_retries, short_id(file_id), error, delay)

        try:
            result = await retry_with_backoff(
                operation,
                max_retries=self.max_retries,
                base_delay=self.base_delay,
                max_delay=self.max_delay,
                should_retry=is_retryable,
                on_retry=on_retry,
            )
        except DownloadError as e:
            elapsed = time.monotonic() - start_time
            logger.error("Download of %s failed after %d attempt(s): %s",
                         short_id(file_id), attempts, e.describe())
            return DownloadResult.failed(e, attempts=attempts, elapsed=elapsed)
        except Exception as e:
            elapsed = time.monotonic() - start_time
            logger.exception("Unexpected error downloading %s", short_id(file_id))
            error = UnknownDownloadFailure(f"Unexpected error: {e}", stage="streaming", attempt=attempts)
            error.__cause__ = e
            return DownloadResult.failed(error, attempts=attempts, elapsed=elapsed)

        result.attempts = attempts
        result.elapsed = time.monotonic() - start_time
        logger.info("Downloaded %s as %s (%d bytes) in %.2fs",
                    short_id(file_id), result.local_path.name, result.byte_size, result.elapsed)
        return result

    async def probe(self, file_id: str) -> FileProbe:
        """Fetch headers only. Raises DownloadError on failure."""
        url = build_download_url(file_id)
        return await asyncio.to_thread(self._probe, url, file_id)

    def _probe(self, url: str, file_id: str) -> FileProbe:
        try:
            response = self.session.head(url, allow_redirects=True, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise _translate_request_error(e, "initial", url) from e

        if response.status_code >= 400:
            raise from_http_status(response.status_code, url, "initial")

        size = _content_length(response)
        content_type = _content_type(response)
        file_name = extract_filename(response.headers.get('content-disposition', ''))
        if file_name is None and not content_type.startswith('text/html'):
            file_name = f"file_{file_id}.bin"
        return FileProbe(
            file_name=file_name,
            size=size,
            content_type=content_type,
            too_large=size is not None and size > self.max_file_size,
        )

    def _attempt(self, file_id: str, attempt: int) -> DownloadResult:
        """One pass through the download state machine (runs in a worker thread)"""
        url = build_download_url(file_id)
        try:
            response = self._get(url, "initial")
            try:
                if _is_html(response):
                    token = self._confirmation_token(response, url)
                    response.close()
                    confirm_url = build_confirmation_url(file_id, token)
                    logger.debug("Confirmation page for %s, retrying with token", short_id(file_id))
                    response = self._get(confirm_url, "confirmation")
                    if _is_html(response):
                        raise ConfirmationTokenNotFound(
                            "Google Drive returned another confirmation page after confirming",
                            stage="confirmation", url=confirm_url)
                return self._stream(response, file_id)
            finally:
                response.close()
        except DownloadError as e:
            if e.attempt is None:
                e.attempt = attempt
            raise

    def _get(self, url: str, stage: str) -> requests.Response:
        try:
            response = self.session.get(url, stream=True, timeout=self.timeout, allow_redirects=True)
        except requests.exceptions.RequestException as e:
            raise _translate_request_error(e, stage, url) from e

        if response.status_code >= 400:
            response.close()
            raise from_http_status(response.status_code, url, stage)
        return response

    def _read_page(self, response: requests.Response, url: str) -> str:
        """Buffer an HTML page, keeping at most confirm_page_max_bytes of it"""
        body = bytearray()
        try:
            for chunk in response.iter_content(chunk_size=SNIFF_CHUNK_SIZE):
                if not chunk:
                    continue
                body.extend(chunk[:self.confirm_page_max_bytes - len(body)])
                if len(body) >= self.confirm_page_max_bytes:
                    logger.debug("Confirmation page truncated at %d bytes", len(body))
                    break
        except TRANSFER_ERRORS as e:
            raise _translate_request_error(e, "confirmation", url) from e
        return bytes(body).decode(response.encoding or 'utf-8', errors='replace')

    def _confirmation_token(self, response: requests.Response, url: str) -> str:
        for cookie in response.cookies:
            if cookie.name.startswith('download_warning') and cookie.value:
                return cookie.value

        html_content = self._read_page(response, url)
        token = extract_confirm_token(html_content)
        if token:
            return token

        lowered = html_content.lower()
        if 'quota exceeded' in lowered or 'download quota' in lowered:
            raise UnknownDownloadFailure("Download quota exceeded for this file", stage="confirmation", url=url)
        if 'need permission' in lowered or 'permission denied' in lowered or 'request access' in lowered:
            raise UpstreamAccessDenied("File is not shared publicly", stage="confirmation", url=url)
        if 'not found' in lowered or 'does not exist' in lowered:
            raise UpstreamNotFound("File not found or has been deleted", stage="confirmation", url=url)
        raise ConfirmationTokenNotFound("Could not extract confirmation token from virus scan page",
                                        stage="confirmation", url=url)

    def _stream(self, response: requests.Response, file_id: str) -> DownloadResult:
        url = response.url
        declared_size = _content_length(response)
        if declared_size is not None and declared_size > self.max_file_size:
            raise FileTooLarge(
                f"File size ({declared_size // (1024 * 1024)}MB) exceeds the limit of "
                f"{self.max_file_size // (1024 * 1024)}MB",
                size=declared_size, limit=self.max_file_size, stage="streaming", url=url)

        declared_name = extract_filename(response.headers.get('content-disposition', '')) or f"file_{file_id}.bin"
        path = reserve_file_path(self.temp_dir, sanitize_filename(declared_name))

        written = 0
        try:
            with open(path, 'wb') as handle:
                for chunk in response.iter_content(chunk_size=self.chunk_size):
                    if not chunk:
                        continue
                    written += len(chunk)
                    if written > self.max_file_size:
                        raise FileTooLarge(
                            f"File size exceeds the limit of {self.max_file_size // (1024 * 1024)}MB",
                            size=written, limit=self.max_file_size, stage="streaming", url=url)
                    handle.write(chunk)
        except TRANSFER_ERRORS as e:
            path.unlink(missing_ok=True)
            raise _translate_request_error(e, "streaming", url) from e
        except BaseException:
            path.unlink(missing_ok=True)
            raise

        return DownloadResult.ok(path, declared_name, written, _content_type(response))

    def close(self) -> None:
        self.session.close()

