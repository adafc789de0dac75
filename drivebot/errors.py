"""
Error taxonomy for the download pipeline.

Every failure that reaches the bot is one of the DownloadError subclasses
below. Each carries enough context for logging (stage, attempt, url) and
collapses to a short user-facing message through ``user_message``.
"""

from typing import Optional


class ConfigError(Exception):
    """Raised when the process configuration is missing or invalid"""


class DownloadError(Exception):
    """Base class for download pipeline failures"""

    category = "unknown"
    retryable = False

    def __init__(self, message: str, *, stage: str = "initial", url: Optional[str] = None,
                 attempt: Optional[int] = None, retryable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.url = url
        self.attempt = attempt
        if retryable is not None:
            self.retryable = retryable

    def __str__(self) -> str:
        return self.message

    def describe(self) -> str:
        """One-line description for logs"""
        parts = [f"{type(self).__name__}: {self.message}", f"stage={self.stage}"]
        if self.attempt is not None:
            parts.append(f"attempt={self.attempt}")
        return " ".join(parts)


class InvalidFileId(DownloadError):
    category = "invalid_link"


class ConfirmationTokenNotFound(DownloadError):
    category = "confirmation"


class FileTooLarge(DownloadError):
    category = "too_large"

    def __init__(self, message: str, *, size: Optional[int] = None, limit: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.size = size
        self.limit = limit


class NetworkTimeout(DownloadError):
    category = "timeout"
    retryable = True


class NetworkUnreachable(DownloadError):
    category = "network"
    retryable = True


class UpstreamNotFound(DownloadError):
    category = "not_found"


class UpstreamAccessDenied(DownloadError):
    category = "access_denied"


class UnknownDownloadFailure(DownloadError):
    category = "unknown"


def from_http_status(status: int, url: Optional[str] = None, stage: str = "initial") -> DownloadError:
    """Map an unsuccessful HTTP status to a pipeline error"""
    if status in (404, 410):
        return UpstreamNotFound(f"File not found (HTTP {status})", stage=stage, url=url)
    if status in (401, 403):
        return UpstreamAccessDenied(f"Access denied (HTTP {status})", stage=stage, url=url)
    if status == 429 or status >= 500:
        return UnknownDownloadFailure(f"Google Drive answered HTTP {status}", stage=stage, url=url, retryable=True)
    return UnknownDownloadFailure(f"Unexpected HTTP {status}", stage=stage, url=url)


USER_MESSAGES = {
    "invalid_link": "🔗 Invalid Google Drive link. Please make sure you're using a valid sharing link.",
    "confirmation": ("🦠 Google Drive asked for a virus scan confirmation that could not be completed. "
                     "This usually happens with large files. Please try again later."),
    "timeout": "⏰ Download timed out. The connection is slow or the file is large. Please try again.",
    "network": "🌐 Network error while contacting Google Drive. Please try again.",
    "not_found": "🔍 File not found. Please check that the link is correct and the file still exists.",
    "access_denied": "🔒 Access denied. Make sure the file is shared with \"Anyone with the link\".",
    "unknown": "❌ Something went wrong while downloading the file. Please try again later.",
}


def user_message(error: BaseException, max_file_size_mb: int, details: bool = False) -> str:
    """Collapse an error to the text shown in the chat"""
    if isinstance(error, FileTooLarge):
        text = f"📁 File is too large! Maximum allowed size is {max_file_size_mb}MB."
    elif isinstance(error, DownloadError):
        text = USER_MESSAGES.get(error.category, USER_MESSAGES["unknown"])
    else:
        text = USER_MESSAGES["unknown"]

    if details:
        text += f"\n\n🐛 {type(error).__name__}: {error}"
    return text
