"""
Remote storage gateway interface.

Every storage provider is reached through the same three operations:
- upload: store a local byte stream at a remote path (never overwriting)
- list_entries: list one remote folder, non-recursively
- delete: remove one remote path

Provider adapters live in dropbox_gateway.py and s3_gateway.py.
"""

import enum
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import BinaryIO, Callable, List, Optional, Protocol, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar('T')

REMOTE_SEPARATOR = '/'


class TransportError(Exception):
    """Raised when the storage provider rejects or fails an operation."""
    pass


class ConflictError(TransportError):
    """Raised when the upload destination already exists."""
    pass


class NotFoundError(TransportError):
    """Raised when the remote path does not exist."""
    pass


class EntryKind(enum.Enum):
    FILE = 'file'
    FOLDER = 'folder'


@dataclass(frozen=True)
class RemoteEntry:
    """One object in remote storage, as reported by a folder listing."""

    path: str
    name: str
    kind: EntryKind
    modified_at: Optional[datetime] = None

    @property
    def is_folder(self) -> bool:
        return self.kind is EntryKind.FOLDER


class RemoteStorageGateway(Protocol):
    """Capability interface implemented by every storage adapter."""

    def upload(self, destination_path: str, content: BinaryIO) -> RemoteEntry: ...

    def list_entries(self, folder_path: str) -> List[RemoteEntry]: ...

    def delete(self, path: str) -> None: ...


def normalize_folder(folder: str) -> str:
    """
    Normalize a remote folder path.

    The result has a single leading separator and no trailing one. The
    root folder is the empty string.

    Examples:
        '/backups/' -> '/backups'
        'backups'   -> '/backups'
        '/'         -> ''
    """
    stripped = (folder or '').strip().strip(REMOTE_SEPARATOR)
    if not stripped:
        return ''
    return REMOTE_SEPARATOR + stripped


def join_remote_path(folder: str, filename: str) -> str:
    """
    Build the remote destination path for a file inside a folder.

    join_remote_path('/backups/', 'x.tar') == join_remote_path('/backups', 'x.tar') == '/backups/x.tar'
    """
    name = filename.strip(REMOTE_SEPARATOR)
    if not name:
        raise ValueError("Remote filename must not be empty")
    return normalize_folder(folder) + REMOTE_SEPARATOR + name


def remote_basename(path: str) -> str:
    return path.rstrip(REMOTE_SEPARATOR).rsplit(REMOTE_SEPARATOR, 1)[-1]


def parse_timestamp(value) -> Optional[datetime]:
    """
    Convert a provider timestamp into an aware UTC datetime.

    Accepts datetimes (naive ones are taken as UTC), ISO 8601 strings and
    RFC 2822 strings. Returns None when the value is missing or cannot be
    parsed, so that the entry is never considered expired.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            try:
                parsed = parsedate_to_datetime(value)
            except (TypeError, ValueError):
                logger.warning(f"Unparsable modification time: {value!r}")
                return None
    else:
        logger.warning(f"Unsupported modification time type: {type(value).__name__}")
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def stream_size(content: BinaryIO) -> int:
    """Size in bytes of the remaining content of a seekable stream."""
    start = content.tell()
    end = content.seek(0, 2)
    content.seek(start)
    return end - start


def call_with_retries(
    operation: Callable[[], T],
    retries: int,
    is_transient: Callable[[Exception], bool],
    description: str,
    backoff: float = 1.0
) -> T:
    """
    Run an operation, retrying it on transient errors.

    Args:
        operation: Zero-argument callable performing one request
        retries: Number of retries after the first attempt
        is_transient: Predicate deciding whether an error may be retried
        description: Human readable name used in log messages
        backoff: Base delay in seconds, doubled after each attempt

    Returns:
        Whatever the operation returns

    Raises:
        The last error raised by the operation once retries are exhausted,
        or the first non-transient one.
    """
    attempts = retries + 1

    for attempt in range(attempts):
        try:
            return operation()
        except Exception as e:
            if not is_transient(e) or attempt == attempts - 1:
                raise
            delay = backoff * (2 ** attempt)
            logger.warning(f"{description} failed (attempt {attempt + 1}/{attempts}): {e}. Retrying in {delay:.1f}s")
            if delay > 0:
                time.sleep(delay)
