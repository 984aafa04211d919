"""
Dropbox storage gateway.

Uploads use WriteMode.add without autorename: an existing file at the
destination is never replaced, the upload fails with ConflictError instead.

Files smaller than the chunk size go up in a single files_upload call.
Larger files go through an upload session (start, append, finish), one
chunk in memory at a time.
"""

import logging
from typing import BinaryIO, List, Optional

import dropbox
import requests
from dropbox.exceptions import ApiError, AuthError, DropboxException, InternalServerError, RateLimitError
from dropbox.files import (
    CommitInfo,
    DeletedMetadata,
    FileMetadata,
    FolderMetadata,
    UploadSessionCursor,
    WriteMode
)

from .credentials import AppKeyCredentials, ConfigurationError, Credentials, TokenCredentials
from .gateway import (
    ConflictError,
    EntryKind,
    NotFoundError,
    RemoteEntry,
    TransportError,
    call_with_retries,
    normalize_folder,
    parse_timestamp,
    stream_size
)


logger = logging.getLogger(__name__)

# Dropbox accepts at most 150MB per upload request
MAX_CHUNK_SIZE = 150 * 1024 * 1024


def is_transient_dropbox_error(error: Exception) -> bool:
    """Whether a Dropbox error is worth retrying."""
    return isinstance(error, (
        RateLimitError,
        InternalServerError,
        requests.exceptions.ConnectionError,
        requests.exceptions.Timeout
    ))


def _is_write_conflict(error) -> bool:
    """
    Check a Dropbox API error union for a write conflict.

    files_upload reports UploadError.path -> UploadWriteFailed.reason -> WriteError,
    files_upload_session_finish reports UploadSessionFinishError.path -> WriteError.
    """
    if error is None or not hasattr(error, 'is_path') or not error.is_path():
        return False
    path_error = error.get_path()
    write_error = getattr(path_error, 'reason', path_error)
    return hasattr(write_error, 'is_conflict') and write_error.is_conflict()


def _is_not_found(error) -> bool:
    """Check a Dropbox API error union for a missing path."""
    for variant in ('path_lookup', 'path'):
        is_variant = getattr(error, f'is_{variant}', None)
        if is_variant is not None and is_variant():
            lookup_error = getattr(error, f'get_{variant}')()
            return hasattr(lookup_error, 'is_not_found') and lookup_error.is_not_found()
    return False


def _translate(error: Exception, action: str) -> TransportError:
    """Translate a Dropbox SDK or network error into a TransportError."""
    if isinstance(error, ApiError):
        if _is_write_conflict(error.error):
            return ConflictError(f"Dropbox {action} failed: destination already exists")
        if _is_not_found(error.error):
            return NotFoundError(f"Dropbox {action} failed: path not found")
        return TransportError(f"Dropbox {action} failed: {error.error}")
    if isinstance(error, AuthError):
        return TransportError(f"Dropbox {action} failed: authentication rejected ({error.error})")
    if isinstance(error, RateLimitError):
        return TransportError(f"Dropbox {action} failed: rate limited, retry after {error.backoff}s")
    return TransportError(f"Dropbox {action} failed: {error}")


class DropboxGateway:
    """
    Gateway to a Dropbox account.

    Accepts either a bearer access token or an app key/secret pair with a
    refresh token.
    """

    def __init__(
        self,
        credentials: Credentials,
        chunk_size: int = 4 * 1024 * 1024,
        chunk_retries: int = 3,
        retry_backoff: float = 1.0,
        client: Optional[dropbox.Dropbox] = None
    ):
        """
        Initialize Dropbox gateway.

        Args:
            credentials: TokenCredentials or AppKeyCredentials
            chunk_size: Size threshold and chunk size for upload sessions
            chunk_retries: Retries per chunk on transient errors
            retry_backoff: Base delay in seconds between chunk retries
            client: Preconfigured Dropbox client (skips client creation)

        Raises:
            ConfigurationError: If the credentials cannot authenticate
        """
        if not 0 < chunk_size <= MAX_CHUNK_SIZE:
            raise ConfigurationError(
                f"Dropbox chunk size must be between 1 and {MAX_CHUNK_SIZE} bytes, got {chunk_size}"
            )

        self.chunk_size = chunk_size
        self.chunk_retries = chunk_retries
        self.retry_backoff = retry_backoff

        if client is not None:
            self.client = client
        elif isinstance(credentials, TokenCredentials):
            self.client = dropbox.Dropbox(
                oauth2_access_token=credentials.token,
                max_retries_on_error=chunk_retries,
                user_agent='backsync'
            )
        elif isinstance(credentials, AppKeyCredentials):
            if not credentials.refresh_token:
                raise ConfigurationError(
                    "Dropbox app key/secret authentication requires DROPBOX_REFRESH_TOKEN"
                )
            self.client = dropbox.Dropbox(
                oauth2_refresh_token=credentials.refresh_token,
                app_key=credentials.app_key,
                app_secret=credentials.app_secret,
                max_retries_on_error=chunk_retries,
                user_agent='backsync'
            )
        else:
            raise ConfigurationError(f"Unsupported credentials: {type(credentials).__name__}")

    def upload(self, destination_path: str, content: BinaryIO) -> RemoteEntry:
        """
        Upload a stream to Dropbox without overwriting.

        Args:
            destination_path: Remote path of the new file
            content: Readable, seekable binary stream

        Returns:
            RemoteEntry of the uploaded file

        Raises:
            ConflictError: If a file already exists at the destination
            TransportError: If the upload fails
        """
        try:
            size = stream_size(content)

            if size < self.chunk_size:
                metadata = self.client.files_upload(
                    content.read(),
                    destination_path,
                    mode=WriteMode.add,
                    autorename=False
                )
            else:
                metadata = self._session_upload(destination_path, content, size)

        except (DropboxException, requests.exceptions.RequestException) as e:
            raise _translate(e, 'upload') from e
        except OSError as e:
            raise TransportError(f"Failed to read upload content: {e}") from e

        return self._to_entry(metadata)

    def _session_upload(self, destination_path: str, content: BinaryIO, size: int) -> FileMetadata:
        """
        Upload content through an upload session.

        Every append is retried on transient errors. A retry answered with an
        incorrect offset that equals the expected end of the chunk means the
        previous attempt reached the server, so it counts as done.
        """
        first_chunk = content.read(self.chunk_size)
        start = call_with_retries(
            lambda: self.client.files_upload_session_start(first_chunk),
            retries=self.chunk_retries,
            is_transient=is_transient_dropbox_error,
            description=f"Dropbox session start for {destination_path}",
            backoff=self.retry_backoff
        )
        cursor = UploadSessionCursor(session_id=start.session_id, offset=len(first_chunk))
        commit = CommitInfo(path=destination_path, mode=WriteMode.add, autorename=False)

        while size - cursor.offset > self.chunk_size:
            chunk = content.read(self.chunk_size)
            self._append(chunk, cursor, destination_path)
            cursor.offset += len(chunk)
            logger.debug(f"Appended {cursor.offset}/{size} bytes to {destination_path}")

        last_chunk = content.read()
        metadata = self.client.files_upload_session_finish(last_chunk, cursor, commit)
        logger.info(f"Upload session for {destination_path} complete ({size} bytes)")
        return metadata

    def _append(self, chunk: bytes, cursor: UploadSessionCursor, destination_path: str):
        expected_offset = cursor.offset + len(chunk)

        def append():
            try:
                self.client.files_upload_session_append_v2(chunk, cursor)
            except ApiError as e:
                error = e.error
                if getattr(error, 'is_incorrect_offset', None) and error.is_incorrect_offset():
                    if error.get_incorrect_offset().correct_offset == expected_offset:
                        return
                raise

        call_with_retries(
            append,
            retries=self.chunk_retries,
            is_transient=is_transient_dropbox_error,
            description=f"Dropbox append at offset {cursor.offset} for {destination_path}",
            backoff=self.retry_backoff
        )

    def list_entries(self, folder_path: str) -> List[RemoteEntry]:
        """
        List files and folders directly inside a Dropbox folder.

        A folder that does not exist yields an empty list.

        Raises:
            TransportError: If listing fails
        """
        folder = normalize_folder(folder_path)

        try:
            result = self.client.files_list_folder(folder, recursive=False)
            entries = [self._to_entry(m) for m in result.entries if not isinstance(m, DeletedMetadata)]

            while result.has_more:
                result = self.client.files_list_folder_continue(result.cursor)
                entries.extend(self._to_entry(m) for m in result.entries if not isinstance(m, DeletedMetadata))

            return entries

        except (DropboxException, requests.exceptions.RequestException) as e:
            error = _translate(e, 'list')
            if isinstance(error, NotFoundError):
                logger.info(f"Dropbox folder does not exist: {folder or '/'}")
                return []
            raise error from e

    def delete(self, path: str):
        """
        Delete a file from Dropbox.

        Raises:
            NotFoundError: If nothing exists at the path
            TransportError: If deletion fails
        """
        try:
            self.client.files_delete_v2(path)
        except (DropboxException, requests.exceptions.RequestException) as e:
            raise _translate(e, 'delete') from e

    def test_connection(self) -> bool:
        """
        Check that the credentials are accepted.

        Raises:
            TransportError: If Dropbox rejects the credentials or is unreachable
        """
        try:
            self.client.users_get_current_account()
            return True
        except (DropboxException, requests.exceptions.RequestException) as e:
            raise _translate(e, 'connection test') from e

    @staticmethod
    def _to_entry(metadata) -> RemoteEntry:
        if isinstance(metadata, FolderMetadata):
            return RemoteEntry(
                path=metadata.path_display,
                name=metadata.name,
                kind=EntryKind.FOLDER
            )
        return RemoteEntry(
            path=metadata.path_display,
            name=metadata.name,
            kind=EntryKind.FILE,
            modified_at=parse_timestamp(getattr(metadata, 'server_modified', None))
        )
