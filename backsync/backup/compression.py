"""
Archive creation for local backups.

Supports multiple formats:
- none: Plain tar (.tar)
- tar.gz: Gzip compressed tar
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar
- zip: Standard zip compression
"""

import os
import tarfile
import zipfile
from datetime import datetime
from fnmatch import fnmatch
from pathlib import Path
from typing import List, Optional, Sequence


class CompressionError(Exception):
    """Raised when archive creation fails."""
    pass


EXTENSIONS = {
    'none': 'tar',
    'tar.gz': 'tar.gz',
    'tar.bz2': 'tar.bz2',
    'tar.xz': 'tar.xz',
    'zip': 'zip'
}

TAR_MODES = {
    'none': 'w',
    'tar.gz': 'w:gz',
    'tar.bz2': 'w:bz2',
    'tar.xz': 'w:xz'
}


def is_excluded(path: Path, exclude_patterns: Sequence[str]) -> bool:
    """
    Check if a path matches any exclude pattern.

    Patterns are matched against the full path and the file name;
    '**/name' matches the name at any depth.
    """
    for pattern in exclude_patterns:
        if fnmatch(str(path), pattern) or fnmatch(path.name, pattern):
            return True
        if pattern.startswith('**/') and fnmatch(path.name, pattern[3:]):
            return True
    return False


def create_archive(
    source_paths: List[str],
    output_path: str,
    compression_format: str = 'none',
    exclude_patterns: Optional[Sequence[str]] = None
) -> str:
    """
    Create an archive from source paths.

    Args:
        source_paths: List of file/directory paths to include in archive
        output_path: Path where archive should be created (without extension)
        compression_format: Format to use ('none', 'tar.gz', 'tar.bz2', 'tar.xz', 'zip')
        exclude_patterns: Glob patterns of files to leave out

    Returns:
        Full path to the created archive file

    Raises:
        CompressionError: If archive creation fails
        ValueError: If compression_format is invalid
    """
    if not source_paths:
        raise CompressionError("No source paths provided")

    if compression_format not in EXTENSIONS:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(EXTENSIONS.keys())}"
        )

    archive_path = f"{output_path}.{EXTENSIONS[compression_format]}"
    exclude_patterns = list(exclude_patterns or [])

    try:
        if compression_format == 'zip':
            _create_zip(source_paths, archive_path, exclude_patterns)
        else:
            _create_tar(source_paths, archive_path, TAR_MODES[compression_format], exclude_patterns)
        return archive_path
    except Exception as e:
        # Clean up partial archive on failure
        if os.path.exists(archive_path):
            try:
                os.remove(archive_path)
            except OSError:
                pass
        if isinstance(e, CompressionError):
            raise
        raise CompressionError(f"Failed to create archive: {e}") from e


def _create_zip(source_paths: List[str], archive_path: str, exclude_patterns: List[str]):
    with zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
        for source_path in source_paths:
            source = Path(source_path)

            if source.is_file():
                zipf.write(source, source.name)
            elif source.is_dir():
                for item in source.rglob('*'):
                    if item.is_file() and not is_excluded(item, exclude_patterns):
                        zipf.write(item, item.relative_to(source.parent))
            else:
                raise CompressionError(f"Path does not exist: {source_path}")


def _create_tar(source_paths: List[str], archive_path: str, mode: str, exclude_patterns: List[str]):
    def exclude_filter(member: tarfile.TarInfo) -> Optional[tarfile.TarInfo]:
        if is_excluded(Path(member.name), exclude_patterns):
            return None
        return member

    with tarfile.open(archive_path, mode) as tar:
        for source_path in source_paths:
            source = Path(source_path)

            if not source.exists():
                raise CompressionError(f"Path does not exist: {source_path}")

            # Basename as arcname keeps the archive shallow
            tar.add(source, arcname=source.name, recursive=True, filter=exclude_filter)


def generate_archive_filename(backup_name: str, compression_format: str) -> str:
    """
    Generate a standardized archive filename.

    Format: {backup_name}-{YYYYMMDD_HHMMSS}.{ext}
    """
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    extension = EXTENSIONS.get(compression_format, 'tar')

    return f"{sanitize_name(backup_name)}-{timestamp}.{extension}"


def sanitize_name(name: str) -> str:
    """Replace spaces and special characters with underscores."""
    return "".join(
        c if c.isalnum() or c in ('-', '_') else '_'
        for c in name
    )


def strip_archive_extension(filename: str) -> str:
    """
    Strip archive extension from filename.

    Handles multi-part extensions like .tar.gz, .tar.bz2, .tar.xz
    """
    for extension in sorted(EXTENSIONS.values(), key=len, reverse=True):
        if filename.endswith('.' + extension):
            return filename[:-(len(extension) + 1)]
    return os.path.splitext(filename)[0]
