"""
Archive handling for tracked files.

Each tracked file is packed into a single-member zip archive named
{safe_name}_{YYYYMMDD}.zip inside scratch storage.
"""

import os
import glob
import zipfile
from datetime import datetime
from typing import Optional

from dbkeeper.models import sanitize_path


ARCHIVE_EXTENSION = 'zip'


class CompressionError(Exception):
    """Raised when archive creation fails."""
    pass


class SourceMissing(CompressionError):
    """Raised when the file to archive does not exist."""
    pass


class EmptyArchive(CompressionError):
    """Raised when the created archive has zero size."""
    pass


def generate_date_tag(now: Optional[datetime] = None) -> str:
    """Return the YYYYMMDD tag used in archive names."""
    return (now or datetime.now()).strftime('%Y%m%d')


def generate_archive_filename(local_path: str, date_tag: str) -> str:
    """
    Generate the archive filename for a tracked file.

    Format: {sanitized_path}_{YYYYMMDD}.zip

    Args:
        local_path: Path of the source file
        date_tag: Date tag for the run

    Returns:
        Filename (without directory)
    """
    return f"{sanitize_path(local_path)}_{date_tag}.{ARCHIVE_EXTENSION}"


def create_archive(local_path: str, scratch_dir: str, date_tag: str, dry_run: bool = False) -> str:
    """
    Create a zip archive containing a single source file.

    Args:
        local_path: File to archive
        scratch_dir: Directory where the archive is written
        date_tag: Date tag for the archive name
        dry_run: If True, compute the archive path without writing anything

    Returns:
        Full path to the archive file

    Raises:
        SourceMissing: If local_path is not an existing file
        EmptyArchive: If the written archive is empty
        CompressionError: If the archive cannot be written
    """
    if not os.path.isfile(local_path):
        raise SourceMissing(f"File not found: {local_path}")

    archive_path = os.path.join(scratch_dir, generate_archive_filename(local_path, date_tag))

    if dry_run:
        return archive_path

    try:
        with zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
            # Only the basename goes into the archive
            zipf.write(local_path, os.path.basename(local_path))
    except Exception as e:
        # Clean up partial archive on failure
        if os.path.exists(archive_path):
            try:
                os.remove(archive_path)
            except OSError:
                pass
        raise CompressionError(f"Failed to create archive: {e}")

    if get_archive_size(archive_path) == 0:
        raise EmptyArchive(f"Archive is empty: {archive_path}")

    return archive_path


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Args:
        archive_path: Path to the archive file

    Returns:
        File size in bytes

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except Exception as e:
        raise CompressionError(f"Failed to get archive size: {e}")


def cleanup_scratch(scratch_dir: str) -> int:
    """
    Remove every archive left in scratch storage.

    Returns:
        Number of files removed
    """
    removed = 0
    for path in glob.glob(os.path.join(scratch_dir, f'*.{ARCHIVE_EXTENSION}')):
        try:
            os.remove(path)
            removed += 1
        except FileNotFoundError:
            pass
    return removed
