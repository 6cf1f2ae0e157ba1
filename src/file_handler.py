"""File writing operations for materialized namespaces.

Files are laid out as `<base_dir>/<app_id>/<filename>` and are replaced in
full on every write.
"""

import logging
import os
import tempfile
from pathlib import Path

from src.constants import MATERIALIZED_FILE_MODE

logger = logging.getLogger(__name__)


class FileSinkError(Exception):
    """Exception raised when a directory or file cannot be written."""

    def __init__(self, path: Path, error: OSError):
        super().__init__(f"Failed to write '{path}': {error}")
        self.path = path


def ensure_directory(path: Path) -> None:
    """Create a directory and all missing parents.

    Args:
        path: Directory to create. Existing directories are left alone.

    Raises:
        FileSinkError: If the directory cannot be created.
    """
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FileSinkError(path, e) from e


def write_file(base_dir: Path, app_id: str, filename: str, content: bytes) -> Path:
    """Write content to `<base_dir>/<app_id>/<filename>`, replacing the file.

    The content goes to a temporary file in the same directory first and is
    moved over the destination after it is flushed to disk, so readers never
    see a half written file.

    Args:
        base_dir: Output base directory.
        app_id: Apollo app id, used as subdirectory.
        filename: Canonical namespace filename.
        content: Bytes to write.

    Returns:
        Path of the written file.

    Raises:
        FileSinkError: If the directory or the file cannot be written.
    """
    app_dir = base_dir / app_id
    ensure_directory(app_dir)

    file_path = app_dir / filename
    tmp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            dir=app_dir, prefix=f".{filename}.", suffix=".tmp", delete=False
        ) as tmp:
            tmp_path = Path(tmp.name)
            tmp.write(content)
            os.chmod(tmp_path, MATERIALIZED_FILE_MODE)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_path, file_path)
    except OSError as e:
        if tmp_path is not None:
            tmp_path.unlink(missing_ok=True)
        raise FileSinkError(file_path, e) from e

    logger.debug("Wrote %d bytes to '%s'", len(content), file_path)
    return file_path
