"""Local filesystem operations returning FileItem objects."""

from __future__ import annotations

import logging
import shutil
import stat
from datetime import datetime
from pathlib import Path

from filebridge.protocols import FileItem

logger = logging.getLogger(__name__)


def list_local_dir(directory: str | Path) -> list[FileItem]:
    """List contents of a local directory. Unstat-able entries get ``?`` permissions."""
    directory = Path(directory)
    files: list[FileItem] = []
    try:
        entries = list(directory.iterdir())
    except PermissionError as e:
        logger.warning("Cannot list directory %s: %s", directory, e)
        return files
    for entry in entries:
        try:
            st = entry.stat()
            is_dir = entry.is_dir()
            is_link = entry.is_symlink()
            files.append(
                FileItem(
                    name=entry.name,
                    full_path=str(entry),
                    size=0 if is_dir else st.st_size,
                    is_directory=is_dir,
                    modified=datetime.fromtimestamp(st.st_mtime),
                    permissions=stat.filemode(st.st_mode),
                    is_symlink=is_link,
                )
            )
        except OSError as e:
            logger.debug("Cannot stat %s: %s", entry, e)
            files.append(FileItem(name=entry.name, full_path=str(entry), permissions="?"))
    return files


def delete_local(path: str | Path) -> None:
    """Delete a local file or directory tree."""
    p = Path(path)
    if p.is_dir() and not p.is_symlink():
        shutil.rmtree(p)
    else:
        p.unlink()


def rename_local(old_path: str | Path, new_path: str | Path) -> Path:
    """Rename a local file or directory. Returns the new path."""
    new = Path(new_path)
    Path(old_path).rename(new)
    return new


def mkdir_local(path: str | Path) -> Path:
    """Create a directory and any missing parents."""
    new_dir = Path(path)
    new_dir.mkdir(parents=True, exist_ok=True)
    return new_dir


def create_local_file(path: str | Path) -> Path:
    """Create an empty file, truncating an existing one."""
    p = Path(path)
    p.write_bytes(b"")
    return p


def read_local_text(path: str | Path) -> str:
    return Path(path).read_text(encoding="utf-8")


def write_local_text(path: str | Path, content: str) -> None:
    Path(path).write_text(content, encoding="utf-8")


def read_local_bytes(path: str | Path) -> bytes:
    return Path(path).read_bytes()
