"""Name search over remote and local trees."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from filebridge.errors import RemoteError
from filebridge.local_files import list_local_dir
from filebridge.protocols import FileItem, TransferClient

logger = logging.getLogger(__name__)

NOISE_NAMES = frozenset({".git", "node_modules", "target", "dist", ".DS_Store"})


def matches_query(name: str, query: str) -> bool:
    """Match ``name`` against a query such as ``"report .pdf|.docx"``.

    Whitespace separates groups that must all match; ``|`` or ``,`` separate
    alternatives within a group. An alternative starting with ``.`` matches
    the end of the name, anything else matches anywhere. Case-insensitive.
    """
    if not query:
        return True
    if name in NOISE_NAMES:
        return False
    name_lower = name.lower()
    groups = query.lower().split()
    if not groups:
        return True
    for group in groups:
        options = [opt.strip() for opt in re.split(r"[|,]", group) if opt.strip()]
        if not any(
            name_lower.endswith(opt) if opt.startswith(".") else opt in name_lower
            for opt in options
        ):
            return False
    return True


def _should_descend(item: FileItem, query: str) -> bool:
    if not item.is_directory or item.is_symlink or item.name in NOISE_NAMES:
        return False
    return not item.name.startswith(".") or query.startswith(".")


def search_remote(
    client: TransferClient, path: str, query: str, recursive: bool
) -> list[FileItem]:
    """Search a remote directory. Unreadable subdirectories are skipped."""
    results: list[FileItem] = []
    _search_remote(client, path, query, recursive, results, is_root=True)
    return results


def _search_remote(
    client: TransferClient,
    path: str,
    query: str,
    recursive: bool,
    results: list[FileItem],
    is_root: bool = False,
) -> None:
    try:
        entries = client.list_dir(path)
    except RemoteError as e:
        if is_root:
            raise
        logger.debug("Skipping unreadable remote directory %s: %s", path, e)
        return
    for item in entries:
        if matches_query(item.name, query):
            results.append(item)
        if recursive and _should_descend(item, query):
            _search_remote(client, item.full_path, query, recursive, results)


def search_local(path: str | Path, query: str, recursive: bool) -> list[FileItem]:
    """Search a local directory. Raises FileNotFoundError if it does not exist."""
    root = Path(path)
    if not root.exists():
        raise FileNotFoundError(f"Path does not exist: {root}")
    if not recursive:
        return [item for item in list_local_dir(root) if matches_query(item.name, query)]

    results: list[FileItem] = []
    for dirpath, dirnames, _filenames in os.walk(root, onerror=_log_walk_error):
        for item in list_local_dir(dirpath):
            if matches_query(item.name, query):
                results.append(item)
        dirnames[:] = [
            d
            for d in dirnames
            if d not in NOISE_NAMES and (not d.startswith(".") or query.startswith("."))
        ]
    return results


def _log_walk_error(error: OSError) -> None:
    logger.debug("Skipping unreadable local directory: %s", error)
