"""Remote path normalization."""

from __future__ import annotations

import re

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://")


def normalize_remote_path(path: str) -> str:
    """Turn a UI-facing path into a canonical absolute remote path.

    ``scheme://host[:port]/rest`` becomes ``/rest``. A leading segment that
    looks like a hostname (``example.com/docs``) is dropped. Anything else is
    returned unchanged.
    """
    match = _SCHEME_RE.match(path)
    if match:
        remainder = path[match.end():]
        slash = remainder.find("/")
        if slash == -1:
            return "/"
        return remainder[slash:]

    parts = path.split("/")
    if len(parts) > 1 and "." in parts[0] and not parts[0].startswith("."):
        result = "/".join(parts[1:])
        if not result:
            return "/"
        if not result.startswith("/"):
            result = f"/{result}"
        return result

    return path


def join_remote(parent: str, name: str) -> str:
    """Join a remote directory and a child name with a single separator."""
    return f"{parent.rstrip('/')}/{name}"


def remote_basename(path: str) -> str:
    stripped = path.rstrip("/")
    if not stripped:
        return "/"
    return stripped.rsplit("/", 1)[-1]
