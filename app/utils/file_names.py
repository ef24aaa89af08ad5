# app/utils/file_names.py
"""
Path segment helpers for export artifacts.

Chapter names, story titles and custom export names become folder names
and blob keys, so they are reduced to a portable character set here.
The sanitization steps run in a fixed order and must stay that way:
archives produced by older releases depend on the exact output.
"""

import posixpath
import re
from urllib.parse import urlparse

from app.constants import FileNames

# Characters that are invalid on at least one common filesystem
INVALID_CHARS_PATTERN = re.compile(r'[<>:"/\\|?*]')
WHITESPACE_PATTERN = re.compile(r"\s+")
UNDERSCORE_RUN_PATTERN = re.compile(r"_{2,}")
EDGE_UNDERSCORE_PATTERN = re.compile(r"^_|_$")


def sanitize_file_name(name: str | None) -> str:
    """
    Reduce a display name to a safe path segment.

    >>> sanitize_file_name("My Story")
    'My_Story'
    >>> sanitize_file_name("")
    'unnamed'
    """
    if not name:
        return FileNames.FALLBACK

    cleaned = INVALID_CHARS_PATTERN.sub("", name)
    cleaned = WHITESPACE_PATTERN.sub("_", cleaned)
    cleaned = UNDERSCORE_RUN_PATTERN.sub("_", cleaned)
    cleaned = EDGE_UNDERSCORE_PATTERN.sub("", cleaned)
    cleaned = cleaned[: FileNames.MAX_CHARS]

    return cleaned or FileNames.FALLBACK


def file_extension(uri: str | None, default: str = "bin") -> str:
    """Extension of a blob key or URL without the dot, or `default`."""
    if not uri:
        return default
    path = urlparse(uri).path or uri
    ext = posixpath.splitext(path)[1]
    return ext[1:].lower() if len(ext) > 1 else default
