import re
from typing import Iterable, List, Optional, Tuple

SEPARATORS = re.compile(r'[/\\]+')
ILLEGAL_NAME_CHARS = re.compile(r'[<>:"/\\|?*]')


def split(path: Optional[str]) -> List[str]:
    """
    Split a path into its non-empty segments.

    Forward and back slashes are both separators and runs of separators
    collapse, so "a//b\\c/" gives ["a", "b", "c"].
    """
    if not path:
        return []
    return [segment for segment in SEPARATORS.split(path) if segment]


def join(segments: Iterable[str]) -> str:
    """Join segments with forward slashes, no leading or trailing slash"""
    return "/".join(segment for segment in segments if segment)


def normalize(path: Optional[str]) -> str:
    return join(split(path))


def sanitize_name(name: str) -> str:
    """Replace characters that are illegal in a file name with underscores"""
    return ILLEGAL_NAME_CHARS.sub('_', name)


def sanitize_with_flag(name: str) -> Tuple[str, bool]:
    """Sanitize a name and report whether anything had to be replaced"""
    sanitized = sanitize_name(name)
    return sanitized, sanitized != name


def parent_path(path: str) -> str:
    return join(split(path)[:-1])


def basename(path: str) -> str:
    segments = split(path)
    return segments[-1] if segments else ""


def child_path(parent: str, name: str) -> str:
    return f"{parent}/{name}" if parent else name


def split_extension(name: str) -> Tuple[str, str]:
    """
    Split "stem.ext" into ("stem", ".ext").

    Leading dots do not start an extension: ".hidden" has none.
    """
    dot = name.rfind('.')
    if dot <= 0:
        return name, ""
    return name[:dot], name[dot:]


def has_extension(name: str) -> bool:
    """
    True if name ends in a file extension.

    The suffix must contain a letter, so version-like names such as "v1.2"
    count as having none.
    """
    extension = split_extension(name)[1]
    return any(ch.isalpha() for ch in extension)


def is_within(path: str, ancestor: str) -> bool:
    """True if path equals ancestor or lies below it (root contains everything)"""
    if not ancestor:
        return True
    return path == ancestor or path.startswith(ancestor + "/")


def strip_prefix(path: Optional[str], prefix: str) -> str:
    """Remove the workspace root prefix from a backend path and normalize it"""
    segments = split(path)
    prefix_segments = split(prefix)
    if prefix_segments and segments[:len(prefix_segments)] == prefix_segments:
        segments = segments[len(prefix_segments):]
    return join(segments)
