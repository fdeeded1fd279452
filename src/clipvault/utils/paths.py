import re
from datetime import datetime

from clipvault.constants import MAX_PATH_DEPTH


def _normalize_separators(path: str) -> str:
    return path.replace("\\", "/")


def sanitize_user_path(path: str) -> str:
    """
    Strict sanitizer for user-configured base paths (e.g. a custom download folder).
    Drops empty, '.' and '..' segments and caps nesting depth.
    """
    if not path:
        return ""

    segments = [
        segment for segment in _normalize_separators(path).split("/")
        if segment and segment not in (".", "..")
    ]
    return "/".join(segments[:MAX_PATH_DEPTH])


def sanitize_generated_path(path: str) -> str:
    """
    Permissive sanitizer for template-generated names that may carry nested folders,
    e.g. "2025/01/article". Every '..' becomes a separator instead of being honoured.
    """
    if not path:
        return ""

    normalized = _normalize_separators(path)
    normalized = normalized.replace("..", "/")
    normalized = re.sub(r"/+", "/", normalized)

    segments = [segment for segment in normalized.split("/") if segment and segment != "."]
    return "/".join(segments[:MAX_PATH_DEPTH])


def combine(base: str, generated: str) -> str:
    """
    Join a user base path and a generated name, each sanitized with its own policy.

    >>> combine("../../../System", "evil.md")
    'System/evil.md'
    """
    clean_base = sanitize_user_path(base)
    clean_generated = sanitize_generated_path(generated)

    if not clean_base:
        return clean_generated
    if not clean_generated:
        return clean_base
    return f"{clean_base}/{clean_generated}"


def is_safe(path: str) -> bool:
    """Last check before a path reaches any I/O call."""
    if not path:
        return False
    if "\0" in path:
        return False

    segments = path.split("/")
    if any(segment == ".." for segment in segments[1:]):
        return False

    depth = len([segment for segment in segments if segment and segment != ".."])
    if depth > MAX_PATH_DEPTH:
        return False

    if "//" in path or "\\" in path:
        return False

    return True


def directory_of(path: str) -> str:
    if "/" not in path:
        return ""
    return path[:path.rindex("/")]


def split_path(path: str) -> tuple[str, str]:
    clean = sanitize_user_path(path)
    return directory_of(clean), clean.rsplit("/", 1)[-1]


def with_timestamp_suffix(name: str, now: datetime | None = None) -> str:
    """
    Append a filesystem-friendly timestamp, keeping any extension in place:
    "notes/article.md" -> "notes/article_2025-01-06T10-00-00.md".
    """
    stamp = (now or datetime.now()).strftime("%Y-%m-%dT%H-%M-%S")
    directory, _, filename = name.rpartition("/")
    stem, dot, ext = filename.rpartition(".")
    if not dot or not stem:
        renamed = f"{filename}_{stamp}"
    else:
        renamed = f"{stem}_{stamp}.{ext}"
    return f"{directory}/{renamed}" if directory else renamed
