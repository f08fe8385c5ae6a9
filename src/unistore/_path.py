"""Slash-delimited path helpers.

Paths are backend-relative strings. A trailing slash marks a directory-like
path; the empty string is the root of the current container.
"""

from __future__ import annotations

from unistore._errors import InvalidPath


def normalize(raw: str, *, directory: bool | None = None) -> str:
    """Normalize ``raw`` into canonical form.

    Backslashes become slashes, empty and ``.`` segments are dropped and a
    leading slash is removed. The trailing slash is kept, forced or stripped
    according to ``directory`` (``None`` keeps what ``raw`` had).

    :raises InvalidPath: If the path contains a null byte or a ``..`` segment.
    """
    if "\0" in raw:
        raise InvalidPath("Path contains null byte", path=raw)
    p = raw.replace("\\", "/")
    parts: list[str] = []
    for segment in p.split("/"):
        if segment == "" or segment == ".":
            continue
        if segment == "..":
            raise InvalidPath("Path contains '..' segment", path=raw)
        parts.append(segment)
    if not parts:
        return ""
    joined = "/".join(parts)
    trailing = p.endswith("/") if directory is None else directory
    return f"{joined}/" if trailing else joined


def is_directory_path(path: str) -> bool:
    """Return ``True`` for the root and for paths ending in a slash."""
    return path == "" or path.endswith("/")


def as_directory(path: str) -> str:
    """Return ``path`` with exactly one trailing slash (root stays empty)."""
    stripped = path.rstrip("/")
    return f"{stripped}/" if stripped else ""


def strip_slash(path: str) -> str:
    return path.rstrip("/")


def name_of(path: str) -> str:
    """Final segment of ``path``, ignoring a trailing slash."""
    return path.rstrip("/").rsplit("/", 1)[-1]


def parent_of(path: str) -> str:
    """Directory containing ``path``, with trailing slash; ``""`` for top-level paths.

    Example: ``parent_of("a/b/c.txt")`` is ``"a/b/"``, ``parent_of("a/")`` is ``""``.
    """
    stripped = path.rstrip("/")
    if "/" not in stripped:
        return ""
    return stripped.rsplit("/", 1)[0] + "/"


def join(directory: str, name: str) -> str:
    """Join a directory path and a child name."""
    return f"{as_directory(directory)}{name.lstrip('/')}"


def sibling(path: str, new_name: str) -> str:
    """Path with the final segment replaced by ``new_name``, keeping the directory marker."""
    target = join(parent_of(path), new_name.rstrip("/"))
    return as_directory(target) if is_directory_path(path) else target


def is_child_of(path: str, directory: str) -> bool:
    """Return ``True`` if ``path`` is a direct child of ``directory``."""
    return path.rstrip("/") != "" and parent_of(path) == as_directory(directory)


def relative_to(path: str, directory: str) -> str:
    """Strip the ``directory`` prefix from ``path``.

    :raises InvalidPath: If ``path`` is not inside ``directory``.
    """
    prefix = as_directory(directory)
    if not path.startswith(prefix):
        raise InvalidPath(f"Path {path!r} is not under {prefix!r}", path=path)
    return path[len(prefix) :]
