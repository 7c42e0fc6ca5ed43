import posixpath
from pathlib import PurePath


def normalize_path(path) -> PurePath:
    """
    Lexically normalise a path: drop "." components and let ".." remove the
    previous component. The filesystem is never consulted, so symlinks are
    not resolved and the path does not have to exist.
    """
    path = PurePath(path)
    parts = []
    for part in path.parts:
        if part == '.':
            continue
        if part == '..':
            # never pop the anchor ("/" or a drive)
            if parts and parts[-1] != path.anchor:
                parts.pop()
            continue
        parts.append(part)
    if not parts:
        return PurePath()
    return PurePath(*parts)


def is_within(path, root) -> bool:
    """True if ``path`` lies strictly below ``root`` once both are normalised."""
    path, root = normalize_path(path), normalize_path(root)
    return path != root and path.is_relative_to(root)


def url_path_to_relative(url_path: str) -> str:
    """Map the path component of an artifact URL to a mirror-relative path.

    Dot segments are removed against the URL root, so the result never
    climbs above it. Only "%20" is decoded; everything else is kept verbatim.
    """
    if not url_path:
        return ""
    path = posixpath.normpath("/" + url_path.replace("%20", " "))
    return path.lstrip('/')
