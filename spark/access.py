from fnmatch import fnmatchcase
from typing import Iterable


def is_denied(path: str, deny_patterns: Iterable[str]) -> bool:
    """True when any ``/``-separated segment of ``path`` matches any deny glob."""
    patterns = tuple(deny_patterns)
    if not patterns:
        return False
    for segment in path.split("/"):
        for pattern in patterns:
            if fnmatchcase(segment, pattern):
                return True
    return False
