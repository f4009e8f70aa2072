from __future__ import annotations

from functools import cmp_to_key
from typing import Iterable, List, Optional, Tuple, Union

VersionKey = Tuple[Tuple[int, Union[int, str]], ...]


def version_key(version: Optional[str]) -> VersionKey:
    """
    Convert a version string into a sortable tuple.

    Components are split on '.'; all-digit components compare numerically and
    sort before any non-numeric component, which compares lexicographically.
    Trailing zero components are dropped so '1.2' and '1.2.0' are equal, while
    a shorter prefix still sorts before a longer version ('1.2' < '1.2.1').
    """
    v_str = str(version) if version is not None else ""
    if not v_str:
        return ()

    parts = []
    for part in v_str.split("."):
        if part.isascii() and part.isdigit():
            parts.append((0, int(part)))
        else:
            parts.append((1, part))

    while parts and parts[-1] == (0, 0):
        parts.pop()
    return tuple(parts)


def compare_versions(a: Optional[str], b: Optional[str]) -> int:
    """Three-way comparison: -1 if a is older, 0 if equal, 1 if a is newer."""
    ka, kb = version_key(a), version_key(b)
    if ka < kb:
        return -1
    if ka > kb:
        return 1
    return 0


def sort_versions(versions: Iterable[str], newest_first: bool = False) -> List[str]:
    """Stable sort; versions that compare equal keep their input order."""
    return sorted(versions, key=cmp_to_key(compare_versions), reverse=newest_first)


def newest(versions: Iterable[str]) -> Optional[str]:
    """Return the newest version, preferring the first of several equal ones."""
    best: Optional[str] = None
    for v in versions:
        if best is None or compare_versions(v, best) > 0:
            best = v
    return best


def in_range(version: str, minimum: Optional[str] = None, maximum: Optional[str] = None) -> bool:
    """Inclusive range check using the version ordering."""
    if minimum is not None and compare_versions(version, minimum) < 0:
        return False
    if maximum is not None and compare_versions(version, maximum) > 0:
        return False
    return True
