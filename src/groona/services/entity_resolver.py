from __future__ import annotations

from typing import Any, Callable, Optional, Sequence, TypeVar, Union

from ..domain.errors import ResolutionError


T = TypeVar("T")
KeyFn = Union[str, Callable[[Any], Optional[str]]]


def _key_value(item: Any, key: KeyFn) -> str:
    if callable(key):
        value = key(item)
    elif isinstance(item, dict):
        value = item.get(key)
    else:
        value = getattr(item, key, None)
    return (value or "").strip().lower()


def find_by_name(collection: Sequence[T], query: Optional[str], key: KeyFn = "name") -> Optional[T]:
    """Exact (case-insensitive, trimmed) match first, then substring either way.

    Collection order breaks ties in both phases.
    """

    needle = (query or "").strip().lower()
    if not needle or not collection:
        return None
    for item in collection:
        if _key_value(item, key) == needle:
            return item
    for item in collection:
        hay = _key_value(item, key)
        if hay and (needle in hay or hay in needle):
            return item
    return None


def find_user_by_email(users: Sequence[T], email: Optional[str]) -> Optional[T]:
    needle = (email or "").strip().lower()
    if not needle:
        return None
    for user in users:
        if _key_value(user, "email") == needle:
            return user
    return None


def require_by_name(collection: Sequence[T], query: str, label: str, key: KeyFn = "name") -> T:
    found = find_by_name(collection, query, key=key)
    if found is None:
        raise ResolutionError(f'{label} "{query}" not found', value=query)
    return found
