"""Resolve a model-chosen label to one registered behaviour."""

import re
from typing import Generic, Optional, Sequence, TypeVar

T = TypeVar("T")

_SEPARATORS = re.compile(r"[\s_\-.]+")


def normalize_name(name: Optional[str]) -> str:
    """Case- and separator-insensitive form: "Send_Message" -> "sendmessage"."""
    if not name:
        return ""
    return _SEPARATORS.sub("", name).lower()


def contains_either_way(a: str, b: str) -> bool:
    if not a or not b:
        return False
    return a in b or b in a


class ActionMatcher(Generic[T]):
    """
    Lookup table from normalized names and aliases to behaviours.

    Resolution order, first hit wins:
        1. exact normalized name
        2. name containment (either direction), in registration order
        3. exact normalized simile
        4. simile containment (either direction), in registration order

    The table is rebuilt on registration, so resolving is a pure function
    of (registry, label).
    """

    def __init__(self):
        self._entries: list[tuple[str, list[str], T]] = []
        self._by_name: dict[str, T] = {}
        self._by_simile: dict[str, T] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def register(self, name: str, similes: Sequence[str], item: T) -> None:
        key = normalize_name(name)
        aliases = [normalize_name(s) for s in similes if normalize_name(s)]
        self._entries.append((key, aliases, item))
        # earlier registrations keep priority on collisions
        self._by_name.setdefault(key, item)
        for alias in aliases:
            self._by_simile.setdefault(alias, item)

    def resolve(self, label: Optional[str]) -> Optional[T]:
        wanted = normalize_name(label)
        if not wanted:
            return None

        if wanted in self._by_name:
            return self._by_name[wanted]
        for key, _, item in self._entries:
            if contains_either_way(key, wanted):
                return item

        if wanted in self._by_simile:
            return self._by_simile[wanted]
        for _, aliases, item in self._entries:
            if any(contains_either_way(alias, wanted) for alias in aliases):
                return item
        return None
