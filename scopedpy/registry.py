from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Iterator, List


@dataclass(frozen=True)
class Entry:
    resource: Any
    hint: Any = None

    def __iter__(self):
        yield self.resource; yield self.hint


class CloseRegistry:
    """LIFO stack of acquired, not-yet-closed resources for one scope.

    Entries are pushed in acquisition order and handed out most recent
    first, which is the order they must be closed in.
    """
    def __init__(self):
        self._stack: List[Entry] = []

    def push(self, resource: Any, hint: Any = None) -> None:
        self._stack.append(Entry(resource, hint))

    def entries(self) -> List[Entry]:
        return self._stack[::-1]

    def drain(self) -> List[Entry]:
        """Return all entries in close order and empty the registry."""
        out = self._stack[::-1]
        self._stack.clear()
        return out

    def __len__(self) -> int: return len(self._stack)
    def __iter__(self) -> Iterator[Entry]: return iter(self.entries())
