from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Generic, TypeVar

HISTORY_CAP = 500
HISTORY_DROP = 100

T = TypeVar("T")


@dataclass
class History(Generic[T]):
    """Undo stack that forgets its oldest `drop` entries whenever it reaches `cap`."""

    cap: int = HISTORY_CAP
    drop: int = HISTORY_DROP
    _entries: list[T] = field(default_factory=list, repr=False)

    def __post_init__(self) -> None:
        assert 0 < self.drop <= self.cap, f"Cannot drop {self.drop} of at most {self.cap} entries"

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[T]:
        return iter(self._entries)

    def push(self, entry: T) -> None:
        if len(self._entries) >= self.cap:
            del self._entries[: self.drop]
        self._entries.append(entry)

    def pop(self) -> T | None:
        return self._entries.pop() if self._entries else None

    def clear(self) -> None:
        self._entries.clear()

    def recent(self, count: int = 10) -> list[T]:
        return self._entries[: -count - 1 : -1]
