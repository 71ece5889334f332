"""Fixed-capacity FIFO of recent log records.

Pushing into a full buffer evicts the oldest entry; nothing is ever rejected.
"""

from __future__ import annotations

from typing import Generic, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """Bounded circular buffer with O(1) push.

    Example:
        >>> buf = RingBuffer[int](3)
        >>> for i in range(5):
        ...     buf.push(i)
        >>> buf.get_all()
        [2, 3, 4]
    """

    __slots__ = ("_items", "_capacity", "_head", "_size")

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._items: list[T | None] = [None] * capacity
        self._head = 0
        self._size = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def push(self, item: T) -> None:
        self._items[self._head] = item
        self._head = (self._head + 1) % self._capacity
        if self._size < self._capacity:
            self._size += 1

    def get_all(self) -> list[T]:
        """Snapshot of the contents, oldest first."""
        if self._size < self._capacity:
            return [item for item in self._items[: self._size]]  # type: ignore[misc]
        return [
            item  # type: ignore[misc]
            for item in self._items[self._head :] + self._items[: self._head]
        ]

    def clear(self) -> None:
        for index in range(self._capacity):
            self._items[index] = None
        self._head = 0
        self._size = 0

    def __len__(self) -> int:
        return self._size

    def __repr__(self) -> str:
        return f"RingBuffer(capacity={self._capacity}, size={self._size})"
