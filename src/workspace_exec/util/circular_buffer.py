"""Fixed-capacity ring buffer used to retain the most recent log lines."""

from __future__ import annotations

from typing import Generic, TypeVar

T = TypeVar("T")


class CircularBuffer(Generic[T]):
    """Bounded FIFO that overwrites its oldest item once full.

    The backing list is allocated once in ``__init__``; ``push`` and ``clear``
    only move the logical ``head``/``tail`` pointers.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._buffer: list[T | None] = [None] * capacity
        self._head = 0  # oldest item
        self._tail = 0  # next write slot
        self._size = 0

    @property
    def capacity(self) -> int:
        """Return the maximum number of retained items."""

        return self._capacity

    @property
    def length(self) -> int:
        """Return the number of items currently stored."""

        return self._size

    def __len__(self) -> int:
        return self._size

    def push(self, item: T) -> None:
        """Append an item, evicting the oldest one when at capacity."""

        self._buffer[self._tail] = item
        self._tail = (self._tail + 1) % self._capacity
        if self._size < self._capacity:
            self._size += 1
        else:
            self._head = (self._head + 1) % self._capacity

    def to_list(self) -> list[T]:
        """Return stored items ordered oldest to newest."""

        items: list[T] = []
        index = self._head
        for _ in range(self._size):
            items.append(self._buffer[index])  # type: ignore[arg-type]
            index = (index + 1) % self._capacity
        return items

    def is_empty(self) -> bool:
        return self._size == 0

    def is_full(self) -> bool:
        return self._size == self._capacity

    def clear(self) -> None:
        """Forget all items without reallocating storage."""

        self._head = 0
        self._tail = 0
        self._size = 0
