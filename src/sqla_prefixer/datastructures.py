from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any, TypeVar


K = TypeVar("K")
V = TypeVar("V")


class frozendict(Mapping[K, V]):  # noqa: N801
    """Immutable, hashable mapping of join directives (model name to alias).

    ``Prefixer.columns`` normalizes its ``Join`` arguments into one of these so
    the directive set can be part of the ``lru_cache`` key of the render walk.
    Two maps are equal when they hold the same directives, whatever order the
    caller passed them in.

    Example:
        >>> joins = frozendict({"Address": "a"})
        >>> joins["Address"]
        'a'
        >>> {joins: 1}[frozendict(Address="a")]
        1
    """

    __slots__ = ("_dict", "_hash")

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self._dict: dict[K, V] = dict(*args, **kwargs)
        self._hash = hash(frozenset(self._dict.items()))

    def __getitem__(self, key: K) -> V:
        return self._dict[key]

    def __iter__(self) -> Iterator[K]:
        return iter(self._dict)

    def __len__(self) -> int:
        return len(self._dict)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._dict!r}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, frozendict):
            return NotImplemented

        return self._hash == other._hash and self._dict == other._dict

    def __hash__(self) -> int:
        return self._hash


class RWLock:
    """Writer-preferring reader/writer lock.

    Any number of readers may hold the lock at once; a writer waits until no
    reader or writer holds it and then holds it alone. Once a writer is
    waiting, new readers queue behind it so a steady stream of reads cannot
    starve it. Not reentrant.
    """

    __slots__ = ("_cond", "_readers", "_writer", "_writers_waiting")

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ExclusionSet:
    """Insert-only set of qualified type names known to carry no column tags.

    Shared between cloned prefixers; every access goes through one lock.
    """

    __slots__ = ("_items", "_lock")

    def __init__(self) -> None:
        self._items: set[str] = set()
        self._lock = threading.Lock()

    def add(self, identity: str) -> bool:
        """Insert *identity* if absent.

        Returns:
            ``True`` if this call inserted it, ``False`` if it was already there.
        """
        with self._lock:
            if identity in self._items:
                return False
            self._items.add(identity)
            return True

    def snapshot(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._items)

    def __contains__(self, identity: object) -> bool:
        with self._lock:
            return identity in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(self.snapshot())

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {sorted(self.snapshot())!r}>"
