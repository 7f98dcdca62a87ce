from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import final

from .datastructures import RWLock
from .tools import type_identity


@dataclass(frozen=True, slots=True)
class TypeKey:
    """Identity of a model class.

    ``name`` is the bare class name used for join matching; equality and
    hashing use only ``qualified`` so that two same-named classes from
    different modules get separate cache entries.
    """

    name: str = field(compare=False)
    qualified: str

    @classmethod
    def of(cls, model: type) -> TypeKey:
        return cls(name=model.__name__, qualified=type_identity(model))


@dataclass(frozen=True, slots=True)
class FieldDescriptor:
    """One tagged field of a model: a column, or a nested model when ``child`` is set."""

    tag: str
    child: SchemaNode | None = None

    @property
    def is_nested(self) -> bool:
        return self.child is not None


@dataclass(frozen=True, slots=True)
class SchemaNode:
    """Normalized column/nesting structure of one model.

    Attributes:
        name: Bare class name of the model, matched against join directives.
        table_alias: Default SQL alias prefixing this node's columns.
        path: Dotted chain of column tags from the root to this node
            (empty at the root), used for ``AS "path.column"`` result aliases.
        fields: Tagged fields in declaration order.
    """

    name: str
    table_alias: str
    path: str = ""
    fields: tuple[FieldDescriptor, ...] = ()

    def walk(self) -> Iterator[SchemaNode]:
        """Yield this node and every nested node, depth first."""
        yield self
        for descriptor in self.fields:
            if descriptor.child is not None:
                yield from descriptor.child.walk()

    def names(self) -> frozenset[str]:
        return frozenset(node.name for node in self.walk())


@final
class SchemaCache:
    """Process-lifetime mapping of ``TypeKey`` to its introspected ``SchemaNode``.

    Reads share an ``RWLock`` whose write side is only held for the dict
    insert. Building a missing tree is serialized per key: concurrent misses
    on the same key build it once, while reads and builds of other keys carry
    on. A tree is published only once fully built, so readers never observe a
    half-built entry. Stored trees are immutable and never evicted.
    """

    __slots__ = ("_building", "_building_lock", "_lock", "_nodes")

    def __init__(self) -> None:
        self._nodes: dict[TypeKey, SchemaNode] = {}
        self._lock = RWLock()
        self._building: dict[TypeKey, threading.Lock] = {}
        self._building_lock = threading.Lock()

    def get(self, key: TypeKey) -> SchemaNode | None:
        with self._lock.read():
            return self._nodes.get(key)

    def put(self, key: TypeKey, node: SchemaNode) -> SchemaNode:
        """Store *node* unless *key* already has a tree.

        Returns:
            The tree stored for *key* after the call.
        """
        with self._lock.write():
            return self._nodes.setdefault(key, node)

    def get_or_create(
        self,
        key: TypeKey,
        factory: Callable[[], SchemaNode],
    ) -> SchemaNode:
        """Return the tree for *key*, building it with *factory* on a miss.

        The factory runs under the key's own build lock and the key is checked
        again after acquiring it, so concurrent misses build the tree once.
        """
        if (node := self.get(key)) is not None:
            return node

        with self._key_lock(key):
            if (node := self.get(key)) is not None:
                return node

            return self.put(key, factory())

    def clear(self) -> None:
        with self._lock.write():
            self._nodes.clear()

    def _key_lock(self, key: TypeKey) -> threading.Lock:
        with self._building_lock:
            return self._building.setdefault(key, threading.Lock())

    def __contains__(self, key: object) -> bool:
        with self._lock.read():
            return key in self._nodes

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._nodes)
