from __future__ import annotations

import dataclasses
import logging
import sys
import warnings
from collections.abc import Iterable, Mapping
from functools import lru_cache
from typing import Any, Final, Literal, NamedTuple


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

import sqlalchemy as sa

from .datastructures import ExclusionSet, frozendict
from .node import FieldDescriptor, SchemaCache, SchemaNode, TypeKey
from .tools import (
    TAG_KEY,
    _get_field_types,
    get_column_tag,
    get_field_types,
    is_model,
    nested_model_type,
    type_identity,
)


logger = logging.getLogger("sqla_prefixer")

COLUMNS_PLACEHOLDER: Final[str] = "{columns}"
COLUMN_SEPARATOR: Final[str] = ", "

EmptyNestedPolicy = Literal["omit", "column"]
_EMPTY_NESTED_POLICIES: Final[frozenset[str]] = frozenset({"omit", "column"})


class Join(NamedTuple):
    """Join directive: include the nested branch of ``model``, optionally re-aliased.

    ``model`` is a model class or its bare class name. An empty ``alias`` keeps
    the branch's default alias (the tag of the field holding it).
    """

    model: str | type
    alias: str = ""

    @property
    def name(self) -> str:
        return self.model if isinstance(self.model, str) else self.model.__name__


class ColumnRef(NamedTuple):
    """One rendered column: ``alias.column`` plus the result alias inside nested branches."""

    table_alias: str
    column: str
    path: str = ""

    @property
    def reference(self) -> str:
        return f"{self.table_alias}.{self.column}" if self.table_alias else self.column

    @property
    def label(self) -> str | None:
        return f"{self.path}.{self.column}" if self.path else None

    def sql(self) -> str:
        if (label := self.label) is None:
            return self.reference

        return f'{self.reference} AS "{label}"'

    def to_column(self) -> sa.ColumnElement[Any]:
        column = sa.literal_column(self.reference)

        return column if (label := self.label) is None else column.label(label)


class SchemaIntrospector:
    """Walks a dataclass model once and produces its ``SchemaNode`` tree.

    Nested models whose subtree turns out to carry no column tag are recorded
    in the shared ``ExclusionSet`` so later scans skip them without recursing.
    What happens to such a field is decided by ``empty_nested``:

    * ``"omit"`` -- the field is dropped.
    * ``"column"`` -- the field is kept as a plain column named by its tag.

    Introspection never raises for model shape issues; unsupported shapes
    simply contribute no fields.
    """

    __slots__ = ("debug", "empty_nested", "excluded", "tag_key")

    def __init__(
        self,
        excluded: ExclusionSet,
        *,
        tag_key: str = TAG_KEY,
        empty_nested: EmptyNestedPolicy = "omit",
        debug: bool = False,
    ) -> None:
        self.excluded = excluded
        self.tag_key = tag_key
        self.empty_nested = empty_nested
        self.debug = debug

    def introspect(
        self,
        model_type: Any,
        db_alias: str,
        path: str = "",
    ) -> tuple[SchemaNode, bool]:
        """Build the schema tree of *model_type*.

        Args:
            model_type: Dataclass model class.
            db_alias: Default table alias of the returned node.
            path: Dotted tag chain leading to this model (empty for a root).

        Returns:
            ``(node, has_any_tagged_field)``. A non-dataclass input yields an
            empty node and ``False``.
        """
        if not is_model(model_type):
            name = getattr(model_type, "__name__", type(model_type).__name__)

            return SchemaNode(name=name, table_alias=db_alias, path=path), False

        node, _ = self._scan(model_type, db_alias, path, frozenset())

        return node, bool(node.fields)

    def _scan(
        self,
        model: type,
        alias: str,
        path: str,
        seen: frozenset[type],
    ) -> tuple[SchemaNode, bool]:
        """Returns the node and whether the cycle guard cut anything below it."""
        seen = seen | {model}
        annotations = get_field_types(model)
        fields: list[FieldDescriptor] = []
        cut = False

        for field in dataclasses.fields(model):
            if (tag := get_column_tag(field, self.tag_key)) is None:
                continue

            descriptor, field_cut = self._describe(
                tag, annotations.get(field.name, field.type), path, seen
            )
            cut |= field_cut
            if descriptor is not None:
                fields.append(descriptor)

        node = SchemaNode(name=model.__name__, table_alias=alias, path=path, fields=tuple(fields))

        return node, cut

    def _describe(
        self,
        tag: str,
        annotation: Any,
        path: str,
        seen: frozenset[type],
    ) -> tuple[FieldDescriptor | None, bool]:
        if (nested := nested_model_type(annotation)) is None:
            return FieldDescriptor(tag=tag), False

        if nested in seen:
            self._log("skipping field %r: %s is already on the path", tag, nested.__qualname__)
            return None, True

        identity = type_identity(nested)
        cut = False
        if identity not in self.excluded:
            child_path = f"{path}.{tag}" if path else tag
            child, cut = self._scan(nested, tag, child_path, seen)
            if child.fields:
                return FieldDescriptor(tag=tag, child=child), cut

            # emptiness caused by the cycle guard depends on the path, so it is not memoized
            if cut:
                self._log("not excluding %s: empty only on this path", identity)
            elif self.excluded.add(identity):
                self._log("excluded %s: no tagged fields", identity)

        return (FieldDescriptor(tag=tag) if self.empty_nested == "column" else None), cut

    def _log(self, msg: str, *args: Any) -> None:
        if self.debug:
            logger.debug(msg, *args)


def _walk(
    node: SchemaNode,
    alias: str,
    joins: Mapping[str, str],
    out: list[ColumnRef],
) -> None:
    for descriptor in node.fields:
        child = descriptor.child
        if child is None:
            out.append(ColumnRef(alias, descriptor.tag, node.path))
            continue

        # with directives present, only named branches expand; re-checked at every depth
        if joins and child.name not in joins:
            continue

        _walk(child, joins.get(child.name) or child.table_alias, joins, out)


@lru_cache(maxsize=1024)
def _render_columns(
    node: SchemaNode,
    alias: str,
    joins: frozendict[str, str],
) -> tuple[ColumnRef, ...]:
    """Render *node* depth first in declaration order (cached)."""
    out: list[ColumnRef] = []
    _walk(node, alias, joins, out)

    return tuple(out)


def render_columns(
    node: SchemaNode,
    joins: Mapping[str, str] | None = None,
    alias: str | None = None,
) -> tuple[ColumnRef, ...]:
    """Render a schema tree into column references.

    Args:
        node: Root of the schema tree.
        joins: Mapping of model name to alias override. Empty means every
            nested branch is rendered; otherwise only branches whose model
            name is a key are, at any depth. An empty alias keeps the default.
        alias: Alias for the root's own columns; defaults to ``node.table_alias``.

    Returns:
        Column references in depth-first declaration order.

    Alias overrides only live for this call; *node* is never modified.
    """
    return _render_columns(
        node,
        node.table_alias if alias is None else alias,
        frozendict(joins or {}),
    )


def _as_join(directive: Join | tuple[Any, ...] | str | type) -> Join:
    if isinstance(directive, (str, type)):
        return Join(directive)

    return Join(*directive)


def _join_map(joins: Iterable[Join | tuple[Any, ...] | str | type]) -> frozendict[str, str]:
    resolved = (_as_join(join) for join in joins)

    return frozendict({join.name: join.alias for join in resolved if join.name})


class Prefixer:
    """Builds prefixed column lists for dataclass models.

    ``columns()`` introspects a model once (cached per ``TypeKey``) and renders
    its column references into a private buffer, replacing what was there
    unless ``append=True``. ``finalize()`` and ``bind_columns()`` turn the
    buffer into text and reset it, so the same instance can be reused for the
    next query.

    A single instance is not safe for concurrent use. ``clone()`` returns a
    prefixer with its own buffer that shares the schema cache and exclusion
    set, which is the way to render from several threads.

    Example:
        >>> prefixer = Prefixer()
        >>> prefixer.columns(User, "u", Join(Address, "a")).bind_columns(
        ...     "SELECT {columns} FROM users u JOIN addresses a ON a.user_id = u.id"
        ... )
        'SELECT u.id, u.name, a.id AS "addr.id", a.city AS "addr.city" FROM ...'
    """

    __slots__ = ("_buffer", "_excluded", "_schemas", "debug", "empty_nested", "tag_key")

    def __init__(
        self,
        *,
        tag_key: str = TAG_KEY,
        empty_nested: EmptyNestedPolicy = "omit",
        debug: bool = False,
    ) -> None:
        if empty_nested not in _EMPTY_NESTED_POLICIES:
            warnings.warn(
                f"Unknown empty_nested policy: {empty_nested}. Using 'omit'.",
                stacklevel=2,
            )
            empty_nested = "omit"

        self.tag_key = tag_key
        self.empty_nested: EmptyNestedPolicy = empty_nested
        self.debug = debug
        self._schemas = SchemaCache()
        self._excluded = ExclusionSet()
        self._buffer: list[ColumnRef | str] = []

    @property
    def schemas(self) -> SchemaCache:
        """Schema cache shared with every clone (read-only view)."""
        return self._schemas

    @property
    def excluded(self) -> ExclusionSet:
        """Types known to carry no tagged fields, shared with every clone."""
        return self._excluded

    def clone(self) -> Self:
        """New prefixer with an empty buffer sharing this one's caches and settings."""
        other = type(self)(tag_key=self.tag_key, empty_nested=self.empty_nested, debug=self.debug)
        other._schemas = self._schemas
        other._excluded = self._excluded

        return other

    def set_debug(self, debug: bool) -> Self:
        """Toggle diagnostic logging; never changes the generated columns."""
        self.debug = debug

        return self

    def columns(
        self,
        model: Any,
        db_alias: str,
        *joins: Join | tuple[Any, ...] | str | type,
        append: bool = False,
    ) -> Self:
        """Render the columns of *model* into the buffer.

        Args:
            model: Dataclass model class or instance. Anything else is skipped.
            db_alias: Table alias for the model's own columns.
            *joins: ``Join`` directives (a bare model name or class means
                ``Join(model)``). Without any, all nested models are
                rendered; with some, only the named ones are.
            append: Keep what is already buffered and add after it, to put
                several models in one list. By default the buffer is reset.

        Returns:
            ``self`` for chaining.
        """
        if not append:
            self.reset()

        model_type = model if isinstance(model, type) else type(model)
        if not is_model(model_type):
            self._log("skipping %r: not a dataclass model", model_type)
            return self

        node = self._schemas.get_or_create(
            TypeKey.of(model_type),
            lambda: self._introspect(model_type, db_alias),
        )

        join_map = _join_map(joins)
        if self.debug and join_map and (unused := join_map.keys() - node.names()):
            self._log("join directives %s match no branch of %s", sorted(unused), node.name)

        self._buffer.extend(_render_columns(node, db_alias, join_map))

        return self

    def custom_columns(self, *texts: str, prepend: bool = False) -> Self:
        """Add raw column expressions (aggregates, ``CASE`` ...) to the list.

        Args:
            *texts: Expressions used verbatim; empty strings are ignored.
            prepend: Put them before what is already buffered.
        """
        custom = [text for text in texts if text]
        if prepend:
            self._buffer[:0] = custom
        else:
            self._buffer.extend(custom)

        return self

    def finalize(self) -> str:
        """Return the buffered column list as text and reset the buffer."""
        text = COLUMN_SEPARATOR.join(
            item if isinstance(item, str) else item.sql() for item in self._buffer
        )
        self.reset()

        return text

    def bind_columns(self, template: str) -> str:
        """Replace every ``{columns}`` in *template* with the finalized column list."""
        return template.replace(COLUMNS_PLACEHOLDER, self.finalize())

    def bind_text(self, template: str) -> sa.TextClause:
        """Like :meth:`bind_columns`, wrapped in ``sa.text`` for execution."""
        return sa.text(self.bind_columns(template))

    def select_columns(self) -> list[sa.ColumnElement[Any]]:
        """Return the buffered columns as SQLAlchemy elements and reset the buffer.

        Example:
            >>> query = sa.select(*Prefixer().columns(User, "u").select_columns())
        """
        columns = [
            sa.literal_column(item) if isinstance(item, str) else item.to_column()
            for item in self._buffer
        ]
        self.reset()

        return columns

    def reset(self) -> Self:
        self._buffer.clear()

        return self

    def _introspect(self, model_type: type, db_alias: str) -> SchemaNode:
        self._log("schema cache miss: %s", type_identity(model_type))
        introspector = SchemaIntrospector(
            self._excluded,
            tag_key=self.tag_key,
            empty_nested=self.empty_nested,
            debug=self.debug,
        )
        node, _ = introspector.introspect(model_type, db_alias)

        return node

    def _log(self, msg: str, *args: Any) -> None:
        if self.debug:
            logger.debug(msg, *args)


def prefixer_cache_info() -> dict[str, Any]:
    """Return LRU cache statistics for the process-wide caches."""
    return {fn.__name__: fn.cache_info() for fn in (_render_columns, _get_field_types)}


def prefixer_cache_clear() -> None:
    """Clear the process-wide LRU caches (per-prefixer schema caches are untouched)."""
    for fn in (_render_columns, _get_field_types):
        fn.cache_clear()
