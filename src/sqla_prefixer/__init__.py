"""Prefixed SQL column lists for nested dataclass models.

sqla_prefixer introspects a dataclass model whose fields carry column tags
(``db_field("id")``), caches the resulting schema tree, and renders it as an
aliased column list such as ``u.id, u.name, a.city AS "addr.city"``.  Use
``Prefixer().columns(model, "u", Join(...)).bind_columns("SELECT {columns} ...")``
to drop the list into a query, or ``select_columns()`` to feed ``sa.select``.
"""

from ._version import __version__, __version_tuple__
from .core import (
    COLUMN_SEPARATOR,
    COLUMNS_PLACEHOLDER,
    ColumnRef,
    Join,
    Prefixer,
    SchemaIntrospector,
    prefixer_cache_clear,
    prefixer_cache_info,
    render_columns,
)
from .datastructures import ExclusionSet, RWLock, frozendict
from .node import FieldDescriptor, SchemaCache, SchemaNode, TypeKey
from .tools import EXCLUDE_TAG, TAG_KEY, db_field, get_column_tag, nested_model_type


__all__ = (
    "COLUMNS_PLACEHOLDER",
    "COLUMN_SEPARATOR",
    "EXCLUDE_TAG",
    "TAG_KEY",
    "ColumnRef",
    "ExclusionSet",
    "FieldDescriptor",
    "Join",
    "Prefixer",
    "RWLock",
    "SchemaCache",
    "SchemaIntrospector",
    "SchemaNode",
    "TypeKey",
    "__version__",
    "__version_tuple__",
    "db_field",
    "frozendict",
    "get_column_tag",
    "nested_model_type",
    "prefixer_cache_clear",
    "prefixer_cache_info",
    "render_columns",
)
