from __future__ import annotations

import collections.abc
import dataclasses
import types
import typing
from collections.abc import Mapping
from functools import lru_cache
from typing import Any, Final


TAG_KEY: Final[str] = "db"
EXCLUDE_TAG: Final[str] = "-"

_SEQUENCE_ORIGINS: Final[frozenset[Any]] = frozenset({
    list,
    tuple,
    set,
    frozenset,
    collections.abc.Sequence,
    collections.abc.MutableSequence,
    collections.abc.Collection,
    collections.abc.Iterable,
    collections.abc.Set,
    collections.abc.MutableSet,
})


def db_field(tag: str, *, key: str = TAG_KEY, **kwargs: Any) -> Any:
    """Declare a dataclass field carrying a column tag.

    A thin wrapper around ``dataclasses.field`` that stores *tag* in the field
    metadata under *key*; any other keyword goes to ``dataclasses.field``.

    Example:
        >>> @dataclass
        ... class User:
        ...     id: int = db_field("id")
        ...     address: Address | None = db_field("addr", default=None)
    """
    metadata = {**kwargs.pop("metadata", {}), key: tag}

    return dataclasses.field(metadata=metadata, **kwargs)


def get_column_tag(field: dataclasses.Field[Any], key: str = TAG_KEY) -> str | None:
    """Return the column tag of *field*, or ``None`` if it is untagged or excluded."""
    tag = field.metadata.get(key)
    if not tag or tag == EXCLUDE_TAG:
        return None

    return str(tag)


def is_model(tp: Any) -> bool:
    """A model is a dataclass *class*; instances and other types are not."""
    return isinstance(tp, type) and dataclasses.is_dataclass(tp)


def type_identity(tp: type) -> str:
    """Fully qualified identity of *tp*, e.g. ``'app.models.Address'``."""
    return f"{tp.__module__}.{tp.__qualname__}"


def _resolve_annotation(model: type, annotation: Any) -> Any:
    """Evaluate one string annotation in *model*'s module; unresolvable ones stay strings."""
    if not isinstance(annotation, str):
        return annotation

    holder = type(
        model.__name__,
        (),
        {"__module__": model.__module__, "__annotations__": {"value": annotation}},
    )
    try:
        return typing.get_type_hints(holder, localns={model.__name__: model})["value"]
    except Exception:  # noqa: BLE001
        return annotation


@lru_cache(maxsize=512)
def _get_field_types(model: type) -> Mapping[str, Any]:
    """Resolve annotations of *model* (cached), field by field when some cannot be."""
    try:
        return typing.get_type_hints(model)
    except Exception:  # noqa: BLE001
        return {f.name: _resolve_annotation(model, f.type) for f in dataclasses.fields(model)}


def get_field_types(model: type) -> Mapping[str, Any]:
    """Get resolved field types for a dataclass model.

    When the model as a whole cannot be resolved (typically a name imported
    only under ``if TYPE_CHECKING:``), each field is resolved on its own, so
    one unresolvable annotation does not hide the nested models beside it.
    Annotations that still cannot be resolved are returned as-is; callers
    treat them as scalars.

    Args:
        model: Dataclass model class.

    Returns:
        Mapping of field name to annotation.
    """
    return _get_field_types(model)


def _is_union(tp: Any) -> bool:
    return typing.get_origin(tp) in (typing.Union, types.UnionType)


def unwrap_optional(tp: Any) -> Any:
    """Strip one level of ``Optional[X]`` / ``X | None``.

    Unions with more than one non-``None`` member are returned unchanged.
    """
    if not _is_union(tp):
        return tp

    args = [arg for arg in typing.get_args(tp) if arg is not type(None)]

    return args[0] if len(args) == 1 else tp


def nested_model_type(tp: Any) -> type | None:
    """Return the model class behind a field annotation, or ``None`` for scalars.

    Recognized shapes: ``Model``, ``Model | None``, a sequence of ``Model`` and
    a sequence of ``Model | None`` (``list``, ``set``, ``frozenset``,
    ``Sequence``, ``tuple[Model, ...]`` ...). Only one representative element
    is considered; cardinality is not tracked.
    """
    tp = unwrap_optional(tp)
    if is_model(tp):
        return tp

    if typing.get_origin(tp) not in _SEQUENCE_ORIGINS:
        return None

    args = typing.get_args(tp)
    if not args:
        return None

    if typing.get_origin(tp) is tuple and not (len(args) == 2 and args[1] is Ellipsis):
        return None

    element = unwrap_optional(args[0])

    return element if is_model(element) else None
