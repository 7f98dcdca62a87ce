from __future__ import annotations

from sqla_prefixer.core import ColumnRef, SchemaIntrospector, _render_columns, render_columns
from sqla_prefixer.datastructures import ExclusionSet
from sqla_prefixer.node import SchemaNode

from ..models import Customer, Message, User


def _schema(model: type, alias: str) -> SchemaNode:
    node, _ = SchemaIntrospector(ExclusionSet()).introspect(model, alias)
    return node


def _sql(refs: tuple[ColumnRef, ...]) -> list[str]:
    return [ref.sql() for ref in refs]


class TestColumnRef:
    def test_root_column(self) -> None:
        ref = ColumnRef("u", "id")
        assert ref.reference == "u.id"
        assert ref.label is None
        assert ref.sql() == "u.id"

    def test_nested_column(self) -> None:
        ref = ColumnRef("a", "city", "owner.addr")
        assert ref.label == "owner.addr.city"
        assert ref.sql() == 'a.city AS "owner.addr.city"'

    def test_empty_alias_renders_bare_column(self) -> None:
        assert ColumnRef("", "id").sql() == "id"


class TestFullyRecursive:
    def test_every_branch_expanded(self) -> None:
        assert _sql(render_columns(_schema(Customer, "c"))) == [
            "c.id",
            'orders.id AS "orders.id"',
            'items.id AS "orders.items.id"',
            'items.sku AS "orders.items.sku"',
            'product.id AS "orders.items.product.id"',
            'product.title AS "orders.items.product.title"',
            'orders.total AS "orders.total"',
            'addr.id AS "addr.id"',
            'addr.city AS "addr.city"',
        ]

    def test_root_alias_override(self) -> None:
        refs = render_columns(_schema(User, "u"), alias="usr")
        assert _sql(refs)[:2] == ["usr.id", "usr.name"]


class TestJoinSelection:
    def test_only_named_branches(self) -> None:
        refs = render_columns(_schema(Customer, "c"), {"Order": "o"})

        assert _sql(refs) == [
            "c.id",
            'o.id AS "orders.id"',
            'o.total AS "orders.total"',
        ]

    def test_deeper_branch_needs_its_own_directive(self) -> None:
        refs = render_columns(_schema(Customer, "c"), {"Order": "o", "Item": ""})

        assert _sql(refs) == [
            "c.id",
            'o.id AS "orders.id"',
            'items.id AS "orders.items.id"',
            'items.sku AS "orders.items.sku"',
            'o.total AS "orders.total"',
        ]

    def test_unmatched_parent_prunes_matched_child(self) -> None:
        refs = render_columns(_schema(Customer, "c"), {"Product": "p"})
        assert _sql(refs) == ["c.id"]

    def test_unknown_directive_is_unused(self) -> None:
        refs = render_columns(_schema(Customer, "c"), {"Address": "a", "Nope": "n"})

        assert _sql(refs) == [
            "c.id",
            'a.id AS "addr.id"',
            'a.city AS "addr.city"',
        ]

    def test_same_model_at_two_depths(self) -> None:
        refs = render_columns(_schema(Message, "m"), {"Person": "p", "Reply": ""})

        assert _sql(refs) == [
            "m.id",
            'p.id AS "sender.id"',
            'p.email AS "sender.email"',
            'reply.id AS "reply.id"',
            'p.id AS "reply.author.id"',
            'p.email AS "reply.author.email"',
        ]


class TestNoMutation:
    def test_override_does_not_touch_tree(self) -> None:
        node = _schema(User, "u")
        render_columns(node, {"Address": "a"})
        address = node.fields[2].child

        assert address is not None
        assert address.table_alias == "addr"
        assert _sql(render_columns(node))[2] == 'addr.id AS "addr.id"'

    def test_renders_are_cached(self) -> None:
        node = _schema(User, "u")
        render_columns(node, {"Address": "a"})
        render_columns(node, {"Address": "a"})

        assert _render_columns.cache_info().hits >= 1
