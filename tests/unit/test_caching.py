from __future__ import annotations

from sqla_prefixer import Join, Prefixer, prefixer_cache_clear, prefixer_cache_info
from sqla_prefixer.core import _render_columns
from sqla_prefixer.tools import _get_field_types

from ..models import Customer, User


class TestLruCaching:
    def test_cache_info_names(self) -> None:
        info = prefixer_cache_info()
        assert set(info) == {"_render_columns", "_get_field_types"}

    def test_render_hits_on_repeat(self, prefixer: Prefixer) -> None:
        prefixer.columns(User, "u", Join("Address", "a")).finalize()
        prefixer.columns(User, "u", Join("Address", "a")).finalize()

        assert _render_columns.cache_info().hits >= 1

    def test_different_directives_miss(self, prefixer: Prefixer) -> None:
        prefixer.columns(Customer, "c", Join("Order", "o1")).finalize()
        prefixer.columns(Customer, "c", Join("Order", "o2")).finalize()

        assert _render_columns.cache_info().misses == 2

    def test_cache_clear_resets(self, prefixer: Prefixer) -> None:
        prefixer.columns(User, "u").finalize()
        prefixer_cache_clear()

        assert _render_columns.cache_info().currsize == 0
        assert _get_field_types.cache_info().currsize == 0

    def test_clear_keeps_schema_cache(self, prefixer: Prefixer) -> None:
        prefixer.columns(User, "u").finalize()
        prefixer_cache_clear()

        assert len(prefixer.schemas) == 1
        assert prefixer.columns(User, "u").finalize().startswith("u.id, u.name")
