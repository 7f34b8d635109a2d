"""Tests for TemplateStore: registration, cycle rejection, lookup and rebinding."""

from __future__ import annotations

import logging

import pytest

from tests._engine_factory import schema
from trellis.errors import CircularDependencyError, TemplateNotFoundError
from trellis.schema import SchemaCatalog
from trellis.store import TemplateStore
from trellis.templates import Ref, Template


@pytest.fixture
def node_store() -> TemplateStore:
    catalog = SchemaCatalog()
    catalog.declare(schema("Node", relationships={"next": "Node", "other": "Node"}))
    return TemplateStore(catalog)


class TestRegister:
    def test_register_and_get(self, node_store: TemplateStore) -> None:
        node_store.register("Node", [Template("Node", "a", {"label": "A"})])
        assert node_store.get("Node", "a").attributes["label"] == "A"

    def test_register_uses_catalog_templates_by_default(self, store: TemplateStore) -> None:
        registered = store.register("Blog")
        assert {t.name for t in registered} == {"example_blog", "owned_blog"}

    def test_self_reference_rejected(self, node_store: TemplateStore) -> None:
        with pytest.raises(CircularDependencyError) as exc_info:
            node_store.register("Node", [Template("Node", "loop", {"next": "loop"})])
        assert exc_info.value.path == [Ref("Node", "loop"), Ref("Node", "loop")]
        assert not node_store.is_registered("Node")

    def test_two_node_cycle_rejected(self, node_store: TemplateStore) -> None:
        batch = [Template("Node", "a", {"next": "b"}), Template("Node", "b", {"next": "a"})]
        with pytest.raises(CircularDependencyError, match="Node:a -> Node:b -> Node:a"):
            node_store.register("Node", batch)

    def test_three_node_cycle_rejected(self, node_store: TemplateStore) -> None:
        batch = [
            Template("Node", "a", {"next": "b"}),
            Template("Node", "b", {"next": "c"}),
            Template("Node", "c", {"next": "a"}),
        ]
        with pytest.raises(CircularDependencyError):
            node_store.register("Node", batch)

    def test_rejected_batch_leaves_store_unchanged(self, node_store: TemplateStore) -> None:
        node_store.register("Node", [Template("Node", "keep", {})])
        with pytest.raises(CircularDependencyError):
            node_store.register("Node", [Template("Node", "loop", {"next": "loop"})])
        assert [t.name for t in node_store.list("Node")] == ["keep"]
        assert node_store.edges() == {Ref("Node", "keep"): []}

    def test_cross_kind_cycle_rejected_on_second_registration(self) -> None:
        catalog = SchemaCatalog()
        catalog.declare(schema("A", relationships={"b_id": "B"}))
        catalog.declare(schema("B", relationships={"a_id": "A"}))
        store = TemplateStore(catalog)
        store.register("A", [Template("A", "a1", {"b_id": "b1"})])

        with pytest.raises(CircularDependencyError) as exc_info:
            store.register("B", [Template("B", "b1", {"a_id": "a1"})])

        assert set(exc_info.value.path) == {Ref("A", "a1"), Ref("B", "b1")}
        assert store.is_registered("A")
        assert not store.is_registered("B")

    def test_diamond_allowed(self, node_store: TemplateStore) -> None:
        batch = [
            Template("Node", "a", {}),
            Template("Node", "b", {"next": "a"}),
            Template("Node", "c", {"next": "a"}),
            Template("Node", "d", {"next": "b", "other": "c"}),
        ]
        node_store.register("Node", batch)
        assert node_store.edges()[Ref("Node", "d")] == [Ref("Node", "b"), Ref("Node", "c")]

    def test_reregistration_replaces(self, node_store: TemplateStore) -> None:
        node_store.register("Node", [Template("Node", "old", {})])
        node_store.register("Node", [Template("Node", "new", {})])
        assert [t.name for t in node_store.list("Node")] == ["new"]

    def test_wrong_kind_rejected(self, node_store: TemplateStore) -> None:
        with pytest.raises(ValueError, match="Cannot register"):
            node_store.register("Node", [Template("Other", "x", {})])

    def test_duplicate_names_rejected(self, node_store: TemplateStore) -> None:
        with pytest.raises(ValueError, match="Duplicate template name"):
            node_store.register("Node", [Template("Node", "x", {}), Template("Node", "x", {})])

    def test_non_relationship_strings_are_not_edges(self, node_store: TemplateStore) -> None:
        node_store.register("Node", [Template("Node", "a", {"label": "a"})])
        assert node_store.edges()[Ref("Node", "a")] == []

    def test_virtual_keys_are_not_edges(self, node_store: TemplateStore) -> None:
        node_store.register("Node", [Template("Node", "a", {"next": "a"}, virtuals=frozenset({"next"}))])
        assert node_store.edges()[Ref("Node", "a")] == []


class TestLookup:
    def test_unknown_template(self, store: TemplateStore) -> None:
        with pytest.raises(TemplateNotFoundError, match="Template not found: Post:nope") as exc_info:
            store.get("Post", "nope")
        assert "Post:example_post" in exc_info.value.known
        assert isinstance(exc_info.value, KeyError)

    def test_lazy_domain_discovery(self, store: TemplateStore) -> None:
        store.get("Post", "example_post")
        assert store.is_registered("Blog")
        assert store.is_registered("User")

    def test_cross_kind_rebinding(self, store: TemplateStore) -> None:
        tpl = store.get("Post", "example_blog")
        assert tpl.ref == Ref("Blog", "example_blog")

    def test_ambiguous_name_first_registered_wins(self, caplog: pytest.LogCaptureFixture) -> None:
        catalog = SchemaCatalog()
        catalog.declare(schema("First"))
        catalog.declare(schema("Second"))
        catalog.declare(schema("Third"))
        store = TemplateStore(catalog)
        store.register("First", [Template("First", "shared", {})])
        store.register("Second", [Template("Second", "shared", {})])
        store.register("Third", [])

        with caplog.at_level(logging.WARNING, logger="trellis"):
            ref = store.resolve("Third", "shared")

        assert ref == Ref("First", "shared")
        assert "defined by several kinds" in caplog.text

    def test_find_by_name_registers_catalog_kinds(self, store: TemplateStore) -> None:
        assert store.find_by_name("admin") == Ref("User", "admin")
        assert store.find_by_name("missing") is None

    def test_dependencies_of_includes_actor(self, store: TemplateStore) -> None:
        tpl = store.get("Post", "authored_post")
        assert store.dependencies_of(tpl) == [Ref("Blog", "example_blog"), Ref("User", "admin")]

    def test_dependencies_of_with_overridden_attributes(self, store: TemplateStore) -> None:
        tpl = store.get("Post", "example_post")
        deps = store.dependencies_of(tpl, tpl.with_attributes({"blog_id": "owned_blog", "actor": ("User", "author")}))
        assert deps == [Ref("Blog", "owned_blog"), Ref("User", "author")]

    def test_list_all(self, store: TemplateStore) -> None:
        store.register("User")
        assert {t.name for t in store.list()} == {"author", "admin"}

    def test_clear(self, store: TemplateStore) -> None:
        store.get("Post", "example_post")
        store.clear()
        assert store.kinds() == []
        assert store.refs() == []
        # The catalog is untouched, so lookups rediscover the domain.
        assert store.get("Post", "example_post").name == "example_post"

    def test_resolve_in_kind_never_rebinds(self, store: TemplateStore) -> None:
        assert store.resolve_in_kind("Blog", "example_blog") == Ref("Blog", "example_blog")
        assert store.resolve_in_kind("Blog", "admin") is None
        assert store.resolve("Blog", "admin") == Ref("User", "admin")


class TestConcurrency:
    def test_concurrent_registrations_all_kept(self) -> None:
        """Registrations of different kinds from several threads must not lose each other."""
        import threading

        kinds = [f"Kind{i}" for i in range(6)]
        catalog = SchemaCatalog()
        for kind in kinds:
            catalog.declare(schema(kind, domain=kind))
        store = TemplateStore(catalog)
        barrier = threading.Barrier(len(kinds))

        def call_register(kind: str) -> None:
            barrier.wait()
            store.register(kind, [Template(kind, "one", {}), Template(kind, "two", {})])

        threads = [threading.Thread(target=call_register, args=(kind,)) for kind in kinds]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert set(store.refs()) == {Ref(kind, name) for kind in kinds for name in ("one", "two")}
        assert set(store.edges()) == set(store.refs())
