"""Tests for scenario definitions and extends resolution."""

from __future__ import annotations

import pytest

from trellis.errors import CircularExtensionError, UnknownScenarioError, UnknownScenarioReferenceError
from trellis.scenarios import Scenario, ScenarioBook, merge_scenarios
from trellis.store import TemplateStore
from trellis.templates import Ref


@pytest.fixture
def book() -> ScenarioBook:
    b = ScenarioBook()
    b.add(Scenario("base", (("example_post", {"title": "Base", "content": "Base content"}),)))
    b.add(Scenario("extended", (("example_post", {"title": "Extended"}),), extends=("base",)))
    return b


class TestScenario:
    def test_entries_from_mapping(self) -> None:
        s = Scenario("s", {"example_post": {"title": "T"}})  # type: ignore[arg-type]
        assert s.entries[0][0] == "example_post"
        assert dict(s.entries[0][1]) == {"title": "T"}

    def test_kind_qualified_keys_become_refs(self) -> None:
        s = Scenario("s", (("Post:example_post", {}), (("Blog", "example_blog"), {})))
        assert [key for key, _ in s.entries] == [Ref("Post", "example_post"), Ref("Blog", "example_blog")]

    def test_single_parent_string(self) -> None:
        assert Scenario("s", extends="base").extends == ("base",)  # type: ignore[arg-type]

    def test_bad_entry_rejected(self) -> None:
        with pytest.raises(ValueError, match="must be"):
            Scenario("s", (("example_post",),))  # type: ignore[arg-type]

    def test_entries_are_read_only(self) -> None:
        s = Scenario("s", (("example_post", {"title": "T"}),))
        with pytest.raises(TypeError):
            s.entries[0][1]["title"] = "changed"  # type: ignore[index]


class TestResolve:
    def test_plain_scenario(self, book: ScenarioBook) -> None:
        assert book.resolve("base") == {"example_post": {"title": "Base", "content": "Base content"}}

    def test_child_wins_key_by_key(self, book: ScenarioBook) -> None:
        assert book.resolve("extended") == {"example_post": {"title": "Extended", "content": "Base content"}}

    def test_parent_only_and_child_only_entries(self) -> None:
        book = ScenarioBook()
        book.add(Scenario("parent", (("example_blog", {"name": "P"}),)))
        book.add(Scenario("child", (("example_post", {"title": "C"}),), extends=("parent",)))
        resolved = book.resolve("child")
        assert list(resolved) == ["example_blog", "example_post"]
        assert resolved["example_blog"] == {"name": "P"}

    def test_earlier_parent_wins(self) -> None:
        book = ScenarioBook()
        book.add(Scenario("first", (("example_post", {"title": "First", "content": "First"}),)))
        book.add(Scenario("second", (("example_post", {"title": "Second", "extra": "Second"}),)))
        book.add(Scenario("child", (("example_post", {"content": "Child"}),), extends=("first", "second")))
        assert book.resolve("child") == {
            "example_post": {"title": "First", "content": "Child", "extra": "Second"},
        }

    def test_multi_level_chain(self, book: ScenarioBook) -> None:
        book.add(Scenario("deep", (("example_post", {"content": "Deep"}),), extends=("extended",)))
        assert book.resolve("deep") == {"example_post": {"title": "Extended", "content": "Deep"}}

    def test_self_extension(self) -> None:
        book = ScenarioBook()
        book.add(Scenario("loop", extends=("loop",)))
        with pytest.raises(CircularExtensionError) as exc_info:
            book.resolve("loop")
        assert exc_info.value.path == ["loop", "loop"]

    def test_circular_extension(self) -> None:
        book = ScenarioBook()
        book.add(Scenario("a", extends=("b",)))
        book.add(Scenario("b", extends=("a",)))
        with pytest.raises(CircularExtensionError, match="a -> b -> a"):
            book.resolve("a")

    def test_unknown_parent(self) -> None:
        book = ScenarioBook()
        book.add(Scenario("orphan", extends=("missing",)))
        with pytest.raises(UnknownScenarioError, match="missing"):
            book.resolve("orphan")

    def test_unknown_scenario(self, book: ScenarioBook) -> None:
        with pytest.raises(UnknownScenarioError) as exc_info:
            book.resolve("nope")
        assert exc_info.value.available == ["base", "extended"]

    def test_result_is_a_copy(self, book: ScenarioBook) -> None:
        book.resolve("extended")["example_post"]["title"] = "mutated"
        assert book.resolve("extended")["example_post"]["title"] == "Extended"

    def test_adding_invalidates_cache(self, book: ScenarioBook) -> None:
        assert book.resolve("extended")["example_post"]["content"] == "Base content"
        book.add(Scenario("base", (("example_post", {"content": "New base"}),)))
        assert book.resolve("extended")["example_post"]["content"] == "New base"

    def test_clear(self, book: ScenarioBook) -> None:
        book.clear()
        assert book.names() == []


class TestValidate:
    def test_known_references(self, book: ScenarioBook, store: TemplateStore) -> None:
        assert book.validate("extended", store) == {"example_post": Ref("Post", "example_post")}

    def test_unknown_reference(self, store: TemplateStore) -> None:
        book = ScenarioBook()
        book.add(Scenario("bad", (("no_such_template", {}),)))
        with pytest.raises(UnknownScenarioReferenceError, match="Unknown resources referenced") as exc_info:
            book.validate("bad", store)
        assert exc_info.value.name == "no_such_template"

    def test_kind_qualified_reference(self, store: TemplateStore) -> None:
        book = ScenarioBook()
        book.add(Scenario("qualified", ((("Blog", "example_blog"), {"name": "Q"}),)))
        assert book.validate("qualified", store) == {Ref("Blog", "example_blog"): Ref("Blog", "example_blog")}


def test_merge_scenarios_keeps_parent_order() -> None:
    merged = merge_scenarios({"a": {"x": 1}, "b": {"y": 1}}, {"b": {"y": 2}, "c": {"z": 3}})
    assert list(merged) == ["a", "b", "c"]
    assert merged["b"] == {"y": 2}
