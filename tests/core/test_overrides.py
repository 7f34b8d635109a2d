"""Tests for run request normalization and override composition."""

from __future__ import annotations

import pytest

from trellis.overrides import compose, normalize_request, parse_entry
from trellis.templates import Ref

POST = Ref("Post", "example_post")
BLOG = Ref("Blog", "example_blog")


class TestParseEntry:
    def test_plain_pair(self) -> None:
        assert parse_entry(("Post", "example_post")) == (POST, None)

    def test_string_ref(self) -> None:
        assert parse_entry("Post:example_post") == (POST, None)

    def test_inline_overrides(self) -> None:
        assert parse_entry(("Post", "example_post", {"title": "T"})) == (POST, {"title": "T"})

    def test_inline_overrides_must_be_mapping(self) -> None:
        with pytest.raises(ValueError, match="must be a mapping"):
            parse_entry(("Post", "example_post", ["title"]))

    def test_garbage_rejected(self) -> None:
        with pytest.raises(ValueError, match="Invalid template reference"):
            parse_entry(42)


class TestNormalizeRequest:
    def test_refs_deduplicated_in_order(self) -> None:
        refs, overrides = normalize_request([POST, BLOG, ("Post", "example_post")])
        assert refs == [POST, BLOG]
        assert overrides == {}

    def test_keyed_top_level_overrides(self) -> None:
        _, overrides = normalize_request([POST], {BLOG: {"name": "Other"}})
        assert overrides == {BLOG: {"name": "Other"}}

    def test_bare_map_with_one_ref(self) -> None:
        _, overrides = normalize_request([POST], {"title": "Bare"})
        assert overrides == {POST: {"title": "Bare"}}

    def test_bare_map_with_many_refs_rejected(self) -> None:
        with pytest.raises(ValueError, match="exactly one template"):
            normalize_request([POST, BLOG], {"title": "Bare"})

    def test_inline_beats_top_level_key_by_key(self) -> None:
        _, overrides = normalize_request(
            [("Post", "example_post", {"title": "Inline"})],
            {POST: {"title": "Top", "content": "Top content"}},
        )
        assert overrides == {POST: {"title": "Inline", "content": "Top content"}}

    def test_repeated_inline_entries_merge(self) -> None:
        _, overrides = normalize_request(
            [("Post", "example_post", {"title": "First"}), ("Post", "example_post", {"content": "C"})],
        )
        assert overrides == {POST: {"title": "First", "content": "C"}}

    def test_explicit_none_is_kept(self) -> None:
        _, overrides = normalize_request([POST], {"content": None})
        assert overrides == {POST: {"content": None}}


class TestCompose:
    def test_later_layers_win(self) -> None:
        merged = compose({POST: {"a": 1, "b": 1}}, {POST: {"b": 2}}, {BLOG: {"c": 3}})
        assert merged == {POST: {"a": 1, "b": 2}, BLOG: {"c": 3}}

    def test_inputs_not_mutated(self) -> None:
        base = {POST: {"a": 1}}
        compose(base, {POST: {"a": 2}})
        assert base == {POST: {"a": 1}}
