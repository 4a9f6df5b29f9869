"""Tests for reference parsing and serialization."""

from __future__ import annotations

import pytest

from prompt_expert.content.reference import (
    is_valid_reference,
    normalize_reference,
    parse_reference,
    serialize_reference,
)
from prompt_expert.errors import InvalidReferenceError

NS = "acme/prompts"


class TestParseReference:
    def test_bare_path_uses_defaults(self):
        ref = parse_reference("experts/security.md", NS)
        assert ref.namespace == "acme"
        assert ref.collection == "prompts"
        assert ref.path == "experts/security.md"
        assert ref.version == "latest"
        assert ref.is_floating

    def test_explicit_namespace_and_version(self):
        ref = parse_reference("other/bank:experts/a.md@v1.2", NS)
        assert ref.repository == "other/bank"
        assert ref.version == "v1.2"
        assert not ref.is_pinned

    def test_commit_sha_is_pinned(self):
        ref = parse_reference("a.md@3a5f8e2", NS)
        assert ref.is_pinned
        assert not ref.is_floating

    @pytest.mark.parametrize("version", ["2024010", "deadbeef", "cafe", "release"])
    def test_hex_looking_branch_names_are_not_pinned(self, version):
        assert not parse_reference(f"a.md@{version}", NS).is_pinned

    def test_full_sha_is_pinned(self):
        assert parse_reference("a.md@" + "d" * 40, NS).is_pinned

    def test_branch_with_slash(self):
        ref = parse_reference("a.md@feature/new-rubric", NS)
        assert ref.version == "feature/new-rubric"

    def test_surrounding_slashes_stripped(self):
        assert parse_reference("/docs/", NS).path == "docs"

    @pytest.mark.parametrize("raw", ["", "bad path.md", "a.md@", "owner:path.md", "a.md@v1@v2"])
    def test_invalid_strings_raise(self, raw):
        with pytest.raises(InvalidReferenceError):
            parse_reference(raw, NS)

    def test_missing_default_namespace_raises(self):
        with pytest.raises(InvalidReferenceError, match="owner/repo"):
            parse_reference("a.md", "")

    def test_invalid_reference_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_reference("not valid!", NS)


class TestRoundTrip:
    @pytest.mark.parametrize(
        "raw",
        [
            "a.md",
            "dir/sub/file.py@main",
            "x/y:docs/readme.md",
            "x/y:docs/readme.md@0123456789abcdef0123456789abcdef01234567",
        ],
    )
    def test_serialize_parse_equals_normalize(self, raw):
        assert serialize_reference(parse_reference(raw, NS)) == normalize_reference(raw, NS)

    def test_normalize_fills_omitted_fields(self):
        assert normalize_reference("a.md", NS) == "acme/prompts:a.md@latest"

    def test_serialized_form_parses_back_to_same_reference(self):
        ref = parse_reference("x/y:p/q.md@v2", NS)
        assert parse_reference(serialize_reference(ref), "unused/ns") == ref


class TestReferenceIdentity:
    def test_version_is_part_of_equality(self):
        assert parse_reference("a.md@v1", NS) != parse_reference("a.md@v2", NS)

    def test_hashable_for_use_as_key(self):
        refs = {parse_reference("a.md", NS), parse_reference("a.md@latest", NS)}
        assert len(refs) == 1

    def test_child_keeps_repository_and_version(self):
        ref = parse_reference("x/y:docs@v3", NS)
        child = ref.child("docs/intro.md")
        assert child.repository == "x/y"
        assert child.version == "v3"
        assert child.name == "intro.md"

    def test_is_valid_reference(self):
        assert is_valid_reference("a/b:c.md@d")
        assert not is_valid_reference("")
        assert not is_valid_reference("spaces are bad.md")
