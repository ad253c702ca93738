"""Tests for the markdown memory corpus."""

import re

import pytest

from autopilot_memory.markdown import (
    MemoryCorpus,
    format_memory_file,
    parse_memory_file,
    quote_if_needed,
    slugify,
)
from autopilot_memory.models import Memory


def make_memory(**overrides):
    fields = dict(
        id="6f1c2f4e-1d55-4d43-9b1e-0f4a2b7d9c11",
        content="Use snake_case for module names",
        category="convention",
        scope="project",
        importance=0.8,
        tags=["style", "python"],
        created_at="2026-01-05T10:22:31.104Z",
    )
    fields.update(overrides)
    return Memory(**fields)


class TestFormatAndParse:
    """A written file parses back to the same memory."""

    def test_round_trip(self):
        memory = make_memory()
        parsed = parse_memory_file(format_memory_file(memory))
        assert parsed == memory

    def test_round_trip_tags_with_reserved_characters(self):
        memory = make_memory(tags=['a, b', 'say "hi"', 'back\\slash', ''])
        parsed = parse_memory_file(format_memory_file(memory))
        assert parsed.tags == memory.tags

    def test_round_trip_importance_precision(self):
        memory = make_memory(importance=0.123456789)
        parsed = parse_memory_file(format_memory_file(memory))
        assert parsed.importance == pytest.approx(0.123456789)

    def test_header_layout(self):
        text = format_memory_file(make_memory())
        lines = text.split("\n")
        assert lines[0] == "---"
        assert lines[7] == "---"
        assert lines[8] == ""
        assert lines[9] == "Use snake_case for module names"
        assert 'tags: ["style", "python"]' in lines
        assert 'created_at: "2026-01-05T10:22:31.104Z"' in lines
        assert text.endswith("\n")

    def test_fields_in_any_order(self):
        text = (
            "---\n"
            'created_at: "2025-12-01T08:00:00.000Z"\n'
            "tags: [\"x\"]\n"
            "importance: 0.25\n"
            "scope: user\n"
            "category: workflow\n"
            "id: abc-123\n"
            "---\n"
            "\n"
            "  Run the linter before pushing  \n"
        )
        parsed = parse_memory_file(text)
        assert parsed.id == "abc-123"
        assert parsed.category == "workflow"
        assert parsed.scope == "user"
        assert parsed.importance == 0.25
        assert parsed.tags == ["x"]
        assert parsed.created_at == "2025-12-01T08:00:00.000Z"
        assert parsed.content == "Run the linter before pushing"

    def test_missing_fields_get_defaults(self):
        parsed = parse_memory_file("---\nnote: nothing useful\n---\n\nBare memory\n")
        assert parsed is not None
        assert parsed.id
        assert parsed.category == "pattern"
        assert parsed.scope == "project"
        assert parsed.importance == 0.5
        assert parsed.tags == []
        assert parsed.created_at
        assert parsed.content == "Bare memory"

    def test_invalid_values_get_defaults(self):
        text = (
            "---\n"
            "id: keep-me\n"
            "scope: galaxy\n"
            "importance: very\n"
            "created_at: yesterday\n"
            "---\n\nSomething\n"
        )
        parsed = parse_memory_file(text)
        assert parsed.id == "keep-me"
        assert parsed.scope == "project"
        assert parsed.importance == 0.5
        assert parsed.created_at != "yesterday"

    def test_out_of_range_importance_defaults(self):
        parsed = parse_memory_file("---\nimportance: 7\n---\n\nx\n")
        assert parsed.importance == 0.5

    def test_unquoted_tags_are_accepted(self):
        parsed = parse_memory_file("---\ntags: [alpha, beta]\n---\n\nx\n")
        assert parsed.tags == ["alpha", "beta"]

    def test_windows_line_endings(self):
        text = format_memory_file(make_memory()).replace("\n", "\r\n")
        assert parse_memory_file(text).id == make_memory().id

    def test_no_header_is_unparsable(self):
        assert parse_memory_file("just some notes\n") is None
        assert parse_memory_file("---\nid: x\n") is None

    def test_quoted_id_round_trip(self):
        memory = make_memory(id='odd: "id"')
        text = format_memory_file(memory)
        assert 'id: "odd: \\"id\\""' in text
        assert parse_memory_file(text).id == 'odd: "id"'

    def test_round_trip_tags_with_newlines(self):
        memory = make_memory(tags=["multi\nline", "x"])
        text = format_memory_file(memory)
        header = text.split("\n---\n", 1)[0]
        assert len(header.split("\n")) == 7
        assert parse_memory_file(text).tags == ["multi\nline", "x"]

    def test_round_trip_control_and_unicode_characters(self):
        memory = make_memory(
            id="weird\tid\r\n",
            category="café",
            tags=["tab\there", "bell\x07", "del\x7f", "line\u2028sep", "emoji 🚀"],
        )
        parsed = parse_memory_file(format_memory_file(memory))
        assert parsed.id == memory.id
        assert parsed.category == "café"
        assert parsed.tags == memory.tags

    def test_bad_line_only_loses_its_field(self):
        text = (
            "---\n"
            "id: keep-me\n"
            "tags: [unclosed\n"
            "importance: 0.9\n"
            "---\n\nSomething\n"
        )
        parsed = parse_memory_file(text)
        assert parsed.id == "keep-me"
        assert parsed.tags == []
        assert parsed.importance == 0.9

    def test_non_scalar_values_get_defaults(self):
        parsed = parse_memory_file("---\nid: [a, b]\ncategory: {x: y}\ntags: plain\n---\n\nx\n")
        assert parsed.id != "[a, b]"
        assert parsed.category == "pattern"
        assert parsed.tags == []


class TestQuoting:
    def test_plain_values_are_not_quoted(self):
        assert quote_if_needed("convention") == "convention"
        assert quote_if_needed("6f1c2f4e-1d55-4d43-9b1e-0f4a2b7d9c11") == "6f1c2f4e-1d55-4d43-9b1e-0f4a2b7d9c11"

    def test_values_yaml_would_misread_are_quoted(self):
        assert quote_if_needed("a: b") == '"a: b"'
        assert quote_if_needed("#x") == '"#x"'
        assert quote_if_needed("[x]") == '"[x]"'
        assert quote_if_needed(" padded ") == '" padded "'
        assert quote_if_needed("") == '""'

    def test_quotes_and_backslashes_are_escaped(self):
        assert quote_if_needed('say "x"') == '"say \\"x\\""'
        assert quote_if_needed("back\\slash") == '"back\\\\slash"'

    def test_newline_is_escaped(self):
        assert quote_if_needed("two\nlines") == '"two\\nlines"'


class TestSlugify:
    def test_slug_shape(self):
        slug = slugify("Use Tabs, not Spaces!")
        assert re.fullmatch(r"use-tabs-not-spaces-[0-9a-f]{8}", slug)

    def test_slug_truncates_base(self):
        slug = slugify("word " * 50)
        base, suffix = slug.rsplit("-", 1)
        assert len(base) <= 60
        assert len(suffix) == 8

    def test_empty_base_is_suffix_only(self):
        assert re.fullmatch(r"[0-9a-f]{8}", slugify("!!!"))

    def test_slugs_are_unique(self):
        assert slugify("same text") != slugify("same text")


class TestMemoryCorpus:
    """File operations on a corpus directory."""

    @pytest.fixture
    def corpus(self):
        return MemoryCorpus()

    async def test_write_places_file_under_category(self, corpus, tmp_path):
        memory = make_memory()
        path = await corpus.write(tmp_path, memory)
        assert path.parent == tmp_path / "convention"
        assert path.suffix == ".md"
        assert path.name.startswith("use-snake-case-for-module-names-")
        assert parse_memory_file(path.read_text(encoding="utf-8")) == memory

    async def test_scan_finds_all_and_skips_malformed(self, corpus, tmp_path):
        await corpus.write(tmp_path, make_memory(id="one"))
        await corpus.write(tmp_path, make_memory(id="two", category="workflow"))
        (tmp_path / "notes.md").write_text("no header at all", encoding="utf-8")
        (tmp_path / "readme.txt").write_text("---\nid: ignored\n---\n\nx", encoding="utf-8")

        memories = await corpus.scan([tmp_path])
        assert sorted(m.id for m in memories) == ["one", "two"]

    async def test_scan_missing_directory_is_empty(self, corpus, tmp_path):
        assert await corpus.scan([tmp_path / "does-not-exist"]) == []

    async def test_delete_by_id_matches_header_not_filename(self, corpus, tmp_path):
        keep = await corpus.write(tmp_path, make_memory(id="keep"))
        gone = await corpus.write(tmp_path, make_memory(id="gone"))
        # A file whose body mentions the id must not be mistaken for it
        decoy = await corpus.write(tmp_path, make_memory(id="decoy", content="see gone"))

        assert await corpus.delete_by_id(tmp_path, "gone") is True
        assert not gone.exists()
        assert keep.exists()
        assert decoy.exists()

    async def test_delete_by_id_missing(self, corpus, tmp_path):
        await corpus.write(tmp_path, make_memory(id="keep"))
        assert await corpus.delete_by_id(tmp_path, "nope") is False
        assert await corpus.delete_by_id(tmp_path / "absent", "nope") is False
