"""Unit tests for markdown and code-block rendering."""

from __future__ import annotations

import pytest

from lessonkit.models.rendered import StyledText
from lessonkit.renderer import CodeBlockRenderer, DocumentRenderer, parse_info


def plain_highlighter(text: str, language: str) -> list[StyledText]:
    return [StyledText(text)] if text else []


@pytest.fixture()
def code_blocks() -> CodeBlockRenderer:
    return CodeBlockRenderer(plain_highlighter)


class TestParseInfo:
    def test_language_and_meta(self) -> None:
        assert parse_info("ts filename=a.ts add=2 remove=1") == (
            "ts",
            {"filename": "a.ts", "add": "2", "remove": "1"},
        )

    def test_bare_word_is_true(self) -> None:
        assert parse_info("ts showLineNumbers") == ("ts", {"showLineNumbers": "true"})

    def test_meta_without_language(self) -> None:
        assert parse_info("filename=a.txt") == ("", {"filename": "a.txt"})

    def test_empty(self) -> None:
        assert parse_info("") == ("", {})


class TestBuild:
    def test_line_kinds_from_meta(self, code_blocks: CodeBlockRenderer) -> None:
        block = code_blocks.build("a\nb\nc\nd\n", "ts remove=2 add=3-4")
        assert [line.kind for line in block.lines] == ["context", "remove", "add", "add"]
        assert block.has_additions and block.has_removals
        assert block.is_diff

    def test_invalid_line_meta_is_ignored(self, code_blocks: CodeBlockRenderer) -> None:
        block = code_blocks.build("a\n", "ts add=oops")
        assert [line.kind for line in block.lines] == ["context"]
        assert not block.has_additions

    def test_empty_content_has_no_lines(self, code_blocks: CodeBlockRenderer) -> None:
        assert code_blocks.build("", "ts").lines == []


class TestRender:
    def test_diff_block_html(self, code_blocks: CodeBlockRenderer) -> None:
        html = code_blocks.render_fence("const a = 1\nconst b = 1\n", "ts remove=1 add=2")
        assert html == (
            '<pre data-language="ts" data-add data-remove><code class="language-ts">'
            '<span class="codeblock-line" data-line-number="1" data-remove>'
            'const <span class="diff-inline-remove">a</span> = 1\n</span>'
            '<span class="codeblock-line" data-line-number="2" data-add>'
            'const <span class="diff-inline-add">b</span> = 1\n</span>'
            "</code></pre>\n"
        )

    def test_highlight_lines_follow_start(self, code_blocks: CodeBlockRenderer) -> None:
        html = code_blocks.render_fence("x\ny\nz\n", "ts start=10 lines=11")
        assert 'data-line-number="10">x' in html
        assert 'data-line-number="11" data-highlighted>y' in html
        assert 'data-start="10"' in html

    def test_code_is_escaped(self, code_blocks: CodeBlockRenderer) -> None:
        html = code_blocks.render_fence("a < b && c\n", "")
        assert "a &lt; b &amp;&amp; c" in html
        assert "<code>" in html

    def test_meta_attributes_are_escaped(self, code_blocks: CodeBlockRenderer) -> None:
        html = code_blocks.render_fence("x\n", 'ts filename="><script>')
        assert "<script>" not in html

    def test_styled_fragments(self) -> None:
        def keyword_highlighter(text: str, language: str) -> list[StyledText]:
            return [StyledText("let", "tok-k"), StyledText(text[3:])]

        html = CodeBlockRenderer(keyword_highlighter).render_fence("let x\n", "ts")
        assert '<span class="tok-k">let</span> x' in html


class TestDocumentRenderer:
    def test_fence_uses_code_block_renderer(self, code_blocks: CodeBlockRenderer) -> None:
        renderer = DocumentRenderer(code_blocks)
        html = renderer.render_markdown(
            "# Title\n\n```ts remove=1 add=2\nconst a = 1\nconst b = 1\n```\n"
        )
        assert "<h1>Title</h1>" in html
        assert '<span class="diff-inline-remove">a</span>' in html
        assert '<span class="diff-inline-add">b</span>' in html

    def test_tables_and_strikethrough_enabled(self, code_blocks: CodeBlockRenderer) -> None:
        html = DocumentRenderer(code_blocks).render_markdown("| a |\n| - |\n| 1 |\n\n~~old~~\n")
        assert "<table>" in html
        assert "<s>old</s>" in html

    def test_raw_html_passes_through(self, code_blocks: CodeBlockRenderer) -> None:
        html = DocumentRenderer(code_blocks).render_markdown('<div class="x">\nhi\n</div>\n')
        assert '<div class="x">' in html
