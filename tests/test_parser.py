"""Tests for the block parser."""

from __future__ import annotations

import pytest

from webuild.parser import (
    BlockParser,
    BlockScanner,
    ParseError,
    ParseErrorKind,
    format_blocks,
    normalize_content,
    parse,
    summarize,
)
from webuild.schemas import FileAction


class TestParse:
    """Tests for well-formed model output."""

    def test_file_and_terminal_blocks(self) -> None:
        """Should extract files and commands in source order."""
        raw = (
            '<weBuild action="create" fileName="app/page.tsx">export default function Page() {}</weBuild>'
            '<weBuild action="terminal" command="npm install"></weBuild>'
        )
        result = parse(raw)

        assert result.file_names == ["app/page.tsx"]
        assert result.files[0].action is FileAction.CREATE
        assert result.files[0].content == "export default function Page() {}"
        assert result.command_strings == ["npm install"]
        assert result.total_blocks == 2

    def test_prose_around_blocks_is_ignored(self) -> None:
        """Should ignore text outside blocks."""
        raw = (
            "Here is your app:\n\n"
            '<weBuild action="create" fileName="src/App.tsx">\nconst App = () => null\n</weBuild>\n'
            "Run it with npm run dev."
        )
        result = parse(raw)
        assert result.file_names == ["src/App.tsx"]
        assert result.commands == ()

    def test_order_is_preserved(self) -> None:
        """Should keep files in the order their blocks appear."""
        raw = "".join(
            f'<weBuild action="create" fileName="{name}">x</weBuild>'
            for name in ("b.ts", "a.ts", "c/d.ts")
        )
        assert parse(raw).file_names == ["b.ts", "a.ts", "c/d.ts"]

    def test_duplicate_paths_are_kept(self) -> None:
        """Should keep duplicates; they are resolved when applied."""
        raw = (
            '<weBuild action="create" fileName="a.ts">one</weBuild>'
            '<weBuild action="update" fileName="a.ts">two</weBuild>'
        )
        result = parse(raw)
        assert [f.content for f in result.files] == ["one", "two"]
        assert result.files[1].action is FileAction.UPDATE

    def test_delete_ignores_content(self) -> None:
        """Should produce an empty delete operation."""
        result = parse('<weBuild action="delete" fileName="old.ts">leftover</weBuild>')
        op = result.files[0]
        assert op.is_delete
        assert op.content == ""
        assert op.size == 0

    def test_content_is_normalized(self) -> None:
        """Should convert CRLF and trim surrounding blank lines."""
        result = parse('<weBuild action="create" fileName="a.ts">\r\n\r\nline1\r\nline2  \r\n\r\n</weBuild>')
        assert result.files[0].content == "line1\nline2"

    def test_size_counts_utf8_bytes(self) -> None:
        """Should report the UTF-8 byte length."""
        result = parse('<weBuild action="create" fileName="a.md">é</weBuild>')
        assert result.files[0].size == 2

    def test_command_is_trimmed(self) -> None:
        """Should trim the command and leave the rest untouched."""
        result = parse('<weBuild action="terminal" command="  npm i  zod && echo ok "></weBuild>')
        assert result.command_strings == ["npm i  zod && echo ok"]

    def test_empty_input(self) -> None:
        """Should return an empty result for text without blocks."""
        result = parse("No code this time.")
        assert result.is_empty
        assert result.total_blocks == 0

    def test_deterministic(self) -> None:
        """Should return equal results for equal input."""
        raw = '<weBuild action="create" fileName="a.ts">x</weBuild><weBuild action="terminal" command="ls"/>'
        assert parse(raw) == parse(raw)

    def test_leading_dot_slash_is_stripped(self) -> None:
        """Should accept ./ relative paths."""
        assert parse('<weBuild action="create" fileName="./src/a.ts">x</weBuild>').file_names == ["src/a.ts"]

    def test_action_is_case_insensitive(self) -> None:
        """Should accept action values in any case."""
        assert parse('<weBuild action="Create" fileName="a.ts">x</weBuild>').files[0].action is FileAction.CREATE

    def test_rejects_non_string(self) -> None:
        """Should raise TypeError for non-text input."""
        with pytest.raises(TypeError):
            parse(None)  # type: ignore[arg-type]


class TestScanner:
    """Tests for the tag scanner."""

    def test_single_quotes_and_embedded_double_quotes(self) -> None:
        """Should read single-quoted values containing double quotes."""
        blocks = list(BlockScanner().scan("<weBuild action='terminal' command='echo \"hi\"'></weBuild>"))
        assert blocks[0].attributes["command"] == 'echo "hi"'

    def test_escaped_quote(self) -> None:
        """Should unescape a backslash-escaped active quote."""
        blocks = list(BlockScanner().scan('<weBuild action="terminal" command="echo \\"hi\\""></weBuild>'))
        assert blocks[0].attributes["command"] == 'echo "hi"'

    def test_gt_inside_quoted_value(self) -> None:
        """Should not end the tag at > inside a quoted value."""
        blocks = list(BlockScanner().scan('<weBuild action="terminal" command="ls > out.txt"></weBuild>'))
        assert blocks[0].attributes["command"] == "ls > out.txt"

    def test_unquoted_value(self) -> None:
        """Should read unquoted values up to whitespace or >."""
        blocks = list(BlockScanner().scan("<weBuild action=create fileName=a.ts>x</weBuild>"))
        assert blocks[0].attributes == {"action": "create", "fileName": "a.ts"}

    def test_self_closing(self) -> None:
        """Should yield self-closing blocks with empty content."""
        blocks = list(BlockScanner().scan('<weBuild action="terminal" command="ls"/><weBuild action="delete" fileName="a.ts" />'))
        assert [b.content for b in blocks] == ["", ""]
        assert blocks[1].attributes["fileName"] == "a.ts"

    def test_unterminated_block_is_ignored(self) -> None:
        """Should skip a block whose closing tag has not arrived yet."""
        raw = (
            '<weBuild action="create" fileName="a.ts">done</weBuild>'
            '<weBuild action="create" fileName="b.ts">still streaming'
        )
        assert parse(raw).file_names == ["a.ts"]

    def test_unterminated_opening_tag_is_ignored(self) -> None:
        """Should skip an opening tag cut off mid-attribute."""
        assert parse('<weBuild action="create" fileName="a.t').is_empty

    def test_similar_tag_names_are_not_blocks(self) -> None:
        """Should not match tags that only share a prefix."""
        assert list(BlockScanner().scan('<weBuilder action="create">x</weBuilder>')) == []

    def test_closing_tag_with_whitespace(self) -> None:
        """Should accept whitespace before > in the closing tag."""
        assert parse('<weBuild action="create" fileName="a.ts">x</weBuild  >').file_names == ["a.ts"]

    def test_block_index_is_order_of_appearance(self) -> None:
        """Should number blocks from zero."""
        blocks = list(BlockScanner().scan("<weBuild a=1>x</weBuild> text <weBuild a=2>y</weBuild>"))
        assert [b.index for b in blocks] == [0, 1]


class TestParseErrors:
    """Tests for rejected blocks."""

    def test_missing_file_name(self) -> None:
        """Should raise MISSING_FILE_NAME for block 0."""
        with pytest.raises(ParseError) as exc_info:
            parse('<weBuild action="create"></weBuild>')
        assert exc_info.value.kind is ParseErrorKind.MISSING_FILE_NAME
        assert exc_info.value.block_index == 0
        assert "block 0" in str(exc_info.value)

    def test_parent_traversal(self) -> None:
        """Should reject .. segments."""
        with pytest.raises(ParseError) as exc_info:
            parse('<weBuild action="create" fileName="../../etc/passwd">x</weBuild>')
        assert exc_info.value.kind is ParseErrorKind.INVALID_PATH

    @pytest.mark.parametrize("path", ["/etc/hosts.txt", "\\windows\\a.txt", "C:/a.txt", "src/", "a/../b.ts"])
    def test_invalid_paths(self, path: str) -> None:
        """Should reject absolute, drive, directory and escaping paths."""
        with pytest.raises(ParseError) as exc_info:
            parse(f'<weBuild action="create" fileName="{path}">x</weBuild>')
        assert exc_info.value.kind is ParseErrorKind.INVALID_PATH

    @pytest.mark.parametrize("path", [".", "./.", "src/."])
    def test_current_directory_paths(self, path: str) -> None:
        """Should reject paths that name a directory instead of a file."""
        with pytest.raises(ParseError) as exc_info:
            parse(f'<weBuild action="create" fileName="{path}">x</weBuild>')
        assert exc_info.value.kind is ParseErrorKind.INVALID_PATH

    def test_delete_path_is_validated(self) -> None:
        """Should validate paths of delete blocks too."""
        with pytest.raises(ParseError) as exc_info:
            parse('<weBuild action="delete" fileName="../secret.ts"></weBuild>')
        assert exc_info.value.kind is ParseErrorKind.INVALID_PATH

    def test_invalid_action(self) -> None:
        """Should reject unknown actions."""
        with pytest.raises(ParseError) as exc_info:
            parse('<weBuild action="rename" fileName="a.ts">x</weBuild>')
        assert exc_info.value.kind is ParseErrorKind.INVALID_ACTION

    def test_missing_action(self) -> None:
        """Should reject blocks without an action."""
        with pytest.raises(ParseError) as exc_info:
            parse('<weBuild fileName="a.ts">x</weBuild>')
        assert exc_info.value.kind is ParseErrorKind.INVALID_ACTION

    def test_missing_command(self) -> None:
        """Should reject terminal blocks without a command."""
        with pytest.raises(ParseError) as exc_info:
            parse('<weBuild action="terminal" command="   "></weBuild>')
        assert exc_info.value.kind is ParseErrorKind.MISSING_COMMAND

    def test_empty_content(self) -> None:
        """Should reject create blocks with only whitespace."""
        with pytest.raises(ParseError) as exc_info:
            parse('<weBuild action="create" fileName="a.ts">\n   \n</weBuild>')
        assert exc_info.value.kind is ParseErrorKind.EMPTY_CONTENT
        assert exc_info.value.file_name == "a.ts"

    def test_disallowed_extension(self) -> None:
        """Should reject extensions outside the allow-list."""
        with pytest.raises(ParseError) as exc_info:
            parse('<weBuild action="create" fileName="tool.exe">x</weBuild>')
        assert exc_info.value.kind is ParseErrorKind.DISALLOWED_EXTENSION

    def test_file_without_extension_is_allowed(self) -> None:
        """Should accept extensionless files."""
        assert parse('<weBuild action="create" fileName="Dockerfile">FROM node</weBuild>').file_names == ["Dockerfile"]

    def test_file_too_large(self) -> None:
        """Should reject content above the byte ceiling."""
        parser = BlockParser(max_file_size=4)
        with pytest.raises(ParseError) as exc_info:
            parser.parse('<weBuild action="create" fileName="a.ts">12345</weBuild>')
        assert exc_info.value.kind is ParseErrorKind.FILE_TOO_LARGE

    def test_no_partial_result(self) -> None:
        """Should fail the whole parse when a later block is invalid."""
        raw = (
            '<weBuild action="create" fileName="a.ts">ok</weBuild>'
            '<weBuild action="create"></weBuild>'
        )
        with pytest.raises(ParseError) as exc_info:
            parse(raw)
        assert exc_info.value.block_index == 1


class TestConfiguration:
    """Tests for parser options."""

    def test_custom_tag(self) -> None:
        """Should only match the configured tag."""
        parser = BlockParser(tag="artifact")
        raw = '<artifact action="create" fileName="a.ts">x</artifact><weBuild action="create" fileName="b.ts">y</weBuild>'
        assert parser.parse(raw).file_names == ["a.ts"]

    def test_custom_extensions(self) -> None:
        """Should use the given allow-list."""
        parser = BlockParser(allowed_extensions=frozenset({".py"}))
        assert parser.parse('<weBuild action="create" fileName="main.py">print()</weBuild>').file_names == ["main.py"]
        with pytest.raises(ParseError):
            parser.parse('<weBuild action="create" fileName="main.ts">x</weBuild>')

    def test_from_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Should read the tag and size limit from the environment."""
        monkeypatch.setenv("WEBUILD_TAG_NAME", "artifact")
        monkeypatch.setenv("WEBUILD_MAX_FILE_SIZE", "10")
        parser = BlockParser.from_config()
        assert parser.tag == "artifact"
        assert parser.max_file_size == 10


class TestHelpers:
    """Tests for summarize, format_blocks and normalize_content."""

    def test_summarize_replaces_content(self) -> None:
        """Should keep block headers and report content length."""
        raw = (
            '<weBuild action="create" fileName="a.ts">hello</weBuild>'
            '<weBuild action="terminal" command="npm install"></weBuild>'
        )
        summary = summarize(raw)
        assert '<weBuild action="create" fileName="a.ts">' in summary
        assert "// Content skipped (5 characters)" in summary
        assert "hello" not in summary
        assert 'command="npm install"' in summary

    def test_summarize_custom_tag(self) -> None:
        """Should parse and emit the given tag."""
        summary = summarize('<artifact action="create" fileName="a.ts">hello</artifact>', tag="artifact")
        assert summary.startswith('<artifact action="create" fileName="a.ts">')

    def test_format_blocks_round_trips(self) -> None:
        """Should produce blocks the parser reads back."""
        files = {"src/App.tsx": "export default 1", "index.html": "<div id=\"root\"></div>"}
        result = parse(format_blocks(files))
        assert {f.path: f.content for f in result.files} == files

    def test_normalize_content(self) -> None:
        """Should unify line endings before trimming."""
        assert normalize_content("\r\n  a\rb  \n\n") == "a\nb"
