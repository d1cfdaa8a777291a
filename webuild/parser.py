"""
Block Parser - Turn raw model output into validated file and command operations.

The model writes its project as a sequence of tagged blocks:

    <weBuild action="create" fileName="app/page.tsx">
    export default function Page() { ... }
    </weBuild>
    <weBuild action="terminal" command="npm install zod"></weBuild>

Parsing is a pure function: it either returns a complete ParseResult or raises
ParseError. It never returns a partial result and never touches the sandbox.

Tags are found with a small hand-written scanner instead of a regex. The
scanner handles single- and double-quoted attribute values, keeps a quote
character of the other kind or a ">" inside a value, and unescapes a
backslash-escaped quote of the active kind.
"""

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import Dict, FrozenSet, Iterator, List, Mapping, Optional, Tuple, Union

from webuild.config import DEFAULT_ALLOWED_EXTENSIONS
from webuild.schemas import CommandOperation, FileAction, FileOperation, ParseResult


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_TAG_NAME = "weBuild"

# Default per-file ceiling (1 MiB of UTF-8)
DEFAULT_MAX_FILE_SIZE = 1_048_576

VALID_ACTIONS = ("create", "update", "delete", "terminal")

_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")
_SEGMENT_SPLIT = re.compile(r"[\\/]")


# =============================================================================
# ERRORS
# =============================================================================

class ParseErrorKind(str, Enum):
    """Why a piece of model output was rejected."""
    INVALID_ACTION = "invalid_action"
    MISSING_FILE_NAME = "missing_file_name"
    MISSING_COMMAND = "missing_command"
    EMPTY_CONTENT = "empty_content"
    INVALID_PATH = "invalid_path"
    DISALLOWED_EXTENSION = "disallowed_extension"
    FILE_TOO_LARGE = "file_too_large"


class ParseError(Exception):
    """Raised when a block fails validation. Carries the block index for diagnostics."""

    def __init__(
        self,
        kind: ParseErrorKind,
        message: str,
        block_index: Optional[int] = None,
        file_name: Optional[str] = None,
    ):
        self.kind = kind
        self.block_index = block_index
        self.file_name = file_name
        location = f"block {block_index}" if block_index is not None else "input"
        super().__init__(f"Error parsing {location}: {message}")


# =============================================================================
# SCANNER
# =============================================================================

@dataclass(frozen=True)
class RawBlock:
    """A complete tagged block before validation."""
    index: int
    attributes: Dict[str, str]
    content: str


class BlockScanner:
    """
    Finds ``<tag ...>content</tag>`` blocks in order of appearance.

    A block whose opening tag or closing tag never arrives (for example the
    tail of a reply that is still streaming) is not a block and is skipped,
    together with everything after it.
    """

    def __init__(self, tag: str = DEFAULT_TAG_NAME):
        self.tag = tag
        self._open = "<" + tag
        self._close = "</" + tag

    def scan(self, raw: str) -> Iterator[RawBlock]:
        pos = 0
        index = 0
        length = len(raw)

        while True:
            start = raw.find(self._open, pos)
            if start == -1:
                return

            after = start + len(self._open)
            if after >= length:
                return
            # <weBuildX ...> is a different tag
            if not (raw[after].isspace() or raw[after] in ">/"):
                pos = after
                continue

            parsed = self._read_attributes(raw, after)
            if parsed is None:
                return
            attributes, body_start, self_closing = parsed

            if self_closing:
                yield RawBlock(index=index, attributes=attributes, content="")
                index += 1
                pos = body_start
                continue

            close = self._find_close(raw, body_start)
            if close is None:
                return
            body_end, pos = close

            yield RawBlock(index=index, attributes=attributes, content=raw[body_start:body_end])
            index += 1

    def _find_close(self, raw: str, pos: int) -> Optional[Tuple[int, int]]:
        """Locate the closing tag; returns (content end, position after the tag)."""
        while True:
            start = raw.find(self._close, pos)
            if start == -1:
                return None
            i = start + len(self._close)
            while i < len(raw) and raw[i].isspace():
                i += 1
            if i < len(raw) and raw[i] == ">":
                return start, i + 1
            pos = start + len(self._close)

    def _read_attributes(self, raw: str, pos: int) -> Optional[Tuple[Dict[str, str], int, bool]]:
        """Read attributes up to the end of the opening tag.

        Returns (attributes, position after the tag, self-closing) or None when
        the tag is not terminated.
        """
        attributes: Dict[str, str] = {}
        length = len(raw)
        i = pos

        while i < length:
            ch = raw[i]
            if ch.isspace():
                i += 1
                continue
            if ch == ">":
                return attributes, i + 1, False
            if ch == "/" and i + 1 < length and raw[i + 1] == ">":
                return attributes, i + 2, True

            name_start = i
            while i < length and not raw[i].isspace() and raw[i] not in "=>/":
                i += 1
            name = raw[name_start:i]
            if not name:
                # stray "=" or "/"
                i += 1
                continue

            j = i
            while j < length and raw[j].isspace():
                j += 1

            if j >= length or raw[j] != "=":
                attributes.setdefault(name, "")
                i = j
                continue

            j += 1
            while j < length and raw[j].isspace():
                j += 1
            if j >= length:
                return None

            if raw[j] in "\"'":
                quoted = self._read_quoted(raw, j + 1, raw[j])
                if quoted is None:
                    return None
                value, j = quoted
            else:
                value_start = j
                while j < length and not raw[j].isspace() and raw[j] != ">":
                    j += 1
                if j > value_start + 1 and raw[j - 1] == "/" and j < length and raw[j] == ">":
                    j -= 1
                value = raw[value_start:j]

            attributes.setdefault(name, value)
            i = j

        return None

    @staticmethod
    def _read_quoted(raw: str, pos: int, quote: str) -> Optional[Tuple[str, int]]:
        chars: List[str] = []
        i = pos
        while i < len(raw):
            ch = raw[i]
            if ch == "\\" and i + 1 < len(raw) and raw[i + 1] == quote:
                chars.append(quote)
                i += 2
                continue
            if ch == quote:
                return "".join(chars), i + 1
            chars.append(ch)
            i += 1
        return None


# =============================================================================
# PARSER
# =============================================================================

def normalize_content(text: str) -> str:
    """Normalize line endings to LF and trim surrounding whitespace and blank lines."""
    return text.replace("\r\n", "\n").replace("\r", "\n").strip()


class BlockParser:
    """
    Validating parser for tagged model output.

    Args:
        tag: Block tag name (default "weBuild")
        max_file_size: Maximum content size per file, in UTF-8 bytes
        allowed_extensions: Lower-case extensions (with dot) accepted for files;
            paths without an extension are always accepted
    """

    def __init__(
        self,
        tag: str = DEFAULT_TAG_NAME,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        allowed_extensions: Optional[FrozenSet[str]] = None,
    ):
        self.tag = tag
        self.max_file_size = max_file_size
        self.allowed_extensions = frozenset(
            ext.lower() for ext in (allowed_extensions if allowed_extensions is not None else DEFAULT_ALLOWED_EXTENSIONS)
        )
        self._scanner = BlockScanner(tag)

    @classmethod
    def from_config(cls) -> "BlockParser":
        """Build a parser from the WEBUILD_* settings."""
        from webuild.config import get_config

        config = get_config()
        return cls(
            tag=config.tag_name,
            max_file_size=config.max_file_size,
            allowed_extensions=config.allowed_extensions,
        )

    def parse(self, raw: str) -> ParseResult:
        """
        Parse raw model output into an ordered ParseResult.

        Args:
            raw: Model output containing tagged blocks

        Returns:
            ParseResult with files and commands in source order

        Raises:
            ParseError: If any block is invalid (no partial result is returned)
        """
        if not isinstance(raw, str):
            raise TypeError(f"Expected model output as str, got {type(raw).__name__}")

        files: List[FileOperation] = []
        commands: List[CommandOperation] = []
        total = 0

        for block in self._scanner.scan(raw):
            total += 1
            action = block.attributes.get("action", "").strip().lower()

            if action not in VALID_ACTIONS:
                raise ParseError(
                    ParseErrorKind.INVALID_ACTION,
                    f"Invalid action: {block.attributes.get('action')!r}",
                    block_index=block.index,
                )

            if action == "terminal":
                commands.append(self._command(block))
            else:
                files.append(self._file(block, FileAction(action)))

        return ParseResult(files=tuple(files), commands=tuple(commands), total_blocks=total)

    def _command(self, block: RawBlock) -> CommandOperation:
        command = block.attributes.get("command", "").strip()
        if not command:
            raise ParseError(
                ParseErrorKind.MISSING_COMMAND,
                "command is required for terminal actions",
                block_index=block.index,
            )
        return CommandOperation(command=command)

    def _file(self, block: RawBlock, action: FileAction) -> FileOperation:
        path = block.attributes.get("fileName", "").strip()
        if not path:
            raise ParseError(
                ParseErrorKind.MISSING_FILE_NAME,
                f"fileName is required for {action.value} actions",
                block_index=block.index,
            )

        path = self._validate_path(path, block.index)

        if action is FileAction.DELETE:
            return FileOperation(action=action, path=path)

        content = normalize_content(block.content)
        if not content:
            raise ParseError(
                ParseErrorKind.EMPTY_CONTENT,
                f"{path} has no content",
                block_index=block.index,
                file_name=path,
            )

        size = len(content.encode("utf-8"))
        if size > self.max_file_size:
            raise ParseError(
                ParseErrorKind.FILE_TOO_LARGE,
                f"{path} is {size} bytes, limit is {self.max_file_size}",
                block_index=block.index,
                file_name=path,
            )

        return FileOperation(action=action, path=path, content=content, size=size)

    def _validate_path(self, path: str, index: int) -> str:
        """Reject absolute or escaping paths and disallowed extensions."""
        if path.startswith("./"):
            path = path[2:]

        segments = _SEGMENT_SPLIT.split(path)
        if (
            path.startswith(("/", "\\"))
            or _DRIVE_PREFIX.match(path)
            or "\x00" in path
            or ".." in segments
            or segments[-1] in ("", ".")
        ):
            raise ParseError(
                ParseErrorKind.INVALID_PATH,
                f"Invalid path: {path!r}",
                block_index=index,
                file_name=path,
            )

        extension = PurePosixPath(path).suffix.lower()
        if extension and extension not in self.allowed_extensions:
            raise ParseError(
                ParseErrorKind.DISALLOWED_EXTENSION,
                f"Extension {extension!r} is not allowed ({path})",
                block_index=index,
                file_name=path,
            )

        return path


# =============================================================================
# MODULE-LEVEL FUNCTIONS
# =============================================================================

_default_parser = BlockParser()


def parse(raw: str) -> ParseResult:
    """Parse model output with the default settings."""
    return _default_parser.parse(raw)


def _quote(value: str) -> str:
    if '"' not in value:
        return f'"{value}"'
    if "'" not in value:
        return f"'{value}'"
    return '"' + value.replace('"', '\\"') + '"'


def summarize(source: Union[str, ParseResult], tag: str = DEFAULT_TAG_NAME) -> str:
    """
    Re-emit blocks with their content replaced by a size note.

    Used to tell the model which files already exist without resending them.

    Args:
        source: Raw model output or an already parsed result
        tag: Tag name to emit

    Returns:
        Structure-only block text (files first, then commands)
    """
    if isinstance(source, str):
        parser = _default_parser if tag == DEFAULT_TAG_NAME else BlockParser(tag=tag)
        result = parser.parse(source)
    else:
        result = source

    parts = []
    for op in result.files:
        header = f"<{tag} action={_quote(op.action.value)} fileName={_quote(op.path)}>"
        if op.is_delete:
            parts.append(f"{header}\n</{tag}>")
        else:
            parts.append(f"{header}\n// Content skipped ({len(op.content)} characters)\n</{tag}>")

    for cmd in result.commands:
        parts.append(f"<{tag} action=\"terminal\" command={_quote(cmd.command)}>\n</{tag}>")

    return "\n\n".join(parts)


def format_blocks(files: Mapping[str, str], tag: str = DEFAULT_TAG_NAME) -> str:
    """Serialize a path-to-content map as create blocks."""
    return "\n\n".join(
        f"<{tag} action=\"create\" fileName={_quote(path)}>\n{content}\n</{tag}>"
        for path, content in files.items()
    )
