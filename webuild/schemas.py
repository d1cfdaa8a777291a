"""
Pydantic schemas for parsed model output, preview projection and chat context.
"""

from enum import Enum
from typing import Dict, List, Literal, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field


class ChatTurn(BaseModel):
    """A single turn in a conversation."""
    role: Literal["user", "assistant"] = Field(..., description="Role of the speaker")
    content: str = Field(..., description="Message content")


class FileAction(str, Enum):
    """What a file block asks the sandbox to do."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class FileOperation(BaseModel):
    """A validated file operation extracted from one block."""
    model_config = ConfigDict(frozen=True)

    action: FileAction = Field(..., description="create, update or delete")
    path: str = Field(..., min_length=1, description="Path relative to the project root")
    content: str = Field(default="", description="Normalized file content (empty for delete)")
    size: int = Field(default=0, ge=0, description="Content size in UTF-8 bytes")

    @property
    def is_delete(self) -> bool:
        return self.action is FileAction.DELETE


class CommandOperation(BaseModel):
    """A shell command extracted from a terminal block."""
    model_config = ConfigDict(frozen=True)

    command: str = Field(..., min_length=1, description="Trimmed shell command")


class ParseResult(BaseModel):
    """
    Ordered operations extracted from one piece of model output.

    Files and commands keep the order in which their blocks appeared.
    Duplicate paths are kept; the sandbox resolves them last-write-wins.
    """
    model_config = ConfigDict(frozen=True)

    files: Tuple[FileOperation, ...] = Field(default=(), description="File operations in source order")
    commands: Tuple[CommandOperation, ...] = Field(default=(), description="Commands in source order")
    total_blocks: int = Field(default=0, ge=0, description="Number of blocks scanned")

    @property
    def file_names(self) -> List[str]:
        return [f.path for f in self.files]

    @property
    def command_strings(self) -> List[str]:
        return [c.command for c in self.commands]

    @property
    def is_empty(self) -> bool:
        return not self.files and not self.commands


class ReadinessEvent(BaseModel):
    """Emitted once per transition into the serving state."""
    model_config = ConfigDict(frozen=True)

    url: str = Field(..., description="Preview URL of the running dev server")


class FileNode(BaseModel):
    """
    A node in the projected project tree.

    Children are keyed by name, so two trees built from the same files are
    equal no matter which order the files were added in.
    """
    name: str = Field(..., description="Last path segment (project name for the root)")
    type: Literal["file", "folder"] = Field(..., description="Node kind")
    path: str = Field(default="", description="Full path from the project root")
    size: Optional[int] = Field(None, description="Content size in bytes (files only)")
    language: Optional[str] = Field(None, description="Best-effort language tag (files only)")
    children: Dict[str, "FileNode"] = Field(default_factory=dict, description="Child nodes by name")

    @property
    def is_file(self) -> bool:
        return self.type == "file"


class Projection(BaseModel):
    """Path-to-content map plus the tree built from it."""
    contents: Dict[str, str] = Field(default_factory=dict, description="Map of file path to file content")
    tree: FileNode = Field(..., description="Hierarchical view of the contents")


FileNode.model_rebuild()
