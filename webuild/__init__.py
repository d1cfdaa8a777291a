"""
WeBuild preview: turn model output into a live, sandboxed web app preview.
"""

from webuild.coordinator import PendingPolicy, RetryContext, UpdateCoordinator
from webuild.parser import BlockParser, ParseError, ParseErrorKind, parse
from webuild.projection import project
from webuild.schemas import FileNode, FileOperation, ParseResult, Projection, ReadinessEvent

__version__ = "0.1.0"

__all__ = [
    "BlockParser",
    "ParseError",
    "ParseErrorKind",
    "parse",
    "UpdateCoordinator",
    "PendingPolicy",
    "RetryContext",
    "project",
    "FileNode",
    "FileOperation",
    "ParseResult",
    "Projection",
    "ReadinessEvent",
]
