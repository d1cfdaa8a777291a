"""
Preview Surface - What the preview pane observes from an update cycle.

- PreviewCallbacks: on_ready(url), on_loading(bool), on_error(message)
- describe_error: user-facing guidance for each kind of sandbox failure
"""

from dataclasses import dataclass, field
from typing import Callable

from webuild.sandbox.lifecycle import SandboxError, SandboxErrorKind


def _ignore(*_args) -> None:
    return None


@dataclass
class PreviewCallbacks:
    """Hooks the preview pane passes to the update coordinator."""
    on_ready: Callable[[str], None] = field(default=_ignore)
    on_loading: Callable[[bool], None] = field(default=_ignore)
    on_error: Callable[[str], None] = field(default=_ignore)


RESOURCE_LIMIT_MESSAGE = "Sandbox instance limit reached. Please refresh the page to reset the container."
ISOLATION_MESSAGE = (
    "The sandbox could not start an isolated environment. "
    "Make sure Docker is installed and running."
)
MAX_RETRIES_MESSAGE = "Maximum retry attempts reached. Please try a hard reset."


def describe_error(error: SandboxError) -> str:
    """
    Turn a sandbox failure into a message for the preview pane.

    Args:
        error: The failure raised by the orchestrator

    Returns:
        Guidance text
    """
    if error.kind is SandboxErrorKind.BOOT_RESOURCE_LIMIT:
        return RESOURCE_LIMIT_MESSAGE
    if error.kind is SandboxErrorKind.BOOT_ISOLATION_UNSUPPORTED:
        return ISOLATION_MESSAGE
    if error.kind is SandboxErrorKind.RETRY_EXHAUSTED:
        return MAX_RETRIES_MESSAGE
    return f"Preview error: {error.message}"
