"""
Sandbox module for running generated projects and serving a live preview.

Components:
- runtime: Contract a sandbox runtime implements (boot, fs, spawn, events)
- lifecycle: Orchestrator driving one instance from boot to serving
- registry: Readiness fan-out with replay of the last URL
- scaffold: Default project written into a fresh instance
- preview: Callbacks and user-facing error messages for the preview pane
- docker_runtime: Runtime backed by Docker containers
"""

from webuild.sandbox.lifecycle import (
    RetryExhaustedError,
    SandboxError,
    SandboxErrorKind,
    SandboxOrchestrator,
    SandboxState,
    classify_boot_error,
)
from webuild.sandbox.preview import PreviewCallbacks, describe_error
from webuild.sandbox.registry import ReadinessRegistry, detect_ready_url
from webuild.sandbox.runtime import (
    SERVER_READY_EVENT,
    BootConfig,
    BootInstanceLimitError,
    IsolationUnsupportedError,
    SandboxProcess,
)

__all__ = [
    # Lifecycle
    "SandboxOrchestrator",
    "SandboxState",
    "SandboxError",
    "SandboxErrorKind",
    "RetryExhaustedError",
    "classify_boot_error",
    # Preview
    "PreviewCallbacks",
    "describe_error",
    # Registry
    "ReadinessRegistry",
    "detect_ready_url",
    # Runtime contract
    "SERVER_READY_EVENT",
    "BootConfig",
    "BootInstanceLimitError",
    "IsolationUnsupportedError",
    "SandboxProcess",
]
