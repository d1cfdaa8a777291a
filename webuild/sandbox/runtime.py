"""
Sandbox runtime contract.

The lifecycle orchestrator only needs a small surface from the environment
that actually runs the generated project:

- runtime.boot(config) -> instance
- instance.fs.write_file / mkdir / rm / read_file
- instance.spawn(command, args, env) -> SandboxProcess
- instance.on("server-ready", listener(port, url)) -> unsubscribe
- instance.teardown()

Concrete runtimes (Docker, or an in-memory fake in tests) implement these
protocols. SandboxProcess and EventEmitter are shared building blocks so
each runtime only has to feed output and report exit codes.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import (
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
)

from webuild.logging import get_logger

logger = get_logger("webuild.sandbox.runtime")

SERVER_READY_EVENT = "server-ready"


# =============================================================================
# BOOT CONFIGURATION AND ERRORS
# =============================================================================

@dataclass(frozen=True)
class BootConfig:
    """Options passed to SandboxRuntime.boot()."""
    workdir_name: str = "webuild-app"
    env: Dict[str, str] = field(default_factory=dict)


class BootInstanceLimitError(Exception):
    """Raised by a runtime when no more sandbox instances can be created."""
    pass


class IsolationUnsupportedError(Exception):
    """Raised by a runtime when the host cannot provide an isolated environment."""
    pass


# =============================================================================
# PROCESS HANDLE
# =============================================================================

class SandboxProcess:
    """
    Handle for a process running inside a sandbox instance.

    Runtimes push output with feed() and report completion with finish();
    consumers iterate output() and await wait(). Output is buffered, so a
    reader that starts late still sees everything. Only one reader is supported.
    """

    def __init__(self, kill: Optional[Callable[[], Awaitable[None]]] = None):
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._exit: "asyncio.Future[int]" = asyncio.get_running_loop().create_future()
        self._kill = kill

    def feed(self, chunk: str) -> None:
        if not self._exit.done() and chunk:
            self._queue.put_nowait(chunk)

    def finish(self, exit_code: int) -> None:
        if self._exit.done():
            return
        self._exit.set_result(exit_code)
        self._queue.put_nowait(None)

    @property
    def exited(self) -> bool:
        return self._exit.done()

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit.result() if self._exit.done() else None

    async def output(self) -> AsyncIterator[str]:
        """Yield output chunks until the process exits."""
        while True:
            chunk = await self._queue.get()
            if chunk is None:
                return
            yield chunk

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        return await asyncio.shield(self._exit)

    async def kill(self) -> None:
        """Stop the process. Safe to call on an exited process."""
        if self.exited:
            return
        if self._kill is not None:
            await self._kill()
        # runtimes that cannot observe the exit of a killed process
        self.finish(-9)


# =============================================================================
# EVENTS
# =============================================================================

class EventEmitter:
    """Minimal on/emit registry used by runtime instances."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Callable[..., None]]] = {}

    def on(self, event: str, listener: Callable[..., None]) -> Callable[[], None]:
        self._listeners.setdefault(event, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(event, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def emit(self, event: str, *args: object) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(*args)
            except Exception:
                logger.exception("runtime.listener.failed", sandbox_event=event)

    def clear(self) -> None:
        self._listeners.clear()


# =============================================================================
# PROTOCOLS
# =============================================================================

class SandboxFileSystem(Protocol):
    """Filesystem of a sandbox instance; paths are relative to the project root."""

    async def write_file(self, path: str, content: str) -> None:
        ...

    async def read_file(self, path: str) -> str:
        """Raises FileNotFoundError for missing files."""
        ...

    async def mkdir(self, path: str, recursive: bool = True) -> None:
        """Raises FileExistsError when the directory exists and recursive is False."""
        ...

    async def rm(self, path: str, recursive: bool = False) -> None:
        """Raises FileNotFoundError for missing paths."""
        ...


class SandboxInstance(Protocol):
    """A booted sandbox instance."""

    fs: SandboxFileSystem

    async def spawn(
        self,
        command: str,
        args: Sequence[str] = (),
        env: Optional[Mapping[str, str]] = None,
    ) -> SandboxProcess:
        ...

    def on(self, event: str, listener: Callable[..., None]) -> Callable[[], None]:
        """Register a listener; "server-ready" listeners receive (port, url)."""
        ...

    async def teardown(self) -> None:
        ...


class SandboxRuntime(Protocol):
    """Factory for sandbox instances."""

    async def boot(self, config: BootConfig) -> SandboxInstance:
        """
        Boot a new instance.

        Raises:
            BootInstanceLimitError: If the instance limit has been reached
            IsolationUnsupportedError: If the host cannot isolate the project
        """
        ...
