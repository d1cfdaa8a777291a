"""
Sandbox Lifecycle Orchestrator - Drive one sandbox instance through a preview cycle.

Each apply() call walks the instance through:

    BOOTING -> MOUNTING -> INSTALLING -> STARTING -> SERVING

- Boot happens once per instance; the default scaffold is written right after
- Files are written in parser order, then terminal commands run in order
- The install command runs every cycle
- The dev server is spawned once and reused while it stays alive
- Readiness comes from the runtime's "server-ready" event, or from the
  server's output when heuristics are enabled, within a bounded wait

Failures move the state to FAILED and surface as SandboxError. The
orchestrator is constructed explicitly and owns its instance; there is no
process-wide singleton.
"""

import asyncio
import posixpath
import shlex
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple

from webuild.config import Config, get_config
from webuild.logging import get_logger
from webuild.schemas import CommandOperation, FileOperation, ParseResult
from webuild.sandbox.registry import ReadinessListener, ReadinessRegistry, detect_ready_url
from webuild.sandbox.runtime import (
    SERVER_READY_EVENT,
    BootConfig,
    BootInstanceLimitError,
    IsolationUnsupportedError,
    SandboxInstance,
    SandboxProcess,
    SandboxRuntime,
)
from webuild.sandbox.scaffold import ensure_scaffold

logger = get_logger("webuild.sandbox.lifecycle")


# =============================================================================
# STATES AND ERRORS
# =============================================================================

class SandboxState(str, Enum):
    UNINITIALIZED = "uninitialized"
    BOOTING = "booting"
    MOUNTING = "mounting"
    INSTALLING = "installing"
    STARTING = "starting"
    SERVING = "serving"
    FAILED = "failed"


class SandboxErrorKind(str, Enum):
    BOOT_RESOURCE_LIMIT = "boot_resource_limit"
    BOOT_ISOLATION_UNSUPPORTED = "boot_isolation_unsupported"
    MOUNT_FAILURE = "mount_failure"
    COMMAND_FAILURE = "command_failure"
    SERVER_START_TIMEOUT = "server_start_timeout"
    GENERIC = "generic"
    RETRY_EXHAUSTED = "retry_exhausted"


class SandboxError(Exception):
    """Raised when a sandbox cycle fails."""

    def __init__(self, kind: SandboxErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


class RetryExhaustedError(SandboxError):
    """Raised when the retry budget is spent and only a hard reset is accepted."""

    def __init__(self, message: str = "Maximum retry attempts reached. Please hard reset the preview."):
        super().__init__(SandboxErrorKind.RETRY_EXHAUSTED, message)


# Reset to UNINITIALIZED is allowed from every state
TRANSITIONS: Dict[SandboxState, FrozenSet[SandboxState]] = {
    SandboxState.UNINITIALIZED: frozenset({SandboxState.BOOTING}),
    SandboxState.BOOTING: frozenset({SandboxState.MOUNTING, SandboxState.FAILED}),
    SandboxState.MOUNTING: frozenset({SandboxState.INSTALLING, SandboxState.FAILED}),
    SandboxState.INSTALLING: frozenset({SandboxState.STARTING, SandboxState.FAILED}),
    SandboxState.STARTING: frozenset({SandboxState.SERVING, SandboxState.FAILED}),
    SandboxState.SERVING: frozenset({SandboxState.MOUNTING}),
    SandboxState.FAILED: frozenset({SandboxState.BOOTING}),
}

# States a failing cycle can leave through FAILED
_IN_CYCLE = frozenset({
    SandboxState.BOOTING,
    SandboxState.MOUNTING,
    SandboxState.INSTALLING,
    SandboxState.STARTING,
})


def classify_boot_error(exc: BaseException) -> SandboxError:
    """
    Map a runtime boot failure to a SandboxError.

    Typed runtime errors win; otherwise the message wording decides.
    """
    if isinstance(exc, SandboxError):
        return exc

    message = str(exc) or exc.__class__.__name__
    lowered = message.lower()

    if (
        isinstance(exc, BootInstanceLimitError)
        or "unable to create more instances" in lowered
        or "instance limit" in lowered
    ):
        return SandboxError(SandboxErrorKind.BOOT_RESOURCE_LIMIT, f"Sandbox instance limit reached: {message}")

    if (
        isinstance(exc, IsolationUnsupportedError)
        or "sharedarraybuffer" in lowered
        or "isolation" in lowered
    ):
        return SandboxError(
            SandboxErrorKind.BOOT_ISOLATION_UNSUPPORTED,
            f"Sandbox requires an isolated environment: {message}",
        )

    return SandboxError(SandboxErrorKind.GENERIC, f"Sandbox initialization failed: {message}")


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class SandboxOrchestrator:
    """
    Owns one sandbox instance and applies parse results to it.

    Only one apply() may run at a time; a concurrent call raises
    SandboxError(GENERIC) instead of queueing.
    """

    def __init__(
        self,
        runtime: SandboxRuntime,
        install_command: str = "npm install",
        dev_command: str = "npm run dev",
        default_url: str = "http://localhost:3000",
        ready_timeout: float = 120.0,
        heuristic_readiness: bool = True,
        boot_config: Optional[BootConfig] = None,
        registry: Optional[ReadinessRegistry] = None,
    ):
        self._runtime = runtime
        self._install_command = install_command
        self._dev_command = dev_command
        self._default_url = default_url
        self._ready_timeout = ready_timeout
        self._heuristic_readiness = heuristic_readiness
        self._boot_config = boot_config or BootConfig()
        self._registry = registry or ReadinessRegistry()

        self._state = SandboxState.UNINITIALIZED
        self._history: List[SandboxState] = [self._state]
        self._applying = False
        self._boot_lock = asyncio.Lock()

        # Per-instance bookkeeping
        self._instance: Optional[SandboxInstance] = None
        self._unsubscribe_ready: Optional[Callable[[], None]] = None
        self._scaffolded = False
        self._applied: Dict[str, str] = {}
        self._server: Optional[SandboxProcess] = None
        self._server_tasks: List["asyncio.Task[None]"] = []
        self._ready_waiter: Optional["asyncio.Future[str]"] = None
        self._url: Optional[str] = None

    @classmethod
    def from_config(cls, runtime: SandboxRuntime, config: Optional[Config] = None) -> "SandboxOrchestrator":
        config = config or get_config()
        return cls(
            runtime,
            install_command=config.install_command,
            dev_command=config.dev_command,
            default_url=config.default_url,
            ready_timeout=config.ready_timeout,
            heuristic_readiness=config.heuristic_readiness,
        )

    # ----- read accessors -----

    @property
    def state(self) -> SandboxState:
        return self._state

    @property
    def state_history(self) -> List[SandboxState]:
        return list(self._history)

    @property
    def url(self) -> Optional[str]:
        return self._url

    @property
    def applied_files(self) -> Dict[str, str]:
        return dict(self._applied)

    @property
    def is_applying(self) -> bool:
        return self._applying

    def is_ready(self) -> bool:
        return self._state is SandboxState.SERVING and self._url is not None

    def on_ready(self, listener: ReadinessListener) -> Callable[[], None]:
        """Subscribe to readiness; replays the current URL when already serving."""
        return self._registry.subscribe(listener)

    # ----- state machine -----

    def _set_state(self, new_state: SandboxState) -> None:
        old_state = self._state
        if new_state is not SandboxState.UNINITIALIZED and new_state not in TRANSITIONS[old_state]:
            raise SandboxError(
                SandboxErrorKind.GENERIC,
                f"Invalid sandbox transition {old_state.value} -> {new_state.value}",
            )
        self._state = new_state
        self._history.append(new_state)
        logger.info("sandbox.state.transition", from_state=old_state.value, to_state=new_state.value)

    # ----- public operations -----

    async def boot(self) -> None:
        """
        Boot the instance ahead of the first apply.

        Leaves the state at BOOTING; the next apply() continues from there.

        Raises:
            SandboxError: If the runtime cannot boot an instance
        """
        async with self._boot_lock:
            if self._instance is not None:
                return
            if self._state in (SandboxState.UNINITIALIZED, SandboxState.FAILED):
                self._set_state(SandboxState.BOOTING)
            try:
                await self._boot_instance()
            except SandboxError:
                self._set_state(SandboxState.FAILED)
                raise

    async def apply(self, result: ParseResult) -> str:
        """
        Apply one parse result and wait until the preview is served.

        Args:
            result: Validated operations from the block parser

        Returns:
            Preview URL

        Raises:
            SandboxError: On any failure; the state is FAILED afterwards
        """
        if self._applying:
            raise SandboxError(SandboxErrorKind.GENERIC, "An update is already being applied")

        self._applying = True
        try:
            await self._ensure_booted()

            self._set_state(SandboxState.MOUNTING)
            await self._mount(result.files)
            await self._run_commands(result.commands)

            self._set_state(SandboxState.INSTALLING)
            await self._install()

            self._set_state(SandboxState.STARTING)
            url = await self._start_server()

            self._url = url
            self._set_state(SandboxState.SERVING)
            self._registry.publish(url)
            return url

        except SandboxError as exc:
            self._fail(exc)
            raise
        except Exception as exc:
            error = SandboxError(SandboxErrorKind.GENERIC, f"Preview update failed: {exc}")
            self._fail(error)
            raise error from exc
        finally:
            self._applying = False

    async def teardown(self) -> None:
        """Stop the server, release the instance and forget readiness."""
        waiter = self._ready_waiter
        if waiter is not None and not waiter.done():
            waiter.set_exception(SandboxError(SandboxErrorKind.GENERIC, "Sandbox was torn down"))
        await self._stop_server()

        if self._unsubscribe_ready is not None:
            self._unsubscribe_ready()
            self._unsubscribe_ready = None

        instance, self._instance = self._instance, None
        if instance is not None:
            try:
                await instance.teardown()
            except Exception:
                logger.exception("sandbox.teardown.failed")

        self._url = None
        self._registry.clear()
        self._set_state(SandboxState.UNINITIALIZED)

    async def hard_reset(self) -> None:
        """Tear down and drop all bookkeeping, as if freshly constructed."""
        await self.teardown()
        self._applied.clear()
        self._scaffolded = False
        logger.info("sandbox.hard_reset")

    # ----- cycle steps -----

    def _fail(self, error: SandboxError) -> None:
        logger.error("sandbox.cycle.failed", kind=error.kind.value, error=error.message, state=self._state.value)
        if self._state in _IN_CYCLE:
            self._set_state(SandboxState.FAILED)

    async def _ensure_booted(self) -> None:
        async with self._boot_lock:
            if self._state in (SandboxState.UNINITIALIZED, SandboxState.FAILED):
                self._set_state(SandboxState.BOOTING)
            if self._instance is None:
                await self._boot_instance()
            if not self._scaffolded:
                await self._write_scaffold()

    async def _boot_instance(self) -> None:
        logger.info("sandbox.boot.started", workdir=self._boot_config.workdir_name)
        try:
            instance = await self._runtime.boot(self._boot_config)
        except Exception as exc:
            raise classify_boot_error(exc) from exc

        self._instance = instance
        self._unsubscribe_ready = instance.on(SERVER_READY_EVENT, self._on_server_ready)
        logger.info("sandbox.boot.completed")
        await self._write_scaffold()

    async def _write_scaffold(self) -> None:
        instance = self._require_instance()
        try:
            await ensure_scaffold(instance.fs)
        except Exception as exc:
            raise SandboxError(SandboxErrorKind.MOUNT_FAILURE, f"Failed to write project scaffold: {exc}") from exc
        self._scaffolded = True

    async def _mount(self, files: Sequence[FileOperation]) -> None:
        fs = self._require_instance().fs

        for op in files:
            if op.is_delete:
                try:
                    await fs.rm(op.path, recursive=True)
                except Exception:
                    logger.warning("sandbox.file.delete_failed", path=op.path, exc_info=True)
                self._applied.pop(op.path, None)
                continue

            try:
                parent = posixpath.dirname(op.path)
                if parent:
                    try:
                        await fs.mkdir(parent, recursive=True)
                    except FileExistsError:
                        pass
                await fs.write_file(op.path, op.content)
            except Exception as exc:
                raise SandboxError(SandboxErrorKind.MOUNT_FAILURE, f"Failed to write {op.path}: {exc}") from exc

            self._applied[op.path] = op.content
            logger.debug("sandbox.file.written", path=op.path, action=op.action.value, size=op.size)

        logger.info("sandbox.mount.completed", files=len(files))

    async def _run_commands(self, commands: Sequence[CommandOperation]) -> None:
        for op in commands:
            await self._run_to_exit("sh", ["-c", op.command], label=op.command)

    async def _install(self) -> None:
        command, args = _split_command(self._install_command)
        await self._run_to_exit(command, args, label=self._install_command)

    async def _run_to_exit(self, command: str, args: Sequence[str], label: str) -> int:
        """Spawn a process, drain its output and return the exit code (non-zero is only logged)."""
        instance = self._require_instance()
        try:
            process = await instance.spawn(command, args)
        except Exception as exc:
            raise SandboxError(SandboxErrorKind.COMMAND_FAILURE, f"Failed to run '{label}': {exc}") from exc

        async for chunk in process.output():
            logger.debug("sandbox.command.output", command=label, output=chunk.rstrip())
        exit_code = await process.wait()

        if exit_code != 0:
            logger.warning("sandbox.command.nonzero_exit", command=label, exit_code=exit_code)
        else:
            logger.info("sandbox.command.completed", command=label)
        return exit_code

    # ----- dev server -----

    async def _start_server(self) -> str:
        if self._server is not None and not self._server.exited and self._url is not None:
            logger.info("sandbox.server.reused", url=self._url)
            return self._url

        # A server that never became ready is restarted
        await self._stop_server()

        instance = self._require_instance()
        waiter: "asyncio.Future[str]" = asyncio.get_running_loop().create_future()
        self._ready_waiter = waiter

        command, args = _split_command(self._dev_command)
        try:
            try:
                process = await instance.spawn(command, args)
            except Exception as exc:
                raise SandboxError(
                    SandboxErrorKind.COMMAND_FAILURE,
                    f"Failed to start dev server '{self._dev_command}': {exc}",
                ) from exc

            self._server = process
            self._server_tasks = [
                asyncio.create_task(self._pump_output(process)),
                asyncio.create_task(self._watch_exit(process)),
            ]
            logger.info("sandbox.server.spawned", command=self._dev_command)

            try:
                url = await asyncio.wait_for(waiter, timeout=self._ready_timeout)
            except asyncio.TimeoutError:
                await self._stop_server()
                raise SandboxError(
                    SandboxErrorKind.SERVER_START_TIMEOUT,
                    f"Dev server did not become ready within {self._ready_timeout:g} seconds",
                )
        finally:
            self._ready_waiter = None

        logger.info("sandbox.server.ready", url=url)
        return url

    async def _stop_server(self) -> None:
        process, self._server = self._server, None
        tasks, self._server_tasks = self._server_tasks, []

        if process is not None:
            try:
                await process.kill()
            except Exception:
                logger.exception("sandbox.server.kill_failed")

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _pump_output(self, process: SandboxProcess) -> None:
        pending = ""
        async for chunk in process.output():
            pending += chunk.replace("\r\n", "\n").replace("\r", "\n")
            *lines, pending = pending.split("\n")
            for line in lines:
                self._check_output_line(line)
        if pending:
            self._check_output_line(pending)

    def _check_output_line(self, line: str) -> None:
        if not line.strip():
            return
        logger.debug("sandbox.server.output", line=line)

        waiter = self._ready_waiter
        if not self._heuristic_readiness or waiter is None or waiter.done():
            return

        url = detect_ready_url(line, self._default_url)
        if url is not None:
            # Runtimes that publish the server elsewhere know the real address
            published = getattr(self._instance, "preview_url", None)
            waiter.set_result(published or url)
            logger.info("sandbox.server.ready_from_output", line=line.strip())

    async def _watch_exit(self, process: SandboxProcess) -> None:
        exit_code = await process.wait()
        if process is not self._server:
            return

        logger.warning("sandbox.server.exited", exit_code=exit_code)
        self._server = None
        self._url = None
        self._registry.invalidate()

        waiter = self._ready_waiter
        if waiter is not None and not waiter.done():
            waiter.set_exception(SandboxError(
                SandboxErrorKind.COMMAND_FAILURE,
                f"Dev server exited with code {exit_code} before it was ready",
            ))

    def _on_server_ready(self, port: int, url: str) -> None:
        logger.info("sandbox.server.ready_event", port=port, url=url)
        waiter = self._ready_waiter
        if waiter is not None and not waiter.done():
            waiter.set_result(url)

    def _require_instance(self) -> SandboxInstance:
        if self._instance is None:
            raise SandboxError(SandboxErrorKind.GENERIC, "Sandbox instance is not booted")
        return self._instance


def _split_command(command: str) -> Tuple[str, List[str]]:
    parts = shlex.split(command)
    if not parts:
        raise SandboxError(SandboxErrorKind.COMMAND_FAILURE, "Empty command")
    return parts[0], parts[1:]
