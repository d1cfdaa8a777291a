"""
Update Coordinator - Turn bursty model output into safe apply cycles.

Responsibilities:
- Debounce submissions (only the last one in a burst is applied)
- Run at most one apply cycle at a time (single-flight)
- Decide what happens to a request that arrives mid-cycle (PendingPolicy)
- Track the retry budget and require a hard reset once it is spent
- Report progress to the preview pane through PreviewCallbacks
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from webuild.config import Config, get_config
from webuild.logging import get_logger
from webuild.parser import BlockParser, ParseError
from webuild.schemas import ReadinessEvent
from webuild.sandbox.lifecycle import RetryExhaustedError, SandboxError, SandboxOrchestrator
from webuild.sandbox.preview import MAX_RETRIES_MESSAGE, PreviewCallbacks, describe_error

logger = get_logger("webuild.coordinator")

NO_INPUT_MESSAGE = "No WeBuild string provided"


class PendingPolicy(str, Enum):
    """What to do with a request whose timer fires while a cycle is running."""
    QUEUE_LATEST = "queue_latest"
    DROP = "drop"


@dataclass
class RetryContext:
    """Retry budget owned by the caller; one attempt per failed sandbox cycle."""
    attempts: int = 0
    max_attempts: int = 3

    def record_failure(self) -> int:
        self.attempts += 1
        return self.attempts

    def reset(self) -> None:
        self.attempts = 0

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    @property
    def remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts)


class UpdateCoordinator:
    """
    Debounced, single-flight front door to a SandboxOrchestrator.

    Args:
        orchestrator: Sandbox orchestrator to apply parse results to
        parser: Block parser (defaults to the standard tag and limits)
        debounce_seconds: Quiet period before a submission is applied
        retry: Caller-owned retry budget
        callbacks: Preview pane hooks
        pending_policy: QUEUE_LATEST runs the latest request after the
            current cycle; DROP discards it
    """

    def __init__(
        self,
        orchestrator: SandboxOrchestrator,
        parser: Optional[BlockParser] = None,
        debounce_seconds: float = 0.5,
        retry: Optional[RetryContext] = None,
        callbacks: Optional[PreviewCallbacks] = None,
        pending_policy: PendingPolicy = PendingPolicy.QUEUE_LATEST,
    ):
        self._orchestrator = orchestrator
        self._parser = parser or BlockParser()
        self._debounce_seconds = debounce_seconds
        self.retry_context = retry or RetryContext()
        self._callbacks = callbacks or PreviewCallbacks()
        self._pending_policy = pending_policy

        self._timer: Optional["asyncio.Task[None]"] = None
        self._cycle: Optional["asyncio.Task[None]"] = None
        self._pending: Optional[str] = None
        self._latest: Optional[str] = None
        self._unsubscribe = orchestrator.on_ready(self._handle_ready)

    @classmethod
    def from_config(
        cls,
        orchestrator: SandboxOrchestrator,
        callbacks: Optional[PreviewCallbacks] = None,
        config: Optional[Config] = None,
    ) -> "UpdateCoordinator":
        config = config or get_config()
        return cls(
            orchestrator,
            parser=BlockParser(
                tag=config.tag_name,
                max_file_size=config.max_file_size,
                allowed_extensions=config.allowed_extensions,
            ),
            debounce_seconds=config.debounce_ms / 1000,
            retry=RetryContext(max_attempts=config.max_retries),
            callbacks=callbacks,
        )

    @property
    def is_updating(self) -> bool:
        return self._cycle is not None and not self._cycle.done()

    # ===== submission =====

    def submit(self, raw: str) -> None:
        """
        Queue model output for preview. Returns immediately.

        Must be called from the event loop thread.
        """
        if not raw or not raw.strip():
            self._emit("on_error", NO_INPUT_MESSAGE)
            return

        self._latest = raw
        self._cancel_timer()
        self._timer = asyncio.create_task(self._debounce(raw))

    async def _debounce(self, raw: str) -> None:
        await asyncio.sleep(self._debounce_seconds)
        self._timer = None
        self._fire(raw)

    def _fire(self, raw: str) -> None:
        if self.is_updating:
            if self._pending_policy is PendingPolicy.DROP:
                logger.info("coordinator.request.dropped", chars=len(raw))
                return
            self._pending = raw
            logger.info("coordinator.request.queued", chars=len(raw))
            return
        self._start_cycle(raw)

    def _start_cycle(self, raw: str) -> "asyncio.Task[None]":
        task = asyncio.create_task(self._run_cycle(raw))
        self._cycle = task
        return task

    async def _run_cycle(self, raw: str) -> None:
        try:
            if self.retry_context.exhausted:
                logger.warning("coordinator.cycle.rejected", attempts=self.retry_context.attempts)
                self._emit("on_error", MAX_RETRIES_MESSAGE)
                return

            self._emit("on_loading", True)

            try:
                result = self._parser.parse(raw)
            except ParseError as exc:
                logger.warning("coordinator.parse.failed", kind=exc.kind.value, error=str(exc))
                self._emit("on_loading", False)
                self._emit("on_error", str(exc))
                return

            logger.info("coordinator.cycle.started", files=len(result.files), commands=len(result.commands))
            try:
                await self._orchestrator.apply(result)
            except SandboxError as exc:
                attempts = self.retry_context.record_failure()
                logger.error(
                    "coordinator.cycle.failed",
                    kind=exc.kind.value,
                    attempts=attempts,
                    max_attempts=self.retry_context.max_attempts,
                )
                self._emit("on_loading", False)
                self._emit("on_error", describe_error(exc))
                return

            logger.info("coordinator.cycle.completed", url=self._orchestrator.url)
        finally:
            if self._cycle is asyncio.current_task():
                self._cycle = None
            self._drain_pending()

    def _drain_pending(self) -> None:
        if self._pending is None or self.is_updating:
            return
        raw, self._pending = self._pending, None
        self._start_cycle(raw)

    # ===== recovery =====

    async def retry(self) -> None:
        """
        Re-apply the latest submission right away.

        Raises:
            RetryExhaustedError: If the retry budget is spent
        """
        if self.retry_context.exhausted:
            self._emit("on_error", MAX_RETRIES_MESSAGE)
            raise RetryExhaustedError()

        self._cancel_timer()
        await self._wait_for_cycle()
        if self._latest is None:
            return
        self._pending = None
        logger.info("coordinator.retry", attempt=self.retry_context.attempts + 1)
        await self._start_cycle(self._latest)

    async def hard_reset(self) -> None:
        """Reset the sandbox and the retry budget, then re-apply the latest submission."""
        self._cancel_timer()
        self._pending = None
        await self._wait_for_cycle()

        self._unsubscribe()
        await self._orchestrator.hard_reset()
        self.retry_context.reset()
        self._unsubscribe = self._orchestrator.on_ready(self._handle_ready)
        logger.info("coordinator.hard_reset")

        if self._latest is not None:
            await self._start_cycle(self._latest)

    async def flush(self) -> None:
        """Wait until no debounce timer or cycle is outstanding."""
        while True:
            tasks = [t for t in (self._timer, self._cycle) if t is not None and not t.done()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        """Cancel the timer, finish the running cycle and stop listening."""
        self._cancel_timer()
        self._pending = None
        await self._wait_for_cycle()
        self._unsubscribe()

    # ===== helpers =====

    def _handle_ready(self, event: ReadinessEvent) -> None:
        self.retry_context.reset()
        self._emit("on_loading", False)
        self._emit("on_ready", event.url)

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _wait_for_cycle(self) -> None:
        while self._cycle is not None and not self._cycle.done():
            await asyncio.gather(self._cycle, return_exceptions=True)

    def _emit(self, name: str, *args) -> None:
        callback = getattr(self._callbacks, name)
        try:
            callback(*args)
        except Exception:
            logger.exception("coordinator.callback.failed", callback=name)
