"""
Docker Runtime - Sandbox instances backed by long-lived Docker containers.

Each instance is one container running `sleep infinity` with a host temp
directory bind-mounted at /app. Files are written on the host side of the
mount; commands run through the exec API. The dev server's port (3000 in the
container) is published on a host port taken from the configured range, and
a probe on that port emits "server-ready" once the server answers HTTP.

Security Requirements:
- Memory and CPU limits on every container
- No host mounts except the instance's temp directory
- Containers and temp directories are removed on teardown
"""

import asyncio
import contextlib
import shlex
import shutil
import socket
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence, Set

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from webuild.config import Config, get_config
from webuild.logging import get_logger
from webuild.sandbox.runtime import (
    SERVER_READY_EVENT,
    BootConfig,
    BootInstanceLimitError,
    EventEmitter,
    IsolationUnsupportedError,
    SandboxProcess,
)

logger = get_logger("webuild.sandbox.docker")


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_IMAGE = "node:20-slim"

# Port the scaffolded Vite server listens on inside the container
INTERNAL_PORT = 3000

# Resource limits
MAX_MEMORY = "1g"
MAX_CPU = 1.0

# Seconds between readiness probes of the published port
PROBE_INTERVAL = 1.0

# Environment for dev servers running in a container
CONTAINER_ENV = {
    "HOST": "0.0.0.0",
    "PORT": str(INTERNAL_PORT),
    "BROWSER": "none",
    "CI": "true",
    "CHOKIDAR_USEPOLLING": "true",
    "WATCHPACK_POLLING": "true",
}


# =============================================================================
# FILESYSTEM
# =============================================================================

class DockerFileSystem:
    """Instance filesystem, backed by the bind-mounted host directory."""

    def __init__(self, root: Path):
        self.root = root.resolve()

    def _resolve(self, path: str) -> Path:
        full_path = (self.root / path).resolve()
        if full_path != self.root and self.root not in full_path.parents:
            raise ValueError(f"Path escapes the project root: {path}")
        return full_path

    async def write_file(self, path: str, content: str) -> None:
        await asyncio.to_thread(self._resolve(path).write_text, content, encoding="utf-8")

    async def read_file(self, path: str) -> str:
        return await asyncio.to_thread(self._resolve(path).read_text, encoding="utf-8")

    async def mkdir(self, path: str, recursive: bool = True) -> None:
        await asyncio.to_thread(self._resolve(path).mkdir, parents=recursive, exist_ok=recursive)

    async def rm(self, path: str, recursive: bool = False) -> None:
        await asyncio.to_thread(self._remove, self._resolve(path), recursive)

    @staticmethod
    def _remove(full_path: Path, recursive: bool) -> None:
        if full_path.is_dir():
            if recursive:
                shutil.rmtree(full_path)
            else:
                full_path.rmdir()
        else:
            # Raises FileNotFoundError for missing paths
            full_path.unlink()


# =============================================================================
# INSTANCE
# =============================================================================

class DockerSandboxInstance:
    """A booted container. Created by DockerSandboxRuntime.boot()."""

    def __init__(
        self,
        runtime: "DockerSandboxRuntime",
        client,
        container,
        workdir: Path,
        host_port: int,
        probe_interval: Optional[float] = PROBE_INTERVAL,
    ):
        self._runtime = runtime
        self._client = client
        self._container = container
        self._workdir = workdir
        self._probe_interval = probe_interval
        self._events = EventEmitter()
        self._probe_task: Optional["asyncio.Task[None]"] = None

        self.fs = DockerFileSystem(workdir)
        self.host_port = host_port
        self.preview_url = f"http://localhost:{host_port}"

    @property
    def container_id(self) -> str:
        return self._container.id

    def on(self, event: str, listener: Callable[..., None]) -> Callable[[], None]:
        return self._events.on(event, listener)

    def start_probe(self) -> None:
        if self._probe_interval is not None and self._probe_task is None:
            self._probe_task = asyncio.create_task(self._probe_loop())

    async def spawn(
        self,
        command: str,
        args: Sequence[str] = (),
        env: Optional[Mapping[str, str]] = None,
    ) -> SandboxProcess:
        """
        Run a command in the container through the exec API.

        The command runs in its own session so kill() can stop the whole
        process group (npm forks the actual dev server).
        """
        pid_file = f"/tmp/webuild-{uuid.uuid4().hex}.pid"
        wrapped = [
            "setsid", "-w", "sh", "-c",
            f'echo $$ > {pid_file}; exec "$@"',
            "sh", command, *args,
        ]
        environment = dict(CONTAINER_ENV)
        environment.update(env or {})

        exec_id = (await asyncio.to_thread(
            self._client.api.exec_create,
            self._container.id,
            wrapped,
            stdout=True,
            stderr=True,
            environment=environment,
            workdir="/app",
        ))["Id"]
        stream = await asyncio.to_thread(self._client.api.exec_start, exec_id, stream=True)

        loop = asyncio.get_running_loop()
        process = SandboxProcess(kill=lambda: self._kill(pid_file))

        def pump() -> None:
            exit_code = -1
            try:
                for chunk in stream:
                    text = chunk.decode("utf-8", errors="replace") if isinstance(chunk, bytes) else str(chunk)
                    loop.call_soon_threadsafe(process.feed, text)
                info = self._client.api.exec_inspect(exec_id)
                if info.get("ExitCode") is not None:
                    exit_code = info["ExitCode"]
            except Exception:
                logger.exception("docker.exec.stream_failed", exec_id=exec_id)
            try:
                loop.call_soon_threadsafe(process.finish, exit_code)
            except RuntimeError:
                # Event loop already closed during shutdown
                logger.debug("docker.exec.loop_closed", exec_id=exec_id)

        thread = threading.Thread(target=pump, daemon=True)
        thread.start()

        logger.debug("docker.exec.started", command=shlex.join([command, *args]), exec_id=exec_id)
        return process

    async def _kill(self, pid_file: str) -> None:
        script = f'[ -f {pid_file} ] && kill -TERM -- -"$(cat {pid_file})"; rm -f {pid_file}'
        await asyncio.to_thread(self._container.exec_run, ["sh", "-c", script])

    async def _probe_loop(self) -> None:
        serving = False
        while True:
            answering = await self._answers_http()
            if answering and not serving:
                logger.info("docker.probe.ready", port=self.host_port)
                self._events.emit(SERVER_READY_EVENT, self.host_port, self.preview_url)
            serving = answering
            await asyncio.sleep(self._probe_interval)

    async def _answers_http(self) -> bool:
        # The docker proxy accepts connections even when nothing listens
        # inside the container, so require an HTTP status line.
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection("localhost", self.host_port), timeout=2
            )
        except (OSError, asyncio.TimeoutError):
            return False
        try:
            writer.write(b"HEAD / HTTP/1.0\r\nHost: localhost\r\n\r\n")
            await writer.drain()
            head = await asyncio.wait_for(reader.read(5), timeout=2)
            return head == b"HTTP/"
        except (OSError, asyncio.TimeoutError):
            return False
        finally:
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()

    async def teardown(self) -> None:
        """Stop the probe, remove the container and the temp directory."""
        if self._probe_task is not None:
            self._probe_task.cancel()
            await asyncio.gather(self._probe_task, return_exceptions=True)
            self._probe_task = None
        self._events.clear()

        try:
            await asyncio.to_thread(self._remove_container)
        finally:
            await asyncio.to_thread(shutil.rmtree, self._workdir, True)
            self._runtime.release_port(self.host_port)
        logger.info("docker.instance.removed", container_id=self._container.id)

    def _remove_container(self) -> None:
        try:
            self._container.stop(timeout=2)
            self._container.remove(force=True)
        except NotFound:
            pass


# =============================================================================
# RUNTIME
# =============================================================================

class DockerSandboxRuntime:
    """
    Boots sandbox instances as Docker containers.

    Args:
        image: Docker image with node and npm
        port_range_start: First host port to publish on
        port_range_end: End of the host port range (exclusive)
        client_factory: Returns a Docker client (docker.from_env by default)
        probe_interval: Seconds between readiness probes; None disables the probe
    """

    def __init__(
        self,
        image: str = DEFAULT_IMAGE,
        port_range_start: int = 8100,
        port_range_end: int = 8200,
        client_factory: Optional[Callable[[], object]] = None,
        probe_interval: Optional[float] = PROBE_INTERVAL,
    ):
        self.image = image
        self.port_range_start = port_range_start
        self.port_range_end = port_range_end
        self._client_factory = client_factory or docker.from_env
        self._probe_interval = probe_interval
        self._used_ports: Set[int] = set()
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "DockerSandboxRuntime":
        config = config or get_config()
        return cls(
            image=config.sandbox_image,
            port_range_start=config.port_range_start,
            port_range_end=config.port_range_end,
        )

    # ----- ports -----

    def allocate_port(self) -> Optional[int]:
        """
        Allocate an available port from the range.

        Returns:
            Available port number, or None if all ports are in use
        """
        with self._lock:
            for port in range(self.port_range_start, self.port_range_end):
                if port not in self._used_ports and self._is_port_free(port):
                    self._used_ports.add(port)
                    return port
        return None

    def release_port(self, port: int) -> None:
        with self._lock:
            self._used_ports.discard(port)

    def _is_port_free(self, port: int) -> bool:
        """Check if a port is free on the system."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            try:
                s.bind(("localhost", port))
                return True
            except OSError:
                return False

    # ----- boot -----

    async def boot(self, config: BootConfig) -> DockerSandboxInstance:
        """
        Start a container for a new sandbox instance.

        Raises:
            BootInstanceLimitError: If no host port is free or Docker reports the port taken
            IsolationUnsupportedError: If Docker is not installed or not running
        """
        port = self.allocate_port()
        if port is None:
            raise BootInstanceLimitError(
                "Unable to create more instances: no available ports. Too many preview containers running."
            )

        workdir = Path(tempfile.mkdtemp(prefix="webuild_"))
        try:
            client, container = await asyncio.to_thread(self._start_container, config, port, workdir)
        except APIError as e:
            self._discard(port, workdir)
            message = str(e)
            if "port is already allocated" in message.lower():
                raise BootInstanceLimitError(f"Unable to create more instances: port {port} is already in use") from e
            raise
        except DockerException as e:
            self._discard(port, workdir)
            raise IsolationUnsupportedError(f"Docker is not running or not reachable: {e}") from e
        except BaseException:
            self._discard(port, workdir)
            raise

        instance = DockerSandboxInstance(
            self, client, container, workdir, port, probe_interval=self._probe_interval,
        )
        instance.start_probe()
        logger.info("docker.instance.started", container_id=container.id, port=port, image=self.image)
        return instance

    def _start_container(self, config: BootConfig, port: int, workdir: Path):
        client = self._client_factory()
        client.ping()

        # Pull image if needed
        try:
            client.images.get(self.image)
        except ImageNotFound:
            logger.info("docker.image.pulling", image=self.image)
            client.images.pull(self.image)

        environment = dict(CONTAINER_ENV)
        environment.update(config.env)

        container = client.containers.run(
            image=self.image,
            command=["sleep", "infinity"],
            working_dir="/app",
            volumes={str(workdir): {"bind": "/app", "mode": "rw"}},
            ports={f"{INTERNAL_PORT}/tcp": port},
            mem_limit=MAX_MEMORY,
            cpu_period=100000,
            cpu_quota=int(100000 * MAX_CPU),
            detach=True,
            remove=False,
            name=f"{config.workdir_name}_{port}_{uuid.uuid4().hex[:6]}",
            environment=environment,
        )
        return client, container

    def _discard(self, port: int, workdir: Path) -> None:
        self.release_port(port)
        shutil.rmtree(workdir, ignore_errors=True)
