"""
Process manager for the supervised worker.

Handles spawning the worker in the background with its output going to the
shared log file, and killing it (plus any helper processes it spawns) by name.
"""

import asyncio
import logging
import shlex
import signal
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

PKILL = "pkill"


class ProcessState(str, Enum):
    """State of the managed process."""

    STOPPED = "stopped"
    RUNNING = "running"
    FAILED = "failed"


@dataclass
class ProcessInfo:
    """Information about the managed process."""

    state: ProcessState = ProcessState.STOPPED
    pid: Optional[int] = None
    last_error: Optional[str] = None


class ProcessHandle(ABC):
    """Start/stop control over one external process."""

    @abstractmethod
    async def start(self) -> bool:
        """Launch the process. Returns False if it could not be spawned."""

    @abstractmethod
    async def stop(self) -> None:
        """Terminate the process. Safe to call when it is not running."""

    @abstractmethod
    def is_running(self) -> bool:
        """Whether the process is believed to be alive."""


class WorkerProcess(ProcessHandle):
    """
    The worker binary, run detached with stdout/stderr appended to the log.

    Stopping is forceful: the spawned child gets SIGKILL and every configured
    process name is then killed with ``pkill -9`` so helpers the worker forked
    go down with it.
    """

    def __init__(
        self,
        command: str,
        log_path: Path,
        process_names: Sequence[str] = (),
        kill_timeout: float = 5.0,
    ):
        self.command = command
        self.log_path = log_path
        self.process_names = list(process_names)
        self.kill_timeout = kill_timeout
        self.process: Optional[asyncio.subprocess.Process] = None
        self.info = ProcessInfo()

    async def start(self) -> bool:
        """Start the worker process."""
        if self.is_running():
            logger.warning("Worker already running")
            return False

        logger.info(f"Starting worker: {self.command} (output -> {self.log_path})")

        try:
            cmd = shlex.split(self.command)
            # Append mode keeps the worker writing at end-of-file after the
            # supervisor truncates the log.
            with open(self.log_path, "ab") as log_file:
                self.process = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=log_file,
                    stderr=asyncio.subprocess.STDOUT,
                    start_new_session=True,
                )
        except (OSError, ValueError) as e:
            self.process = None
            self.info.state = ProcessState.FAILED
            self.info.pid = None
            self.info.last_error = str(e)
            logger.error(f"Failed to start worker: {e}")
            return False

        self.info.state = ProcessState.RUNNING
        self.info.pid = self.process.pid
        self.info.last_error = None

        logger.info(f"Worker started with PID {self.info.pid}")
        return True

    async def stop(self) -> None:
        """Kill the worker and its known helper processes."""
        if self.process and self.process.returncode is None:
            try:
                self.process.send_signal(signal.SIGKILL)
                await asyncio.wait_for(self.process.wait(), timeout=self.kill_timeout)
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                logger.warning(f"Worker PID {self.process.pid} did not exit after SIGKILL")

        for name in self.process_names:
            await self._kill_by_name(name)

        self.process = None
        self.info.state = ProcessState.STOPPED
        self.info.pid = None

    def is_running(self) -> bool:
        return self.process is not None and self.process.returncode is None

    async def _kill_by_name(self, name: str) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                PKILL,
                "-9",
                name,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            returncode = await proc.wait()
        except FileNotFoundError:
            logger.warning(f"'{PKILL}' not available, cannot kill '{name}' by name")
            return
        except OSError as e:
            logger.warning(f"Error killing '{name}': {e}")
            return

        # pkill exits 1 when nothing matched, which just means it is already gone
        if returncode == 0:
            logger.info(f"Killed '{name}'")
        elif returncode == 1:
            logger.debug(f"No '{name}' process running")
        else:
            logger.warning(f"{PKILL} -9 {name} exited with code {returncode}")


class WorkerLifecycle:
    """Starts and stops the worker, waiting for it to settle after a start."""

    def __init__(self, handle: ProcessHandle, settle_time: float = 30.0):
        self.handle = handle
        self.settle_time = settle_time

    async def start(self) -> bool:
        """Start the worker, then block for the settle period."""
        started = await self.handle.start()
        if self.settle_time > 0:
            logger.info(f"Waiting {self.settle_time:g}s for the worker to settle")
            await asyncio.sleep(self.settle_time)
        return started

    async def stop(self) -> None:
        logger.info("Stopping worker")
        await self.handle.stop()

    def is_running(self) -> bool:
        return self.handle.is_running()
