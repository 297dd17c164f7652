"""
Supervisor loop.

Probes worker activity over a fixed window, restarts the worker when the
window shows no progress, and shuts everything down on SIGINT/SIGTERM.

Restarts are never capped: a stalled worker is restarted on every window,
and the alert escalation is the only signal of a chronic problem.
"""

import asyncio
import logging
import signal
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from stallguard.activity import (
    ActivitySource,
    LogActivityProbe,
    LogActivitySource,
    LogRotator,
)
from stallguard.alerts import AlertState, AlertThrottle, WebhookNotifier
from stallguard.config import Settings
from stallguard.process_manager import WorkerLifecycle, WorkerProcess

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class SupervisorState(str, Enum):
    INITIALIZING = "initializing"
    PROBING = "probing"
    EVALUATING = "evaluating"
    RESTARTING = "restarting"
    SHUTTING_DOWN = "shutting_down"


class HealthVerdict(str, Enum):
    HEALTHY = "healthy"
    STALLED = "stalled"


@dataclass(frozen=True)
class ProbeWindow:
    """Marker counts at the start and end of one probe window."""

    start_count: int
    end_count: int


def evaluate(window: ProbeWindow) -> HealthVerdict:
    """The worker is healthy only if it finished more work during the window."""
    if window.end_count > window.start_count:
        return HealthVerdict.HEALTHY
    return HealthVerdict.STALLED


@dataclass
class SupervisorStats:
    iterations: int = 0
    restarts: int = 0
    last_verdict: Optional[HealthVerdict] = None


class SupervisorLoop:
    """
    Keeps the worker alive.

    States: INITIALIZING -> PROBING -> EVALUATING -> (RESTARTING) -> PROBING ...
    SHUTTING_DOWN can preempt any state once a termination signal arrives.
    """

    def __init__(
        self,
        lifecycle: WorkerLifecycle,
        activity: ActivitySource,
        throttle: AlertThrottle,
        check_interval: float,
        restart_wait_time: float,
    ):
        self.lifecycle = lifecycle
        self.activity = activity
        self.throttle = throttle
        self.check_interval = check_interval
        self.restart_wait_time = restart_wait_time

        self.state = SupervisorState.INITIALIZING
        self.stats = SupervisorStats()
        self._main_task: Optional[asyncio.Task] = None
        self._shutdown_task: Optional[asyncio.Task] = None
        self._installed_signals: list[int] = []

    async def run(self) -> int:
        """Run until a termination signal arrives. Returns the exit status."""
        self._main_task = asyncio.current_task()
        self.state = SupervisorState.INITIALIZING
        self._install_signal_handlers()
        try:
            await self.lifecycle.start()
            while True:
                try:
                    await self.run_once()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("Supervisor iteration failed; continuing")
                    self.activity.reset()
                    await asyncio.sleep(self.check_interval)
        except asyncio.CancelledError:
            if self._shutdown_task is None:
                raise
            # Let the shutdown sequence finish before reporting success
            await asyncio.shield(self._shutdown_task)
        finally:
            self._remove_signal_handlers()

        logger.info(
            f"Supervisor exiting after {self.stats.iterations} checks "
            f"and {self.stats.restarts} restarts"
        )
        return 0

    async def run_once(self) -> HealthVerdict:
        """One probe window, its verdict and, if needed, a restart."""
        self.state = SupervisorState.PROBING
        start_count = self.activity.count()
        logger.info(f"Initial number of completion markers: {start_count}")

        await asyncio.sleep(self.check_interval)

        end_count = self.activity.count()
        logger.info(f"Current number of completion markers: {end_count}")

        self.state = SupervisorState.EVALUATING
        verdict = evaluate(ProbeWindow(start_count=start_count, end_count=end_count))
        self.stats.iterations += 1
        self.stats.last_verdict = verdict

        if verdict is HealthVerdict.HEALTHY:
            logger.info("Worker is healthy")
        else:
            logger.warning("Worker stalled, restarting")
            await self.restart()

        self.activity.reset()
        return verdict

    async def restart(self) -> None:
        self.state = SupervisorState.RESTARTING
        await self.lifecycle.stop()
        if self.restart_wait_time > 0:
            await asyncio.sleep(self.restart_wait_time)
        await self.lifecycle.start()
        self.stats.restarts += 1
        await self.throttle.notify()

    def request_shutdown(self, signum: Optional[int] = None) -> None:
        """Begin shutdown; repeated requests are ignored."""
        if self._shutdown_task is not None:
            return
        name = signal.Signals(signum).name if signum is not None else "request"
        logger.info(f"Received {name}, shutting down")
        self._shutdown_task = asyncio.get_running_loop().create_task(self.shutdown())

    async def shutdown(self) -> None:
        """End the main loop, stop the worker and clear the log."""
        self.state = SupervisorState.SHUTTING_DOWN
        # Cancel first so the main loop cannot start the worker again
        if self._main_task is not None and not self._main_task.done():
            self._main_task.cancel()

        try:
            await self.lifecycle.stop()
        except Exception:
            logger.exception("Error stopping worker during shutdown")
        self.activity.reset()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(sig, self.request_shutdown, sig)
            self._installed_signals.append(sig)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._installed_signals:
            loop.remove_signal_handler(sig)
        self._installed_signals.clear()


def build_supervisor(settings: Settings) -> SupervisorLoop:
    """Wire the supervisor and its collaborators from loaded settings."""
    log_path = settings.log_path
    worker = WorkerProcess(
        command=settings.worker_command,
        log_path=log_path,
        process_names=settings.process_names,
    )
    activity = LogActivitySource(
        log_path,
        probe=LogActivityProbe(settings.completion_marker),
        rotator=LogRotator(),
    )
    throttle = AlertThrottle(
        AlertState(
            warning_text=settings.warning_message,
            critical_text=settings.critical_message,
        ),
        WebhookNotifier(settings.discord_webhook_url, timeout=settings.notify_timeout),
    )
    return SupervisorLoop(
        lifecycle=WorkerLifecycle(worker, settle_time=settings.settle_time),
        activity=activity,
        throttle=throttle,
        check_interval=settings.check_interval,
        restart_wait_time=settings.restart_wait_time,
    )
