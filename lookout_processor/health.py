"""
Health Tracker - escalates persistent degradation into a device restart.

Health sources are zero-argument callables returning a HealthCode (for
example ProcessSupervisor.get_health). The tracker reports the worst code
across them and, when sampled periodically, asks the restart collaborator to
reboot the device once degradation has lasted long enough.

Escalation policy:
    A degraded sample (anything below GOOD) starts a window on first
    observation and bumps a streak counter. A restart is requested when the
    window is older than start_period AND the streak reached retries. A GOOD
    sample resets both, so a single dip never escalates. After a request the
    tracker starts over, one request per outage.

Threading:
    check_health_state() runs on whichever thread samples it: the external
    probe (control plane thread) or the optional debug timer thread.
"""

import logging
import os
import threading
import time
from typing import Callable, Dict, Optional

from lookout_mqtt.schemas import HealthCode

logger = logging.getLogger(__name__)

HealthSource = Callable[[], HealthCode]

DEBUG_TIMER_ENV_VARS = ("LOCAL_DEBUG", "FORCE_HEALTHCHECK")


def debug_timer_requested(config_flag: bool = False) -> bool:
    """True if the config flag or LOCAL_DEBUG=1 / FORCE_HEALTHCHECK=1 asks for the timer."""
    if config_flag:
        return True
    return any(os.environ.get(name) == "1" for name in DEBUG_TIMER_ENV_VARS)


class HealthTracker:
    """
    Samples subsystem health and triggers device restart on sustained failure.

    Usage:
        tracker = HealthTracker(
            sources={"streams": coordinator.get_health},
            on_restart_device=control_plane.request_device_restart,
        )
        tracker.check_health_state()   # from the health probe
    """

    def __init__(
        self,
        sources: Optional[Dict[str, HealthSource]] = None,
        on_restart_device: Optional[Callable[[HealthCode], None]] = None,
        start_period: float = 60.0,
        retries: int = 3,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sources: Dict[str, HealthSource] = dict(sources or {})
        self.on_restart_device = on_restart_device
        self.start_period = start_period
        self.retries = retries
        self._clock = clock

        self._lock = threading.Lock()
        self._degraded_since: Optional[float] = None
        self._streak = 0
        self.restart_requests = 0

        self._timer_thread: Optional[threading.Thread] = None
        self._timer_stop = threading.Event()

    def add_source(self, name: str, source: HealthSource) -> None:
        self.sources[name] = source

    @property
    def streak(self) -> int:
        """Consecutive degraded samples in the current window."""
        return self._streak

    def get_health(self) -> HealthCode:
        """Worst code across all sources (GOOD when there are none)."""
        codes = [HealthCode(source()) for source in self.sources.values()]
        return min(codes, default=HealthCode.GOOD)

    def check_health_state(self) -> HealthCode:
        """
        Take one health sample and apply the escalation policy.

        Returns:
            The sampled health code
        """
        health = self.get_health()
        escalate = False

        with self._lock:
            if health >= HealthCode.GOOD:
                if self._streak:
                    logger.info(f"💚 Health recovered after {self._streak} degraded samples")
                self._degraded_since = None
                self._streak = 0
                return health

            now = self._clock()
            if self._degraded_since is None:
                self._degraded_since = now
            self._streak += 1
            elapsed = now - self._degraded_since

            logger.warning(
                f"⚠️ Health degraded: {health.name} "
                f"(streak={self._streak}, elapsed={elapsed:.1f}s)"
            )

            if elapsed > self.start_period and self._streak >= self.retries:
                escalate = True
                self._degraded_since = None
                self._streak = 0
                self.restart_requests += 1

        if escalate:
            logger.error(
                f"🔴 Health {health.name} for more than {self.start_period}s, "
                f"requesting device restart"
            )
            if self.on_restart_device is not None:
                try:
                    self.on_restart_device(health)
                except Exception as e:
                    logger.error(f"Device restart request failed: {e}", exc_info=True)

        return health

    # ─────────────────────────────────────────────────────────────────────
    # Debug timer
    # ─────────────────────────────────────────────────────────────────────

    def start(self, interval: float = 15.0) -> None:
        """Sample health every `interval` seconds on a background thread."""
        if self._timer_thread is not None:
            logger.warning("Health timer already running")
            return

        self._timer_stop.clear()
        self._timer_thread = threading.Thread(
            target=self._timer_loop,
            args=(interval,),
            name="HealthTimerThread",
            daemon=True
        )
        self._timer_thread.start()
        logger.info(f"Health timer started (interval={interval}s)")

    def stop(self) -> None:
        thread, self._timer_thread = self._timer_thread, None
        if thread is None:
            return

        self._timer_stop.set()
        thread.join(timeout=5.0)
        logger.info("Health timer stopped")

    def _timer_loop(self, interval: float) -> None:
        while not self._timer_stop.wait(interval):
            try:
                self.check_health_state()
            except Exception as e:
                logger.error(f"Health check failed: {e}", exc_info=True)
