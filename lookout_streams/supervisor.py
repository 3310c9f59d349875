"""
ProcessSupervisor - keeps one media subprocess alive.

Bounded Context: Subprocess lifecycle
Responsibilities:
  - Spawn the subprocess (stdout piped, stdin/stderr discarded)
  - Drain stdout on a reader thread and hand chunks to the consumer
  - Tell a caller-initiated stop apart from a crash
  - Restart crashed subprocesses after a fixed delay (deferred timer)

Crash vs. intentional stop:
  stop() moves the live handle to STOPPED and detaches it *before* the kill
  signal goes out. When the exit is observed later on the reader thread, a
  handle that is no longer the live one is an intentional stop and is not
  restarted; a handle that is still live exited on its own.

Threading:
  - One reader thread per subprocess generation (on_data and on_crash run here)
  - Restarts run on a threading.Timer thread
  - State transitions guarded by a lock
"""

import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, List, Optional

from lookout_mqtt.logging import StructuredLogger, LogEvent, create_logger
from lookout_mqtt.schemas import HealthCode

STREAM_URL_PLACEHOLDER = "###STREAM_URL"
DEFAULT_READ_SIZE = 64 * 1024


class ProcessState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass
class ProcessHandle:
    """One spawned subprocess generation."""
    process: subprocess.Popen
    generation: int
    state: ProcessState = ProcessState.RUNNING
    reader: Optional[threading.Thread] = field(default=None, repr=False)

    @property
    def pid(self) -> int:
        return self.process.pid


class ProcessSupervisor:
    """
    Supervises one long-lived media subprocess.

    Example:
        supervisor = ProcessSupervisor(
            name="video_stream",
            command="ffmpeg",
            args_template="-i ###STREAM_URL -loglevel quiet -an -f image2pipe pipe:1",
            restart_delay=10.0,
        )
        supervisor.start("rtsp://camera/stream", on_data=parser_feed, on_crash=on_crash)
        ...
        supervisor.stop()

    Circuit breaker:
        max_restarts=None (default) restarts forever. With max_restarts=N,
        more than N crashes within restart_window seconds stop the restart
        loop and the supervisor reports CRITICAL until start() is called again.
    """

    def __init__(
        self,
        name: str,
        command: str,
        args_template: str,
        restart_delay: float,
        placeholder: str = STREAM_URL_PLACEHOLDER,
        read_size: int = DEFAULT_READ_SIZE,
        critical_restart_count: int = 5,
        max_restarts: Optional[int] = None,
        restart_window: float = 300.0,
        logger: Optional[StructuredLogger] = None,
        popen_factory: Callable[..., subprocess.Popen] = subprocess.Popen,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.command = command
        self.args_template = args_template
        self.restart_delay = restart_delay
        self.placeholder = placeholder
        self.read_size = read_size
        self.critical_restart_count = critical_restart_count
        self.max_restarts = max_restarts
        self.restart_window = restart_window
        self.logger = (logger or create_logger("streams")).bind(stream=name)

        self._popen_factory = popen_factory
        self._timer_factory = timer_factory
        self._clock = clock

        self._lock = threading.Lock()
        self._handle: Optional[ProcessHandle] = None
        self._restart_timer: Optional[threading.Timer] = None
        self._wanted = False
        self._tripped = False
        self._generation = 0
        self._restart_count = 0
        self._crash_times: Deque[float] = deque()

        self._stream_url = ""
        self._on_data: Optional[Callable[[bytes], None]] = None
        self._on_crash: Optional[Callable[[str], None]] = None

    # ─────────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────────

    def build_argv(self, stream_url: str) -> List[str]:
        """Command line with the placeholder replaced by stream_url."""
        args = self.args_template.replace(self.placeholder, stream_url).split()
        return [self.command, *args]

    def start(
        self,
        stream_url: str,
        on_data: Callable[[bytes], None],
        on_crash: Optional[Callable[[str], None]] = None,
    ) -> bool:
        """
        Spawn the subprocess.

        Args:
            stream_url: Substituted for the placeholder in the args template
            on_data: Receives every stdout chunk (reader thread)
            on_crash: Receives a reason string on spawn error or abnormal exit

        Returns:
            True if the subprocess was spawned. On spawn error a restart is
            still scheduled and False is returned.
        """
        with self._lock:
            if self._handle is not None:
                self.logger.warning(
                    event=LogEvent.STREAM_STARTED,
                    message=f"{self.name} already running",
                    metadata={'pid': self._handle.pid}
                )
                return True

            self._stream_url = stream_url
            self._on_data = on_data
            self._on_crash = on_crash
            self._wanted = True
            self._tripped = False
            self._restart_count = 0
            self._crash_times.clear()
            timer, self._restart_timer = self._restart_timer, None

        if timer is not None:
            timer.cancel()

        return self._spawn()

    def stop(self) -> None:
        """
        Stop the subprocess without triggering a restart.

        Safe to call repeatedly and while a restart is pending.
        """
        with self._lock:
            self._wanted = False
            timer, self._restart_timer = self._restart_timer, None
            handle, self._handle = self._handle, None
            if handle is not None:
                handle.state = ProcessState.STOPPED

        if timer is not None:
            timer.cancel()

        if handle is None:
            return

        try:
            handle.process.kill()
        except OSError as e:
            self.logger.warning(
                event=LogEvent.STREAM_STOPPED,
                message=f"Kill of {self.name} failed: {e}",
                metadata={'pid': handle.pid}
            )

        self.logger.info(
            event=LogEvent.STREAM_STOPPED,
            message=f"Stopped {self.name}",
            metadata={'pid': handle.pid, 'generation': handle.generation}
        )

    @property
    def is_running(self) -> bool:
        return self._handle is not None

    @property
    def restart_count(self) -> int:
        """Crashes observed since the last start()."""
        return self._restart_count

    @property
    def generation(self) -> int:
        """Number of subprocesses spawned over the supervisor's lifetime."""
        return self._generation

    @property
    def restart_pending(self) -> bool:
        return self._restart_timer is not None

    @property
    def pid(self) -> Optional[int]:
        handle = self._handle
        return handle.pid if handle is not None else None

    def get_health(self) -> HealthCode:
        """
        CRITICAL when restarts exceed critical_restart_count or the circuit
        breaker tripped, WARNING while waiting to restart, GOOD otherwise.
        """
        with self._lock:
            if self._tripped or self._restart_count > self.critical_restart_count:
                return HealthCode.CRITICAL
            if self._wanted and self._handle is None:
                return HealthCode.WARNING
            return HealthCode.GOOD

    # ─────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────

    def _spawn(self) -> bool:
        argv = self.build_argv(self._stream_url)

        try:
            process = self._popen_factory(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                bufsize=0,
            )
        except OSError as e:
            self.logger.error(
                event=LogEvent.STREAM_CRASHED,
                message=f"Failed to spawn {self.name}",
                exc_info=e,
                metadata={'command': self.command}
            )
            self._handle_crash(f"spawn error: {e}")
            return False

        with self._lock:
            wanted = self._wanted
            if wanted:
                self._generation += 1
                handle = ProcessHandle(process=process, generation=self._generation)
                self._handle = handle

        if not wanted:
            # stop() won the race against a scheduled restart
            self._reap(process)
            return False

        handle.reader = threading.Thread(
            target=self._pump,
            args=(handle,),
            name=f"{self.name}-reader-{handle.generation}",
            daemon=True,
        )
        handle.reader.start()

        self.logger.info(
            event=LogEvent.STREAM_STARTED,
            message=f"Spawned {self.name}",
            metadata={
                'pid': handle.pid,
                'generation': handle.generation,
                'argv': argv,
            }
        )
        return True

    def _reap(self, process: subprocess.Popen) -> None:
        """Kill a process nobody will read from, then release its pipe."""
        try:
            process.kill()
        except OSError:
            pass  # already gone
        returncode = process.wait()
        process.stdout.close()

        self.logger.info(
            event=LogEvent.STREAM_STOPPED,
            message=f"Discarded {self.name} spawned after stop",
            metadata={'pid': process.pid, 'returncode': returncode}
        )

    def _pump(self, handle: ProcessHandle) -> None:
        """Reader thread: drain stdout until EOF, then classify the exit."""
        stdout = handle.process.stdout

        try:
            while True:
                chunk = stdout.read(self.read_size)
                if not chunk:
                    break
                if handle.state is not ProcessState.RUNNING:
                    break

                try:
                    self._on_data(chunk)
                except Exception as e:
                    self.logger.error(
                        event=LogEvent.STREAM_CRASHED,
                        message=f"Consumer of {self.name} output failed",
                        exc_info=e,
                        metadata={'generation': handle.generation}
                    )
        except (OSError, ValueError) as e:
            self.logger.warning(
                event=LogEvent.STREAM_CRASHED,
                message=f"Read error on {self.name} stdout: {e}",
                metadata={'generation': handle.generation}
            )
        finally:
            returncode = handle.process.wait()
            stdout.close()
            self._on_exit(handle, returncode)

    def _on_exit(self, handle: ProcessHandle, returncode: int) -> None:
        with self._lock:
            abnormal = self._handle is handle and handle.state is ProcessState.RUNNING
            if abnormal:
                self._handle = None
                handle.state = ProcessState.STOPPED

        if not abnormal:
            self.logger.info(
                event=LogEvent.STREAM_STOPPED,
                message=f"{self.name} exited after stop",
                metadata={'returncode': returncode, 'generation': handle.generation}
            )
            return

        self.logger.warning(
            event=LogEvent.STREAM_CRASHED,
            message=f"{self.name} exited on its own",
            metadata={'returncode': returncode, 'generation': handle.generation}
        )
        self._handle_crash(f"exited with code {returncode}")

    def _handle_crash(self, reason: str) -> None:
        timer = None

        with self._lock:
            if not self._wanted:
                return

            self._restart_count += 1
            now = self._clock()
            self._crash_times.append(now)
            while self._crash_times and now - self._crash_times[0] > self.restart_window:
                self._crash_times.popleft()

            if self.max_restarts is not None and len(self._crash_times) > self.max_restarts:
                self._tripped = True
                self._wanted = False
            else:
                timer = self._timer_factory(self.restart_delay, self._restart)
                timer.daemon = True
                self._restart_timer = timer

        if self._on_crash is not None:
            try:
                self._on_crash(reason)
            except Exception as e:
                self.logger.error(
                    event=LogEvent.STREAM_CRASHED,
                    message=f"Crash handler of {self.name} failed",
                    exc_info=e
                )

        if timer is None:
            self.logger.error(
                event=LogEvent.STREAM_CRASHED,
                message=f"{self.name} crashed {len(self._crash_times)} times in "
                        f"{self.restart_window}s, giving up",
                metadata={'reason': reason}
            )
            return

        timer.start()
        self.logger.info(
            event=LogEvent.STREAM_RESTART_SCHEDULED,
            message=f"Restarting {self.name} in {self.restart_delay}s",
            metadata={'reason': reason, 'restart_count': self._restart_count}
        )

    def _restart(self) -> None:
        with self._lock:
            self._restart_timer = None
            if not self._wanted or self._handle is not None:
                return

        self._spawn()
