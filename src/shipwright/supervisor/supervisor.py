"""
Process supervisor.

Launches an artifact's declared start command, forwards shutdown signals,
escalates to SIGKILL after a bounded grace period and reports exactly how
the child ended. It never restarts a crashed child on its own: retry and
backoff belong to whatever process manager consumes the report.
"""

import atexit
import logging
import os
import shutil
import signal
import subprocess
import threading
import time
from collections.abc import Mapping

from shipwright.config import ARTIFACT_DIR_VARIABLE, MODE_VARIABLE, Settings
from shipwright.core.exceptions import RuntimeLaunchError, ShutdownTimeoutError
from shipwright.core.models import Artifact
from shipwright.supervisor.probe import HealthProbe
from shipwright.supervisor.process import ExitReport, ProcessState, SupervisedProcess

logger = logging.getLogger(__name__)

FORWARDED_SIGNALS = (signal.SIGINT, signal.SIGTERM)
# How long to wait for the kernel to reap a SIGKILLed child
KILL_WAIT_SECONDS = 5.0
MONITOR_INTERVAL = 0.1


class ProcessSupervisor:
    """
    Supervise one artifact process at a time.

    The child runs in its own process group so signals reach any
    grandchildren too, and no exit path leaves part of the group behind.

    Usage:
        supervisor = ProcessSupervisor(artifact, settings, base_env=env)
        report = supervisor.run()   # blocks until the child has exited
    """

    def __init__(
        self,
        artifact: Artifact,
        settings: Settings,
        *,
        base_env: Mapping[str, str] | None = None,
        probe: HealthProbe | None = None,
        wait_for_liveness: bool = True,
    ):
        """
        Initialize the supervisor.

        Args:
            artifact: Verified artifact to launch
            settings: Resolved settings (mode, port, timeouts)
            base_env: Environment passed through to the child; nothing
                else is inherited implicitly
            probe: Liveness probe (defaults to the canonical endpoint on
                settings.port)
            wait_for_liveness: Poll liveness before declaring startup done
        """
        self._artifact = artifact
        self._settings = settings
        self._base_env = dict(base_env or {})
        self._probe = probe
        self._wait_for_liveness = wait_for_liveness

        self._popen: subprocess.Popen | None = None
        self._process: SupervisedProcess | None = None
        self._launches = 0
        self._stop_event = threading.Event()
        self._stop_signal = signal.SIGTERM
        self._lock = threading.RLock()

    @property
    def process(self) -> SupervisedProcess | None:
        return self._process

    def build_env(self) -> dict[str, str]:
        """Explicit child environment: base env plus mode, port and artifact dir."""
        env = dict(self._base_env)
        env[MODE_VARIABLE] = self._settings.mode
        env["PORT"] = str(self._settings.port)
        env[ARTIFACT_DIR_VARIABLE] = str(self._artifact.path.resolve())
        return env

    def _resolve_command(self, env: Mapping[str, str]) -> list[str]:
        command = list(self._artifact.manifest.start_command)
        if not command:
            raise RuntimeLaunchError("Manifest declares an empty start command")
        executable = shutil.which(command[0], path=env.get("PATH", os.defpath))
        if executable is None:
            raise RuntimeLaunchError(
                f"Start command executable not found: {command[0]}",
                command=command,
            )
        return [executable, *command[1:]]

    def start(self) -> SupervisedProcess:
        """
        Spawn the artifact process.

        Returns:
            The running SupervisedProcess

        Raises:
            RuntimeLaunchError: If a process is already supervised or spawn fails
        """
        with self._lock:
            if self._process is not None and self._process.state != ProcessState.EXITED:
                raise RuntimeLaunchError(
                    f"A process is already supervised (pid {self._process.pid})"
                )

            env = self.build_env()
            command = self._resolve_command(env)

            try:
                popen = subprocess.Popen(
                    command,
                    cwd=self._artifact.path,
                    env=env,
                    start_new_session=True,
                )
            except OSError as e:
                raise RuntimeLaunchError(
                    f"Failed to spawn artifact process: {e}",
                    command=command,
                ) from e

            process = SupervisedProcess(
                pid=popen.pid,
                command=command,
                restart_count=self._launches,
            )
            self._launches += 1
            process.transition(ProcessState.RUNNING)
            self._popen = popen
            self._process = process
            atexit.register(self._kill_on_exit)

        logger.info(
            f"Started {self._artifact.manifest.name} (pid {popen.pid}) "
            f"on port {self._settings.port} in {self._settings.mode} mode"
        )
        return process

    def request_stop(self, signum: int = signal.SIGTERM) -> None:
        """
        Ask the supervisor to shut the child down.

        Safe to call from a signal handler: it only records the signal and
        wakes the waiting loop, which cancels any startup polling.
        """
        self._stop_signal = signal.Signals(signum)
        self._stop_event.set()

    def wait_until_live(self) -> bool:
        """
        Poll liveness until success, timeout, child exit or a stop request.

        Returns:
            True once live; False if a stop request cancelled the wait

        Raises:
            RuntimeLaunchError: If the child exits first or the startup
                timeout elapses (the child is stopped before raising)
        """
        process, popen = self._require_running()
        probe = self._probe or HealthProbe(self._settings.port)
        deadline = time.monotonic() + self._settings.startup_timeout

        try:
            while True:
                returncode = popen.poll()
                if returncode is not None:
                    report = self._finish(returncode)
                    raise RuntimeLaunchError(
                        "Artifact process exited before confirming liveness",
                        returncode=report.returncode,
                        signal_name=report.signal_name,
                        command=process.command,
                    )
                if self._stop_event.is_set():
                    logger.info("Startup wait cancelled by stop request")
                    return False
                if probe.check():
                    process.mark_live()
                    logger.info(f"Process {process.pid} is live ({probe.url})")
                    return True
                if time.monotonic() >= deadline:
                    self.stop()
                    raise RuntimeLaunchError(
                        f"Artifact did not become live within {self._settings.startup_timeout}s",
                        command=process.command,
                    )
                self._stop_event.wait(self._settings.probe_interval)
        finally:
            if self._probe is None:
                probe.close()

    def wait(self) -> ExitReport:
        """
        Block until the child exits or a stop is requested.

        Returns:
            ExitReport for the child
        """
        process, popen = self._require_running()
        while not self._stop_event.wait(MONITOR_INTERVAL):
            returncode = popen.poll()
            if returncode is not None:
                report = self._finish(returncode)
                logger.error(f"Artifact process exited unexpectedly: {report.describe()}")
                return report
        return self.stop(self._stop_signal)

    def stop(self, signum: int = signal.SIGTERM) -> ExitReport:
        """
        Stop the child: forward ``signum``, wait the grace period, then SIGKILL.

        Returns:
            ExitReport for the child

        Raises:
            RuntimeLaunchError: If the child survives even SIGKILL
        """
        with self._lock:
            process, popen = self._process, self._popen
            if process is None or popen is None:
                raise RuntimeLaunchError("No process has been started")
            if process.state == ProcessState.EXITED:
                return process.report()

            process.stop_requested = True
            if process.state == ProcessState.RUNNING:
                process.transition(ProcessState.TERMINATING)

            sig = signal.Signals(signum)
            logger.info(f"Sending {sig.name} to process group {process.pid}")
            self._signal_group(process.pid, sig)

            try:
                returncode = popen.wait(timeout=self._settings.grace_period)
            except subprocess.TimeoutExpired:
                error = ShutdownTimeoutError(pid=process.pid, grace_period=self._settings.grace_period)
                logger.warning(f"{error}; sending SIGKILL")
                process.forced = True
                self._signal_group(process.pid, signal.SIGKILL)
                try:
                    returncode = popen.wait(timeout=KILL_WAIT_SECONDS)
                except subprocess.TimeoutExpired as e:
                    raise RuntimeLaunchError(
                        "Artifact process survived SIGKILL",
                        command=process.command,
                    ) from e

            report = self._finish(returncode)
            logger.info(f"Artifact process stopped: {report.describe()}")
            return report

    def run(self) -> ExitReport:
        """
        Start, confirm liveness, supervise and shut down.

        SIGINT and SIGTERM are forwarded to the child while this runs (when
        called from the main thread). The child is stopped on every exit
        path, including exceptions.

        Returns:
            ExitReport for the child

        Raises:
            RuntimeLaunchError: If spawn or startup fails
        """
        # Requests left from an earlier run are stale; later ones survive start()
        self._stop_event.clear()
        previous = self._install_signal_handlers()
        try:
            self.start()
            if self._wait_for_liveness and not self.wait_until_live():
                return self.stop(self._stop_signal)
            return self.wait()
        finally:
            try:
                if self._process is not None and self._process.state != ProcessState.EXITED:
                    self.stop()
            finally:
                self._restore_signal_handlers(previous)

    def _finish(self, returncode: int) -> ExitReport:
        """Record an observed exit and clean up the rest of the process group."""
        with self._lock:
            process = self._process
            if process.state == ProcessState.EXITED:
                return process.report()
            if process.state == ProcessState.RUNNING:
                process.transition(ProcessState.TERMINATING)
            # Grandchildren may outlive the group leader
            self._signal_group(process.pid, signal.SIGKILL)
            process.returncode = returncode
            process.transition(ProcessState.EXITED)
            atexit.unregister(self._kill_on_exit)
            # The pending stop request, if any, ended with this process
            self._stop_event.clear()
            return process.report()

    def _require_running(self) -> tuple[SupervisedProcess, subprocess.Popen]:
        if self._process is None or self._popen is None:
            raise RuntimeLaunchError("No process has been started")
        if self._process.state == ProcessState.EXITED:
            raise RuntimeLaunchError(f"Process {self._process.pid} has already exited")
        return self._process, self._popen

    @staticmethod
    def _signal_group(pgid: int, sig: signal.Signals) -> None:
        try:
            os.killpg(pgid, sig)
        except (ProcessLookupError, PermissionError):
            logger.debug(f"Process group {pgid} already gone")

    def _kill_on_exit(self) -> None:
        """Last-resort cleanup if the interpreter exits while a child runs."""
        process = self._process
        if process is not None and process.state != ProcessState.EXITED:
            self._signal_group(process.pid, signal.SIGKILL)

    def _install_signal_handlers(self) -> dict[int, object]:
        if threading.current_thread() is not threading.main_thread():
            return {}

        def handler(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, shutting down")
            self.request_stop(signum)

        previous = {}
        for sig in FORWARDED_SIGNALS:
            previous[sig] = signal.signal(sig, handler)
        return previous

    @staticmethod
    def _restore_signal_handlers(previous: dict[int, object]) -> None:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
