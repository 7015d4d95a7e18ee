import sys
import psutil
import logging
import threading
import subprocess
from pathlib import Path
from typing import Callable, Optional, Sequence

from serverkeeper.errors import AlreadyRunningError, RuntimeProcessError, SpawnFailure
from serverkeeper.local.config import effective_settings as config
from serverkeeper.local.supervisor import process_utils
from serverkeeper.local.supervisor.handle import OneShot, ProcessHandle, ProcessState

log = logging.getLogger(__name__)

ExitCallback = Callable[[int, Optional[str]], None]
ErrorCallback = Callable[[BaseException], None]


class ProcessSupervisor:
    """
    Owns at most one supervised game-server process.

    Callers are expected to hold a single instance. All state transitions go
    through `_lock`, which is never held while a callback runs or while an
    external kill command executes. Every termination path ends with the
    supervisor reset to Stopped, even when the termination attempt failed.
    """

    def __init__(self, exe_name: Optional[str] = None) -> None:
        """
        :param exe_name: Executable file name inside the working directory.
            Defaults to the DEFAULT_EXE_NAME setting.
        """
        self.exe_name = exe_name or config.DEFAULT_EXE_NAME
        self._lock = threading.RLock()
        self._handle: Optional[ProcessHandle] = None
        self.last_pid: Optional[int] = None

    @property
    def handle(self) -> Optional[ProcessHandle]:
        return self._handle

    @property
    def state(self) -> ProcessState:
        return ProcessState.RUNNING if self._handle is not None else ProcessState.STOPPED

    @property
    def is_running(self) -> bool:
        return self._handle is not None

    @property
    def base_path(self) -> Optional[Path]:
        handle = self._handle
        return handle.base_path if handle is not None else None

    def start(
        self,
        args: Sequence[str],
        working_dir: Path,
        exe_name: Optional[str] = None,
        on_exit: Optional[ExitCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> ProcessHandle:
        """
        Launches the game server as a detached process.

        :param args: Command-line arguments for the server.
        :param working_dir: Directory holding the executable; also the process CWD.
        :param exe_name: Overrides the supervisor's executable name for this launch.
        :param on_exit: Called once with (code, signal) when the process ends.
        :param on_error: Called once with the error if launching fails or the
            process reports an OS error.
        :return: The handle of the new process.
        :raises AlreadyRunningError: If a process is already running.
        :raises SpawnFailure: If the executable could not be launched.
        """
        exit_callback = OneShot(on_exit, "on_exit")
        error_callback = OneShot(on_error, "on_error")
        failure: Optional[SpawnFailure] = None

        with self._lock:
            if self._handle is not None:
                raise AlreadyRunningError(f"Game server is already running (PID {self._handle.pid}).")

            base_path = Path(working_dir)
            exe_path = process_utils.get_executable_path(base_path, exe_name or self.exe_name)
            log.info(f"Starting game server: exe={exe_path}, cwd={base_path}, args={list(args)}")

            try:
                process = process_utils.spawn_detached(exe_path, list(args), base_path)
            except (OSError, ValueError, subprocess.SubprocessError) as e:
                self._reset()
                failure = SpawnFailure(str(exe_path), e)
                log.error(f"Failed to start game server: {failure}")
            else:
                handle = ProcessHandle(process, base_path)
                self._handle = handle
                self.last_pid = handle.pid

        if failure is not None:
            error_callback(failure)
            raise failure from failure.cause

        watcher = threading.Thread(
            target=self._watch,
            args=(handle, exit_callback, error_callback),
            daemon=True,
            name=f"ProcessWatcher-{handle.pid}",
        )
        watcher.start()
        log.info(f"Game server process started with PID {handle.pid}")
        return handle

    def _watch(self, handle: ProcessHandle, on_exit: OneShot, on_error: OneShot) -> None:
        """Waits for the process in a background thread and reports how it ended."""
        try:
            returncode = handle.process.wait()
        except OSError as e:
            if handle.settle():
                self._release(handle)
                error = RuntimeProcessError(handle.pid, e)
                log.error(f"Game server process error: {error}")
                on_error(error)
                handle.exited.set()
            return

        if handle.settle(returncode):
            self._release(handle)
            code, sig = process_utils.describe_returncode(returncode)
            log.info(f"Game server process ended: code={code}, signal={sig or '-'}")
            on_exit(code, sig)
            handle.exited.set()

    def _release(self, handle: Optional[ProcessHandle]) -> None:
        """Drops `handle` if it is still the current one; a newer handle is left alone."""
        with self._lock:
            if self._handle is handle:
                self._handle = None

    def _reset(self) -> None:
        with self._lock:
            self._handle = None

    def get_pid(self) -> Optional[int]:
        """Returns the live PID, or the last known PID once the process has stopped."""
        with self._lock:
            if self._handle is not None:
                return self._handle.pid
            return self.last_pid

    def kill_by_pid(self, pid: Optional[int] = None) -> bool:
        """
        Forcefully terminates a process by PID.

        On Windows the whole process tree is terminated with taskkill; elsewhere
        the process receives SIGKILL. The process tracked when the call began is
        dropped whether or not the kill succeeded; one started meanwhile is kept.
        A PID given as a string is converted; anything that is not a positive
        integer is treated as no PID.

        :param pid: Target PID. Defaults to get_pid().
        :return: True if the termination succeeded, False if it failed or no PID
            was available.
        """
        with self._lock:
            handle = self._handle

        target = pid if pid is not None else self.get_pid()
        try:
            target = int(target) if target is not None else None
        except (TypeError, ValueError):
            log.warning(f"kill_by_pid: ignoring invalid PID {pid!r}")
            target = None
        if not target or target <= 0:
            log.info("kill_by_pid: no PID available")
            return False

        try:
            if sys.platform == "win32":
                return process_utils.run_taskkill(target, config.TASKKILL_TIMEOUT)
            return process_utils.signal_kill(target)
        finally:
            # A process started while the kill was running is left alone.
            self._release(handle)

    def kill_tree(self) -> None:
        """Kills the tracked process and its descendants, then resets state."""
        with self._lock:
            handle = self._handle

        try:
            if handle is not None and not handle.killed and handle.is_alive():
                log.info(f"kill_tree(): killing process tree of PID {handle.pid}")
                handle.killed = True
                try:
                    process_utils.kill_process_tree(handle.pid)
                except (psutil.Error, OSError) as e:
                    log.error(f"kill_tree() failed for PID {handle.pid}: {e}")
            else:
                log.info("kill_tree(): no child process to kill, only resetting state")
        finally:
            self._release(handle)
        log.info("Supervisor state reset")
