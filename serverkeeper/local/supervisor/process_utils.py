import os
import sys
import signal
import psutil
import logging
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

log = logging.getLogger(__name__)


#* --- Process Creation ---
def get_executable_path(base_path: Path, exe_name: str) -> Path:
    """Returns the full path of the executable inside its working directory."""
    return Path(base_path) / exe_name

def _get_popen_creation_flags() -> Dict[str, Any]:
    """Returns platform-specific flags that detach the child from this process."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.DETACHED_PROCESS | subprocess.CREATE_NO_WINDOW}
    return {"start_new_session": True}

def _get_hidden_window_flags() -> Dict[str, Any]:
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NO_WINDOW}
    return {}

def spawn_detached(exe_path: Path, args: List[str], cwd: Path) -> subprocess.Popen:
    """
    Launches a detached process with no inherited standard streams.

    :raises OSError: If the executable cannot be launched.
    """
    return subprocess.Popen(
        [str(exe_path), *args],
        cwd=str(cwd),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        close_fds=True,
        **_get_popen_creation_flags(),
    )

def describe_returncode(returncode: Optional[int]) -> Tuple[int, Optional[str]]:
    """
    Splits a Popen return code into (exit code, signal name).
    A process killed by a signal on POSIX reports code -1 and the signal name.
    """
    if returncode is None:
        return -1, None
    if returncode < 0 and sys.platform != "win32":
        try:
            return -1, signal.Signals(-returncode).name
        except ValueError:
            return -1, f"SIG{-returncode}"
    return returncode, None


#* --- Process Termination ---
def _log_command_output(text: str, level: int) -> None:
    proc_logger = logging.getLogger("proc.taskkill")
    for line in (text or "").splitlines():
        line = line.strip()
        if line:
            proc_logger.log(level, line)

def run_taskkill(pid: int, timeout: Optional[float] = None) -> bool:
    """
    Terminates a process and its whole tree with `taskkill /T /F` (Windows).

    :return: True only if taskkill exited with code 0.
    """
    cmd = os.environ.get("ComSpec") or "cmd.exe"
    args = [cmd, "/c", "taskkill", "/PID", str(pid), "/T", "/F"]

    log.info(f"kill_by_pid: running taskkill for PID {pid}")
    try:
        result = subprocess.run(args, capture_output=True, text=True, timeout=timeout, check=False, **_get_hidden_window_flags())
    except subprocess.TimeoutExpired:
        log.error(f"taskkill timed out after {timeout}s for PID {pid}")
        return False
    except OSError as e:
        log.error(f"Failed to run taskkill for PID {pid}: {e}")
        return False

    _log_command_output(result.stdout, logging.INFO)
    _log_command_output(result.stderr, logging.ERROR)
    if result.returncode != 0:
        log.error(f"taskkill failed for PID {pid} with code {result.returncode}")
        return False
    log.info(f"taskkill succeeded for PID {pid}")
    return True

def signal_kill(pid: int) -> bool:
    """Sends SIGKILL (TerminateProcess on Windows) to a single process."""
    try:
        psutil.Process(pid).kill()
    except psutil.Error as e:
        log.error(f"Failed to kill PID {pid}: {e}")
        return False
    log.info(f"Killed PID {pid}")
    return True

def kill_process_tree(pid: int) -> None:
    """
    Kills a process and all of its descendants, children first.

    :raises psutil.Error: If the root process is gone or cannot be killed.
    """
    parent = psutil.Process(pid)
    children = parent.children(recursive=True)
    for child in reversed(children):
        try:
            log.debug(f"Killing child process {child.pid} of {pid}")
            child.kill()
        except psutil.NoSuchProcess:
            continue
    parent.kill()
