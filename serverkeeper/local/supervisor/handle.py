import enum
import logging
import threading
import subprocess
from pathlib import Path
from typing import Callable, Optional

log = logging.getLogger(__name__)


class ProcessState(enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class OneShot:
    """
    Wraps an optional callback so that it runs at most once.
    Exceptions raised by the callback are logged and not propagated.
    """

    def __init__(self, callback: Optional[Callable[..., None]], name: str) -> None:
        self._callback = callback
        self.name = name
        self._lock = threading.Lock()
        self._fired = False

    @property
    def fired(self) -> bool:
        return self._fired

    def __call__(self, *args) -> bool:
        """Returns True for the call that actually fired."""
        with self._lock:
            if self._fired:
                return False
            self._fired = True

        if self._callback is not None:
            try:
                self._callback(*args)
            except Exception as e:
                log.error(f"Error in {self.name} callback: {e}", exc_info=True)
        return True


class ProcessHandle:
    """
    One supervised OS process.

    The handle settles exactly once, when the process is observed to end
    (exit) or to fail (error). Later notifications are ignored.
    """

    def __init__(self, process: subprocess.Popen, base_path: Path) -> None:
        self.process = process
        self.pid: int = process.pid
        self.base_path: Optional[Path] = base_path
        self.state = ProcessState.RUNNING
        self.killed = False
        self.returncode: Optional[int] = None
        self.exited = threading.Event()
        self._settle_lock = threading.Lock()
        self._settled = False

    def is_alive(self) -> bool:
        return not self._settled and self.process.poll() is None

    def settle(self, returncode: Optional[int] = None) -> bool:
        """
        Marks the process as ended.

        :return: True for the first caller only.
        """
        with self._settle_lock:
            if self._settled:
                return False
            self._settled = True
            self.returncode = returncode
            self.state = ProcessState.STOPPED
            self.base_path = None
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Blocks until the end of the process has been fully handled (state
        released, callbacks run). Returns False on timeout.
        """
        return self.exited.wait(timeout)

    def __repr__(self) -> str:
        return f"<ProcessHandle pid={self.pid} state={self.state.value}>"
