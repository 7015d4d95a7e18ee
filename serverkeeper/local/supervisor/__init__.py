"""
The Supervisor package.
Manages the lifecycle of the game-server process.

ProcessSupervisor starts the server detached, tracks its PID, notices when it
ends, and can kill it forcefully. ProcessHandle represents one launched process.
"""
from .handle import ProcessHandle, ProcessState
from .supervisor import ProcessSupervisor

__all__ = ['ProcessHandle', 'ProcessState', 'ProcessSupervisor']
