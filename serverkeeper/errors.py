"""
Exception hierarchy shared by the supervisor and firewall packages.
"""
from typing import TYPE_CHECKING, List, Optional, Sequence

if TYPE_CHECKING:
    from serverkeeper.local.firewall.models import DirectionResult


class ServerKeeperError(Exception):
    """Base class for every error raised by serverkeeper."""


#* --- Process Supervisor ---
class SupervisorError(ServerKeeperError):
    """Base class for process supervisor errors."""


class AlreadyRunningError(SupervisorError):
    """Raised by start() while a supervised process is still running."""


class SpawnFailure(SupervisorError):
    """The executable could not be launched (missing binary, permissions...)."""

    def __init__(self, exe_path: str, cause: BaseException):
        super().__init__(f"Failed to launch '{exe_path}': {cause}")
        self.exe_path = exe_path
        self.cause = cause


class RuntimeProcessError(SupervisorError):
    """The OS reported an error for a process after it was spawned."""

    def __init__(self, pid: int, cause: BaseException):
        super().__init__(f"Process {pid} reported an error: {cause}")
        self.pid = pid
        self.cause = cause


#* --- Firewall ---
class FirewallError(ServerKeeperError):
    """Base class for firewall reconciliation errors."""


class InvalidRuleError(FirewallError, ValueError):
    """A desired rule contains values the firewall backend cannot accept."""


class BackendQueryFailure(FirewallError):
    """Listing existing rules failed or returned an unparsable response."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class BackendCommandFailure(FirewallError):
    """A delete or create command failed."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class PartialReconciliationFailure(FirewallError):
    """
    Some existing rules were deleted before a later step failed.

    `stage` is "delete" when a further delete failed (the remaining outdated
    rules are still installed and no replacement was attempted) or "create"
    when every outdated rule was removed but the replacement could not be
    created. Either way the desired rule is absent until the caller retries.
    """

    def __init__(self, direction: str, deleted: Sequence[str], cause: FirewallError, stage: str = "create"):
        if stage == "delete":
            message = (
                f"{direction}: deleted {len(deleted)} rule(s) but failed to delete the next outdated rule; "
                f"no replacement was created: {cause}"
            )
        else:
            message = f"{direction}: deleted {len(deleted)} rule(s) but failed to create the replacement: {cause}"
        super().__init__(message)
        self.direction = direction
        self.stage = stage
        self.deleted = list(deleted)
        self.cause = cause


class ReconciliationError(FirewallError):
    """Raised by RuleReconciler.apply() when at least one direction failed."""

    def __init__(self, display_name: str, results: List["DirectionResult"]):
        failed = [r for r in results if r.error is not None]
        details = "; ".join(f"{r.direction.value}: {r.error}" for r in failed)
        super().__init__(f"Firewall rule '{display_name}' was not reconciled ({details})")
        self.display_name = display_name
        self.results = results

    @property
    def errors(self) -> List[FirewallError]:
        return [r.error for r in self.results if r.error is not None]

    @property
    def partial(self) -> bool:
        """True if any direction was left without its rule."""
        return any(isinstance(e, PartialReconciliationFailure) for e in self.errors)
