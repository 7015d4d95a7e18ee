import os
import sys
import abc
import json
import logging
import subprocess
from typing import Any, Dict, List, Optional, Type

from serverkeeper.errors import BackendCommandFailure, BackendQueryFailure, FirewallError
from serverkeeper.local.config import effective_settings as config
from .models import Direction, EffectiveRule, ExistingRule

log = logging.getLogger(__name__)

# Parameters travel as one JSON document in this variable; the scripts below
# are constants and never have caller values spliced into them.
ARGS_ENV_VAR = "SERVERKEEPER_FIREWALL_ARGS"

_PROLOGUE = """
$ErrorActionPreference = 'Stop'
[Console]::OutputEncoding = [System.Text.Encoding]::UTF8
$p = $env:SERVERKEEPER_FIREWALL_ARGS | ConvertFrom-Json
"""

QUERY_RULES_SCRIPT = _PROLOGUE + """
$pattern = [System.Management.Automation.WildcardPattern]::Escape([string]$p.DisplayName)
$rows = @()
$rules = Get-NetFirewallRule -DisplayName $pattern -ErrorAction SilentlyContinue |
    Where-Object { [string]$_.Direction -eq $p.Direction -and $_.DisplayName -eq $p.DisplayName }
foreach ($r in $rules) {
    $pf  = Get-NetFirewallPortFilter        -AssociatedNetFirewallRule $r
    $app = Get-NetFirewallApplicationFilter -AssociatedNetFirewallRule $r
    $rows += [PSCustomObject]@{
        Name        = [string]$r.Name
        DisplayName = [string]$r.DisplayName
        Direction   = [string]$r.Direction
        Action      = [string]$r.Action
        Profile     = [int]$r.Profile
        Protocol    = [string]$pf.Protocol
        LocalPort   = @($pf.LocalPort | ForEach-Object { [string]$_ })
        Program     = [string]$app.Program
    }
}
ConvertTo-Json -InputObject @($rows) -Depth 4 -Compress
"""

DELETE_RULE_SCRIPT = _PROLOGUE + """
Remove-NetFirewallRule -Name ([System.Management.Automation.WildcardPattern]::Escape([string]$p.Name))
"""

CREATE_RULE_SCRIPT = _PROLOGUE + """
$params = @{
    DisplayName = [string]$p.DisplayName
    Direction   = [string]$p.Direction
    Action      = [string]$p.Action
    Protocol    = [string]$p.Protocol
    Enabled     = 'True'
}
$ports = @($p.LocalPort)
if ($ports.Count -gt 0) { $params.LocalPort = [string[]]$ports }
if ([int]$p.Profile -ne 0) { $params.Profile = [int]$p.Profile }
if ($p.Program) { $params.Program = [string]$p.Program }
$rule = New-NetFirewallRule @params
ConvertTo-Json -InputObject @{ Name = [string]$rule.Name } -Compress
"""


class FirewallBackend(abc.ABC):
    """The OS firewall rule store as seen by the reconciler."""

    @abc.abstractmethod
    def query_rules(self, display_name: str, direction: Direction) -> List[ExistingRule]:
        """Returns every rule with this display name in this direction."""

    @abc.abstractmethod
    def delete_rule(self, name: str) -> None:
        """Deletes one rule by its backend identifier."""

    @abc.abstractmethod
    def create_rule(self, rule: EffectiveRule) -> Optional[str]:
        """Creates an enabled rule and returns its backend identifier if known."""


def _get_creation_flags() -> Dict[str, Any]:
    """Keeps PowerShell from flashing a console window on Windows."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NO_WINDOW}
    return {}


def _parse_json(stdout: str, failure_cls: Type[FirewallError], what: str) -> Any:
    text = (stdout or "").strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise failure_cls(f"Unparsable PowerShell output while {what}: {e}\nstdout={text}") from e


class PowerShellFirewallBackend(FirewallBackend):
    """
    Drives the Windows NetSecurity cmdlets through `powershell.exe`.

    Every command runs with a timeout. Timeouts, a missing interpreter, non-zero
    exit codes and unparsable output all surface as BackendQueryFailure
    (listing) or BackendCommandFailure (delete/create).
    """

    def __init__(self, executable: Optional[str] = None, timeout: Optional[float] = None):
        self.executable = executable or config.POWERSHELL_EXECUTABLE
        self.timeout = timeout if timeout is not None else config.FIREWALL_COMMAND_TIMEOUT

    def _run(self, script: str, payload: Dict[str, Any], failure_cls: Type[FirewallError], what: str) -> str:
        """
        Runs one fixed script with `payload` as its parameters.

        :return: The command's stdout.
        :raises failure_cls: On timeout, launch failure or non-zero exit.
        """
        env = dict(os.environ)
        env[ARGS_ENV_VAR] = json.dumps(payload)
        cmd = [self.executable, "-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-Command", script]

        log.debug(f"Running PowerShell while {what}: {payload}")
        try:
            result = subprocess.run(
                cmd,
                env=env,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
                check=False,
                **_get_creation_flags(),
            )
        except subprocess.TimeoutExpired as e:
            raise failure_cls(f"PowerShell timed out after {self.timeout}s while {what}") from e
        except OSError as e:
            raise failure_cls(f"Could not run '{self.executable}' while {what}: {e}") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise failure_cls(
                f"PowerShell exited with code {result.returncode} while {what}: {stderr}",
                returncode=result.returncode,
                stderr=stderr,
            )
        return result.stdout

    def query_rules(self, display_name: str, direction: Direction) -> List[ExistingRule]:
        what = f"listing '{display_name}' ({direction.value})"
        stdout = self._run(
            QUERY_RULES_SCRIPT,
            {"DisplayName": display_name, "Direction": direction.value},
            BackendQueryFailure,
            what,
        )
        data = _parse_json(stdout, BackendQueryFailure, what)
        if data is None:
            return []
        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list):
            raise BackendQueryFailure(f"Expected a JSON array while {what}, got {type(data).__name__}")
        return [ExistingRule.from_backend(item) for item in data]

    def delete_rule(self, name: str) -> None:
        self._run(DELETE_RULE_SCRIPT, {"Name": name}, BackendCommandFailure, f"deleting rule {name}")

    def create_rule(self, rule: EffectiveRule) -> Optional[str]:
        what = f"creating '{rule.display_name}' ({rule.direction.value})"
        payload = {
            "DisplayName": rule.display_name,
            "Direction": rule.direction.value,
            "Action": rule.action.value,
            "Protocol": rule.protocol.value,
            "LocalPort": list(rule.local_ports),
            "Profile": rule.profile_mask,
            "Program": rule.program or "",
        }
        stdout = self._run(CREATE_RULE_SCRIPT, payload, BackendCommandFailure, what)
        data = _parse_json(stdout, BackendCommandFailure, what)
        if isinstance(data, dict):
            return data.get("Name")
        return None
