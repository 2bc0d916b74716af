"""PowerShell text helpers: literal quoting, parameter binding and end markers."""

import uuid
from collections.abc import Iterable, Mapping
from typing import Any

END_MARKER_PREFIX = "END_COMMAND_"


def ps_literal(value: Any) -> str:
    """Render a Python value as a PowerShell literal."""
    if value is None:
        return "$null"
    if isinstance(value, bool):
        return "$true" if value else "$false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, (list, tuple)):
        return "@(" + ", ".join(ps_literal(v) for v in value) + ")"
    if isinstance(value, Mapping):
        pairs = "; ".join(f"{ps_literal(str(k))} = {ps_literal(v)}" for k, v in value.items())
        return "@{" + pairs + "}"
    # Single-quoted strings are verbatim in PowerShell; only ' needs doubling
    return "'" + str(value).replace("'", "''") + "'"


def bind_parameters(body: str, parameters: Mapping[str, Any]) -> str:
    """Prefix ``body`` with ``$Name = <literal>`` assignments, in order."""
    if not parameters:
        return body
    lines = []
    for name, value in parameters.items():
        if not name.isidentifier():
            raise ValueError(f"Invalid PowerShell parameter name: {name!r}")
        lines.append(f"${name} = {ps_literal(value)}")
    lines.append(body)
    return "\n".join(lines)


def script_invocation(
    script_path: str, parameter_names: Iterable[str], server_variable: str | None = None
) -> str:
    """Build a call to a script file passing each bound variable as a named argument.

    The values are bound separately (see ``bind_parameters``), so the body
    itself never contains them. ``server_variable`` names a session variable
    passed as the script's ``-Server`` argument.
    """
    arguments = []
    for name in parameter_names:
        if not name.isidentifier():
            raise ValueError(f"Invalid PowerShell parameter name: {name!r}")
        arguments.append(f"-{name}:${name}")
    if server_variable:
        arguments.append(f"-Server:{server_variable}")
    return " ".join([f"& {ps_literal(script_path)}", *arguments])


def new_end_marker() -> str:
    return f"{END_MARKER_PREFIX}{uuid.uuid4().hex}"


def frame_command(command: str, marker: str) -> str:
    """Wrap a command so the session prints ``marker`` once it has finished.

    Terminating errors are reported with the ``ERROR:`` prefix instead of
    leaving the session waiting.
    """
    return (
        "try {\n"
        f"{command}\n"
        "} catch {\n"
        "    Write-Output \"ERROR: $($_.Exception.Message)\"\n"
        "}\n"
        f"Write-Output '{marker}'\n"
    )


def is_end_marker(line: str) -> bool:
    return line.strip().startswith(END_MARKER_PREFIX)


# Each side runs in its own PowerShell process, so one global suffices
SESSION_VARIABLE = "$global:MigratorConnection"

CONNECT_SCRIPT = f"""$ErrorActionPreference = 'Stop'
if (-not (Get-Module -Name VMware.VimAutomation.Core)) {{
    Import-Module VMware.VimAutomation.Core -ErrorAction Stop | Out-Null
}}
Set-PowerCLIConfiguration -InvalidCertificateAction Ignore -ParticipateInCEIP $false -Confirm:$false -Scope Session | Out-Null
$securePassword = ConvertTo-SecureString $Password -AsPlainText -Force
$credential = New-Object System.Management.Automation.PSCredential($User, $securePassword)
$Password = $null
try {{
    $connection = Connect-VIServer -Server $Server -Credential $credential -Force -ErrorAction Stop
    {SESSION_VARIABLE} = $connection
    Write-Output "CONNECTION_SUCCESS"
    Write-Output "SESSION_ID:$($connection.SessionId)"
    Write-Output "VERSION:$($connection.Version)"
}} catch {{
    Write-Output "CONNECTION_FAILED:$($_.Exception.Message)"
}}"""

PROBE_SCRIPT = (
    f"if ({SESSION_VARIABLE} -and {SESSION_VARIABLE}.IsConnected) "
    "{ Write-Output 'True' } else { Write-Output 'False' }"
)

DISCONNECT_SCRIPT = f"""if ({SESSION_VARIABLE}) {{
    Disconnect-VIServer -Server {SESSION_VARIABLE} -Force -Confirm:$false -ErrorAction SilentlyContinue
    {SESSION_VARIABLE} = $null
}}
Write-Output 'DISCONNECTED'"""


def json_query(pipeline: str, projection: str, depth: int = 4) -> str:
    """Build a query emitting ``projection`` for each pipeline object as one JSON array."""
    return (
        f"$items = @({pipeline} | ForEach-Object {{ [pscustomobject]@{{ {projection} }} }})\n"
        f"ConvertTo-Json -Compress -Depth {depth} -InputObject $items"
    )
