"""Classify compose CLI output lines into progress events.

The pattern table below is effectively a wire format for the compose CLI's
stdout. Checks run in a fixed order and the first match wins, so error
detection always beats the more specific categories. Unknown phrasing falls
through to the generic ``status`` bucket and never raises.
"""

import re

from ..models.enums import ProgressKind
from ..models.operation import ProgressEvent

ERROR_INDICATORS = (
    "yaml:",
    "YAML:",
    "mapping values are not allowed",
    "ERROR:",
    "Error:",
    "error:",
    "failed to",
    "Failed to",
    "Error response from daemon",
    "invalid reference format",
    "Unknown key",
    "Invalid interpolation",
    "Unsupported config option",
    "Additional property",
    "services must be a mapping",
    "Cannot locate specified Dockerfile",
    "build path",
    "no such file or directory",
)

# v1: "nginx: Pull complete", "latest: Pulling from library/nginx"
_PULL_V1 = re.compile(r"(\S+):\s*(Pulling from .+|Pull complete)")
# v2: " ✔ web Pulled", " web Pulling", " 7ba71a2 Pull complete"
_PULL_V2 = re.compile(r"^\W*(\S+)\s+(Pulling|Pulled|Pull complete)\s*$")
_DOWNLOAD = re.compile(r"(\S+?):?\s+(Downloading|Extracting)\s*\[[=> -]*\]\s*(.+)")
_CONTAINER_V1 = re.compile(r"(Creating|Starting|Stopping)\s+(?!network\b|volume\b)(\S+)")
_CONTAINER_V2 = re.compile(
    r"Container\s+(\S+)\s+(Creating|Created|Recreate|Recreated|Starting|Started|"
    r"Stopping|Stopped|Restarting|Restarted|Removing|Removed|Running|Waiting|Healthy)\b"
)
_NETWORK_V1 = re.compile(r"Creating network\s+\"?([^\"\s]+)\"?")
_NETWORK_V2 = re.compile(r"Network\s+(\S+)\s+(Creating|Created|Removing|Removed)\b")
_VOLUME_V1 = re.compile(r"Creating volume\s+\"?([^\"\s]+)\"?")
_VOLUME_V2 = re.compile(r"Volume\s+\"?([^\"\s]+?)\"?\s+(Creating|Created|Removing|Removed)\b")
_BARE_COUNTER = re.compile(r"\s*\d+\s*")
_ELLIPSIS_ONLY = re.compile(r"\s*(?:\.{3,}|…)\s*")


def is_error_line(line: str) -> bool:
    if any(indicator in line for indicator in ERROR_INDICATORS):
        return True
    return "WARNING:" in line and "no such service" in line


def parse_progress_line(line: str) -> ProgressEvent | None:
    """Classify one line of compose output.

    Args:
        line: Raw output line, with or without trailing newline

    Returns:
        ProgressEvent for meaningful lines, None for noise
    """
    stripped = line.strip()
    if not stripped:
        return None

    if is_error_line(line):
        return ProgressEvent(kind=ProgressKind.ERROR, message=stripped.replace("WARNING:", "Error:", 1))

    if match := _PULL_V1.search(line) or _PULL_V2.search(line):
        return ProgressEvent(kind=ProgressKind.IMAGE_PULL, message=f"{match.group(1)}: {match.group(2)}")

    if match := _DOWNLOAD.search(line):
        return ProgressEvent(
            kind=ProgressKind.DOWNLOAD_PROGRESS,
            message=f"{match.group(1)}: {match.group(2)} {match.group(3).strip()}",
        )

    if match := _CONTAINER_V2.search(line):
        return ProgressEvent(kind=ProgressKind.CONTAINER_OP, message=f"{match.group(2)} container: {match.group(1)}")
    if match := _CONTAINER_V1.search(line):
        return ProgressEvent(kind=ProgressKind.CONTAINER_OP, message=f"{match.group(1)} container: {match.group(2)}")

    if match := _NETWORK_V1.search(line):
        return ProgressEvent(kind=ProgressKind.NETWORK_OP, message=f"Creating network: {match.group(1)}")
    if match := _NETWORK_V2.search(line):
        return ProgressEvent(kind=ProgressKind.NETWORK_OP, message=f"{match.group(2)} network: {match.group(1)}")

    if match := _VOLUME_V1.search(line):
        return ProgressEvent(kind=ProgressKind.VOLUME_OP, message=f"Creating volume: {match.group(1)}")
    if match := _VOLUME_V2.search(line):
        return ProgressEvent(kind=ProgressKind.VOLUME_OP, message=f"{match.group(2)} volume: {match.group(1)}")

    if line[0].isspace() or _BARE_COUNTER.fullmatch(line) or _ELLIPSIS_ONLY.fullmatch(line):
        return None

    return ProgressEvent(kind=ProgressKind.STATUS, message=stripped)
