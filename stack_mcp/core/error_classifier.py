"""Turn raw docker and compose failure text into one short, readable message."""

import re
from dataclasses import dataclass

from ..models.enums import ErrorKind

GENERIC_EXIT_MESSAGES = frozenset({"non-zero exit status", "exit status 1"})
GENERIC_EXIT_DESCRIPTION = "Command failed - check the configuration for errors"
FALLBACK_DESCRIPTION = "Operation failed - check configuration"


@dataclass(frozen=True)
class ErrorPattern:
    """Known failure phrasing: detection regex, optional extractor, message prefix."""

    pattern: re.Pattern[str]
    message: str
    kind: ErrorKind
    extract: re.Pattern[str] | None = None


@dataclass(frozen=True)
class ClassifiedError:
    kind: ErrorKind
    message: str


_ERROR_PATTERNS: tuple[ErrorPattern, ...] = (
    # Port conflicts
    ErrorPattern(
        re.compile(r"bind.*address already in use"),
        "Port conflict: ",
        ErrorKind.RUNTIME_STATE,
        re.compile(r"bind: (.+)$", re.MULTILINE),
    ),
    ErrorPattern(
        re.compile(r"port is already allocated"),
        "Port already in use: ",
        ErrorKind.RUNTIME_STATE,
        re.compile(r":(\d+) failed: port is already allocated"),
    ),
    # Network
    ErrorPattern(
        re.compile(r"no such host"),
        "DNS resolution failed - check network connection",
        ErrorKind.RUNTIME_STATE,
    ),
    ErrorPattern(
        re.compile(r"timeout"),
        "Operation timed out - check network connection",
        ErrorKind.RUNTIME_STATE,
    ),
    # Images
    ErrorPattern(
        re.compile(r"pull access denied"),
        "Cannot pull image - access denied or not found",
        ErrorKind.RUNTIME_STATE,
    ),
    ErrorPattern(
        re.compile(r"manifest.*not found"),
        "Image not found in registry",
        ErrorKind.RUNTIME_STATE,
    ),
    ErrorPattern(
        re.compile(r"toomanyrequests|rate limit"),
        "Registry rate limit reached - try again later",
        ErrorKind.RUNTIME_STATE,
    ),
    ErrorPattern(
        re.compile(r"unauthorized"),
        "Authentication required - image may be private",
        ErrorKind.RUNTIME_STATE,
    ),
    # Volumes and mounts
    ErrorPattern(
        re.compile(r"no such file or directory"),
        "Path not found: ",
        ErrorKind.RUNTIME_STATE,
        re.compile(r"(?:open |stat |lstat )?([^\s:]+): no such file or directory"),
    ),
    # Resources
    ErrorPattern(
        re.compile(r"no space left on device"),
        "No disk space available",
        ErrorKind.RUNTIME_STATE,
    ),
    ErrorPattern(
        re.compile(r"cannot allocate memory"),
        "Insufficient memory",
        ErrorKind.RUNTIME_STATE,
    ),
    # Permissions
    ErrorPattern(
        re.compile(r"permission denied"),
        "Permission denied",
        ErrorKind.RUNTIME_STATE,
    ),
    # Compose file
    ErrorPattern(
        re.compile(r"yaml:.*line \d+"),
        "",
        ErrorKind.CONFIGURATION,
        re.compile(r"(yaml:.*line \d+:.*)"),
    ),
    ErrorPattern(
        re.compile(r"mapping values are not allowed"),
        "",
        ErrorKind.CONFIGURATION,
        re.compile(r"(.*line \d+:.*mapping values are not allowed.*)"),
    ),
    ErrorPattern(
        re.compile(r"no such service"),
        "Service not found: ",
        ErrorKind.CONFIGURATION,
        re.compile(r"no such service: (.+)"),
    ),
)

_CONFIGURATION_HINTS = (
    "yaml:",
    "YAML:",
    "services must be a mapping",
    "Unsupported config option",
    "Invalid interpolation",
    "Unknown key",
    "Additional property",
)

_DAEMON_RESPONSE = re.compile(r"Error response from daemon: (.+)")
_ERROR_PREFIX = re.compile(r"ERROR:\s*(.+)")
_RELEVANT_HINTS = ("error", "failed", "cannot", "invalid", "unknown", "unsupported")


def classify_error(error: str | Exception | None) -> ClassifiedError:
    """Classify failure text into an error kind and a short description."""
    if error is None:
        return ClassifiedError(ErrorKind.APPLICATION, "Unknown error")

    text = str(error).strip()
    if not text:
        return ClassifiedError(ErrorKind.EXIT_STATUS, "Unknown error")

    if text in GENERIC_EXIT_MESSAGES:
        return ClassifiedError(ErrorKind.EXIT_STATUS, GENERIC_EXIT_DESCRIPTION)

    for entry in _ERROR_PATTERNS:
        if not entry.pattern.search(text):
            continue
        if entry.extract is not None:
            match = entry.extract.search(text)
            if match and match.group(1):
                return ClassifiedError(entry.kind, entry.message + match.group(1).strip())
            return ClassifiedError(entry.kind, entry.message.rstrip(": ") or _relevant_line(text))
        return ClassifiedError(entry.kind, entry.message)

    kind = (
        ErrorKind.CONFIGURATION
        if any(hint in text for hint in _CONFIGURATION_HINTS)
        else ErrorKind.EXIT_STATUS
    )

    if daemon := _DAEMON_RESPONSE.search(text):
        return ClassifiedError(ErrorKind.RUNTIME_STATE, daemon.group(1).strip())

    if prefixed := _ERROR_PREFIX.search(text):
        return ClassifiedError(kind, prefixed.group(1).strip())

    return ClassifiedError(kind, _relevant_line(text))


def describe_error(error: str | Exception | None) -> str:
    """Return the short human-readable description for ``error``."""
    return classify_error(error).message


def _relevant_line(text: str) -> str:
    lines = [
        line.strip()
        for line in text.splitlines()
        if line.strip() and "docker compose" not in line and "docker-compose" not in line
    ]

    for line in lines:
        lowered = line.lower()
        if "yaml:" in line or "mapping values" in line or any(h in lowered for h in _RELEVANT_HINTS):
            return line

    return lines[0] if lines else FALLBACK_DESCRIPTION
