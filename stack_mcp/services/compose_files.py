"""Filesystem side of a stack: compose file, .env, build contexts.

Compose content is only inspected for what the engine needs: port mappings,
image references and build-context declarations. YAML parsing is used when the
document parses; otherwise a line-based scan gives a best-effort answer.
"""

import asyncio
import json
import re
import shutil
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog
import yaml

from ..constants import BACKUP_FILE, COMPOSE_FILE_VARIANTS, DEFAULT_COMPOSE_FILE, DEFAULT_DOCKERFILE, ENV_FILE
from ..core.batch import first_success
from ..core.config_loader import StackMCPConfig
from ..core.exceptions import StackValidationError
from ..models.stack import PortMapping

logger = structlog.get_logger()

STACK_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$")
ENV_KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_.-]*$")

_PORT_LINE = re.compile(
    r"""^\s*-\s*["']?(?:(\d{1,3}(?:\.\d{1,3}){3}):)?(\d+):(\d+)(?:/\w+)?["']?\s*$"""
)
_IMAGE_LINE = re.compile(r"""^\s*image:\s*["']?([^"'\s#]+)""")
_BUILD_LINE = re.compile(r"""^\s*build:\s*["']?([^"'\s#]+)""")
_CONTEXT_LINE = re.compile(r"""^\s*context:\s*["']?([^"'\s#]+)""")

INT_TAG = "tag:yaml.org,2002:int"
FLOAT_TAG = "tag:yaml.org,2002:float"


class ComposeLoader(yaml.SafeLoader):
    """SafeLoader without YAML 1.1 base-60 numbers.

    Compose reads ``- 53:53`` as a port mapping; plain ``safe_load`` turns it
    into the integer 3233.
    """


ComposeLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag not in (INT_TAG, FLOAT_TAG)]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
ComposeLoader.add_implicit_resolver(
    INT_TAG, re.compile(r"^[-+]?(?:0|[1-9][0-9_]*)$"), list("-+0123456789")
)
ComposeLoader.add_implicit_resolver(
    FLOAT_TAG,
    re.compile(
        r"^[-+]?(?:[0-9][0-9_]*)?\.[0-9_]+(?:[eE][-+]?[0-9]+)?$"
        r"|^[-+]?\.(?:inf|Inf|INF)$|^\.(?:nan|NaN|NAN)$"
    ),
    list("-+0123456789."),
)


def validate_stack_name(name: str) -> str:
    """Validate a stack (directory) name.

    Raises:
        StackValidationError: If the name is empty or has unsupported characters
    """
    candidate = (name or "").strip()
    if not candidate:
        raise StackValidationError("Stack name is required")
    if not STACK_NAME_PATTERN.match(candidate):
        raise StackValidationError(
            f"Invalid stack name '{candidate}': use letters, numbers, '.', '_' or '-', "
            "starting with a letter or number"
        )
    return candidate


def validate_compose_content(content: str) -> None:
    """Reject compose content that cannot possibly be a valid compose file."""
    if not content or not content.strip():
        raise StackValidationError("Compose content cannot be empty")

    for number, line in enumerate(content.splitlines(), start=1):
        if line.strip() and not line.lstrip().startswith("#") and "\t" in line[: len(line) - len(line.lstrip())]:
            raise StackValidationError(
                f"Line {number}: YAML does not allow tabs for indentation. Use spaces instead."
            )

    if "services:" not in content:
        raise StackValidationError('Docker Compose file must contain a "services:" section')

    try:
        yaml.load(content, Loader=ComposeLoader)
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        location = f"Line {mark.line + 1}: " if mark is not None else ""
        problem = getattr(e, "problem", None) or str(e)
        raise StackValidationError(f"{location}{problem}") from e


def validate_env_content(content: str) -> None:
    """Every non-blank, non-comment line must look like ``KEY=value``."""
    for number, line in enumerate((content or "").splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, sep, _ = stripped.partition("=")
        if not sep or not ENV_KEY_PATTERN.match(key.strip()):
            raise StackValidationError(f"Line {number}: expected KEY=value, got '{stripped}'")


def _load_services(content: str) -> dict[str, Any] | None:
    try:
        document = yaml.load(content, Loader=ComposeLoader)
    except yaml.YAMLError:
        return None
    if not isinstance(document, dict) or not isinstance(document.get("services"), dict):
        return None
    return {name: spec for name, spec in document["services"].items() if isinstance(spec, dict)}


def _port_from_entry(entry: Any) -> PortMapping | None:
    if isinstance(entry, dict):
        published, target = entry.get("published"), entry.get("target")
        if published is None or target is None:
            return None
        host = f"{entry['host_ip']}:{published}" if entry.get("host_ip") else str(published)
        return PortMapping(host=host, container=str(target))

    text = str(entry).split("/", 1)[0]
    parts = text.rsplit(":", 2)
    if len(parts) < 2:
        return None  # container-only port, nothing published
    host = ":".join(parts[:-1])
    return PortMapping(host=host, container=parts[-1])


def extract_ports(content: str | None) -> list[PortMapping]:
    """Published ``host:container`` pairs, in declaration order."""
    if not content:
        return []

    services = _load_services(content)
    if services is None:
        return _scan_ports(content)

    ports: list[PortMapping] = []
    for spec in services.values():
        for entry in spec.get("ports") or []:
            try:
                mapping = _port_from_entry(entry)
            except ValueError:
                # Ranges and ${VAR} interpolation are not resolved
                continue
            if mapping is not None:
                ports.append(mapping)
    return ports


def _scan_ports(content: str) -> list[PortMapping]:
    ports = []
    in_ports = False
    ports_indent = 0
    for line in content.splitlines():
        if not line.strip():
            continue
        indent = len(line) - len(line.lstrip())
        if line.strip().startswith("ports:"):
            in_ports, ports_indent = True, indent
            continue
        if in_ports and indent <= ports_indent and not line.strip().startswith("-"):
            in_ports = False
        if in_ports and (match := _PORT_LINE.match(line)):
            ip, host, container = match.groups()
            try:
                ports.append(PortMapping(host=f"{ip}:{host}" if ip else host, container=container))
            except ValueError:
                continue
    return ports


def extract_images(content: str | None) -> list[str]:
    """Distinct image references, in declaration order."""
    if not content:
        return []

    services = _load_services(content)
    if services is None:
        found = [m.group(1) for line in content.splitlines() if (m := _IMAGE_LINE.match(line))]
    else:
        found = [str(spec["image"]) for spec in services.values() if spec.get("image")]

    return list(dict.fromkeys(found))


def extract_build_contexts(content: str | None) -> list[str]:
    """Relative build-context directories declared by services."""
    if not content:
        return []

    services = _load_services(content)
    contexts: list[str] = []
    if services is None:
        for line in content.splitlines():
            if match := _BUILD_LINE.match(line) or _CONTEXT_LINE.match(line):
                contexts.append(match.group(1))
    else:
        for spec in services.values():
            build = spec.get("build")
            if isinstance(build, str):
                contexts.append(build)
            elif isinstance(build, dict) and build.get("context"):
                contexts.append(str(build["context"]))

    relative = [
        c for c in contexts if not c.startswith("/") and "://" not in c and not c.startswith("git@")
    ]
    return list(dict.fromkeys(relative))


class ComposeFiles:
    """Reads and writes stack directories under the configured stacks root."""

    def __init__(self, config: StackMCPConfig):
        self.config = config
        self.logger = structlog.get_logger()

    @property
    def root(self) -> Path:
        return Path(self.config.stacks_path)

    def stack_dir(self, name: str) -> Path:
        return self.root / validate_stack_name(name)

    async def list_stack_dirs(self) -> list[str]:
        """Ensure the stacks root exists and list its directories."""

        def _list() -> list[str]:
            self.root.mkdir(parents=True, exist_ok=True)
            return sorted(
                entry.name
                for entry in self.root.iterdir()
                if entry.is_dir() and STACK_NAME_PATTERN.match(entry.name)
            )

        return await asyncio.to_thread(_list)

    async def read_compose(self, stack_dir: Path) -> tuple[str, str | None] | None:
        """Return ``(variant, content)`` for the first readable compose variant.

        ``content`` is None when a variant exists but none could be read. None is
        returned when the directory holds no recognized variant at all.
        """
        hit = await first_success(
            COMPOSE_FILE_VARIANTS,
            lambda variant: asyncio.to_thread((stack_dir / variant).read_text, encoding="utf-8"),
            lambda content: content is not None,
        )
        if hit is not None:
            return hit

        existing = await asyncio.to_thread(
            lambda: next((v for v in COMPOSE_FILE_VARIANTS if (stack_dir / v).exists()), None)
        )
        if existing is None:
            return None

        self.logger.warning("Compose file unreadable", stack_dir=str(stack_dir), compose_file=existing)
        return existing, None

    async def read_env(self, stack_dir: Path) -> str:
        env_path = stack_dir / ENV_FILE
        try:
            return await asyncio.to_thread(env_path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return ""

    async def write_stack(
        self,
        stack_dir: Path,
        compose_content: str,
        env_content: str = "",
        compose_file: str | None = None,
    ) -> Path:
        """Write compose and .env files. An empty env removes any existing .env."""

        def _write() -> Path:
            stack_dir.mkdir(parents=True, exist_ok=True)
            target = stack_dir / (compose_file or self._existing_variant(stack_dir) or DEFAULT_COMPOSE_FILE)
            target.write_text(compose_content, encoding="utf-8")

            env_path = stack_dir / ENV_FILE
            if env_content.strip():
                env_path.write_text(env_content if env_content.endswith("\n") else env_content + "\n", encoding="utf-8")
            else:
                env_path.unlink(missing_ok=True)
            return target

        target = await asyncio.to_thread(_write)
        self.logger.info("Stack files written", stack_dir=str(stack_dir), compose_file=target.name)
        return target

    async def create_build_contexts(self, stack_dir: Path, compose_content: str) -> list[str]:
        """Create missing build-context directories with a template Dockerfile."""
        contexts = extract_build_contexts(compose_content)

        def _create() -> list[str]:
            created = []
            for context in contexts:
                context_dir = (stack_dir / context).resolve()
                if stack_dir.resolve() not in (context_dir, *context_dir.parents):
                    self.logger.warning("Build context outside stack directory skipped", context=context)
                    continue
                context_dir.mkdir(parents=True, exist_ok=True)
                dockerfile = context_dir / "Dockerfile"
                if not dockerfile.exists():
                    dockerfile.write_text(DEFAULT_DOCKERFILE, encoding="utf-8")
                    created.append(context)
            return created

        created = await asyncio.to_thread(_create)
        if created:
            self.logger.info("Build contexts created", stack_dir=str(stack_dir), contexts=created)
        return created

    async def write_backup(self, stack_dir: Path) -> Path:
        backup = stack_dir / BACKUP_FILE
        payload = json.dumps({"timestamp": datetime.now(UTC).isoformat()}, indent=2)
        await asyncio.to_thread(backup.write_text, payload, encoding="utf-8")
        return backup

    async def remove_stack_dir(self, stack_dir: Path) -> None:
        await asyncio.to_thread(shutil.rmtree, stack_dir)
        self.logger.info("Stack directory removed", stack_dir=str(stack_dir))

    async def exists(self, stack_dir: Path) -> bool:
        return await asyncio.to_thread(stack_dir.exists)

    @staticmethod
    def _existing_variant(stack_dir: Path) -> str | None:
        return next((v for v in COMPOSE_FILE_VARIANTS if (stack_dir / v).exists()), None)
