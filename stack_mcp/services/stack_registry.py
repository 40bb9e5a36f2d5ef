"""In-memory registry of stacks, rebuilt from the filesystem and the runtime."""

import re
from datetime import UTC, datetime

import structlog

from ..constants import CONTAINER_PS_FORMAT, DOCKER_COMPOSE_PROJECT
from ..core.batch import BatchError, first_success, parallel
from ..core.settings import EngineSettings
from ..core.subprocess_manager import CommandResult, SubprocessManager
from ..models.stack import ContainerSnapshot, Stack
from .compose_files import ComposeFiles, extract_images, extract_ports


def sanitize_project_name(name: str) -> str:
    """Project name as compose v1 derives it: lowercase, alphanumerics only."""
    return re.sub(r"[^a-z0-9]", "", name.lower())


def container_query_strategies(name: str) -> list[list[str]]:
    """``docker ps`` invocations tried in order to find a stack's containers."""
    base = ["docker", "ps", "-a", "--format", CONTAINER_PS_FORMAT]
    labels = list(dict.fromkeys([sanitize_project_name(name), name]))
    strategies = [[*base, "--filter", f"label={DOCKER_COMPOSE_PROJECT}={label}"] for label in labels if label]
    strategies.append([*base, "--filter", f"name=^{re.escape(name)}[-_]"])
    return strategies


def parse_container_lines(output: str) -> list[ContainerSnapshot]:
    containers = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split("\t")
        containers.append(
            ContainerSnapshot(
                name=parts[0].strip(),
                state=parts[1].strip() if len(parts) > 1 else "",
                status_text=parts[2].strip() if len(parts) > 2 else "",
            )
        )
    return containers


class StackRegistry:
    """Holds the last loaded Stack per directory name."""

    def __init__(self, files: ComposeFiles, runner: SubprocessManager, settings: EngineSettings):
        self.files = files
        self.runner = runner
        self.settings = settings
        self.stacks: dict[str, Stack] = {}
        self.last_loaded: datetime | None = None
        self.logger = structlog.get_logger()

    def get(self, name: str) -> Stack | None:
        return self.stacks.get(name)

    async def reload(self) -> list[Stack]:
        """Rebuild every stack with bounded parallelism.

        Directories without a recognized compose file are left out rather than
        reported as errored stacks.
        """
        names = await self.files.list_stack_dirs()
        results = await parallel(names, self.load_stack, self.settings.stack_load_concurrency)

        stacks: list[Stack] = []
        for name, result in zip(names, results, strict=True):
            if isinstance(result, BatchError):
                self.logger.error("Failed to load stack", stack_name=name, error=str(result.error))
                stacks.append(Stack(name=name, path=str(self.files.root / name), query_failed=True))
            elif result is not None:
                stacks.append(result)

        self.stacks = {stack.name: stack for stack in stacks}
        self.last_loaded = datetime.now(UTC)
        self.logger.debug("Stacks reloaded", count=len(stacks), root=str(self.files.root))
        return stacks

    async def refresh_stack(self, name: str) -> Stack | None:
        """Reload a single stack in place; a vanished stack is dropped."""
        stack = await self.load_stack(name)
        if stack is None:
            self.stacks.pop(name, None)
        else:
            self.stacks[name] = stack
        return stack

    async def load_stack(self, name: str) -> Stack | None:
        stack_dir = self.files.stack_dir(name)
        compose = await self.files.read_compose(stack_dir)
        if compose is None:
            return None

        compose_file, content = compose
        containers, query_failed = await self.query_containers(name)

        return Stack(
            name=name,
            path=str(stack_dir),
            compose_file=compose_file,
            compose_content=content,
            has_config_error=content is None,
            ports=extract_ports(content),
            images=extract_images(content),
            containers=containers,
            query_failed=query_failed,
        )

    async def query_containers(self, name: str) -> tuple[list[ContainerSnapshot], bool]:
        """Find a stack's containers; the first non-empty strategy wins.

        Returns:
            Containers found, and whether every strategy failed outright
        """
        strategies = container_query_strategies(name)
        failures = 0

        async def _attempt(cmd: list[str]) -> CommandResult:
            nonlocal failures
            result = await self.runner.run_command(cmd, suppress_error=True)
            if not result.success:
                failures += 1
            return result

        hit = await first_success(
            strategies, _attempt, lambda result: result.success and bool(result.data.strip())
        )
        if hit is not None:
            return parse_container_lines(hit[1].data), False

        query_failed = failures == len(strategies)
        if query_failed:
            self.logger.warning("Container query failed for every strategy", stack_name=name)
        return [], query_failed
