"""Per-operation recipes: which compose commands a stack operation runs."""

import asyncio
from dataclasses import dataclass
from typing import Any

import structlog

from ..core.batch import BatchError, sequential
from ..core.exceptions import StackValidationError
from ..core.settings import EngineSettings
from ..core.subprocess_manager import CommandFailure, CommandResult, CommandSuccess, SubprocessManager
from ..models.enums import ErrorKind, NoticeLevel, OperationType
from ..models.operation import Notice, Operation, OperationResult
from .compose_files import ComposeFiles, validate_compose_content, validate_env_content, validate_stack_name
from .operations import ActionControl, ConfirmCallback, OperationController, ProgressTracker
from .stack_registry import StackRegistry
from .update_checker import UpdateChecker


@dataclass(frozen=True)
class ComposeStep:
    """One command of an operation."""

    args: tuple[str, ...]
    streaming: bool = False
    compose: bool = True  # False runs a plain docker command


SIMPLE_OPERATIONS: dict[OperationType, ComposeStep] = {
    OperationType.START: ComposeStep(("up", "-d"), streaming=True),
    OperationType.STOP: ComposeStep(("down",)),
    OperationType.RESTART: ComposeStep(("restart",)),
}

UPDATE_STEPS: tuple[ComposeStep, ...] = (
    ComposeStep(("pull",), streaming=True),
    ComposeStep(("up", "-d", "--force-recreate"), streaming=True),
    ComposeStep(("docker", "image", "prune", "-f"), compose=False),
)

REMOVE_STEP = ComposeStep(("down", "-v"), streaming=True)
VALIDATE_STEP = ComposeStep(("config", "--quiet"))


async def _always_confirm(_: str) -> bool:
    return True


class StackLifecycle:
    """Builds and runs the operation recipes against the controller."""

    def __init__(
        self,
        controller: OperationController,
        runner: SubprocessManager,
        files: ComposeFiles,
        registry: StackRegistry,
        update_checker: UpdateChecker,
        settings: EngineSettings,
    ):
        self.controller = controller
        self.runner = runner
        self.files = files
        self.registry = registry
        self.update_checker = update_checker
        self.settings = settings
        self.logger = structlog.get_logger()

    async def run_step(self, stack_name: str, step: ComposeStep, tracker: ProgressTracker) -> CommandResult:
        stack_dir = str(self.files.stack_dir(stack_name))
        if not step.compose:
            return await self.runner.run_command(list(step.args), suppress_error=True)
        return await self.runner.run_compose(
            stack_dir,
            step.args,
            streaming=step.streaming,
            on_line=tracker.on_line if step.streaming else None,
            suppress_error=True,
        )

    async def run_steps(
        self, stack_name: str, steps: tuple[ComposeStep, ...], tracker: ProgressTracker, delay: float = 0.0
    ) -> CommandResult:
        """Run steps in order, stopping at the first failure or streamed error."""
        result: CommandResult = CommandSuccess()
        outputs: list[str] = []
        for index, step in enumerate(steps):
            if index and delay:
                await asyncio.sleep(delay)
            result = await self.run_step(stack_name, step, tracker)
            if not result.success or tracker.has_error:
                return result
            outputs.append(result.data)
        return CommandSuccess(data="\n".join(o for o in outputs if o))

    async def _require_stack(self, stack_name: str) -> str:
        name = validate_stack_name(stack_name)
        if not await self.files.exists(self.files.stack_dir(name)):
            raise StackValidationError(f"Stack '{name}' not found")
        return name

    async def simple(
        self,
        operation_type: OperationType,
        stack_name: str,
        control: ActionControl | None = None,
    ) -> OperationResult:
        """start, stop or restart a stack."""
        name = await self._require_stack(stack_name)
        step = SIMPLE_OPERATIONS[operation_type]
        operation = Operation(type=operation_type, target=name, streaming=step.streaming)
        past_tense = {
            OperationType.START: "started",
            OperationType.STOP: "stopped",
            OperationType.RESTART: "restarted",
        }[operation_type]

        return await self.controller.execute(
            operation,
            lambda tracker: self.run_step(name, step, tracker),
            control=control or self.controller.control_for(operation_type, name),
            success_message=f"Stack '{name}' {past_tense} successfully",
        )

    async def update(
        self,
        stack_name: str,
        confirm: ConfirmCallback | None = None,
        recheck: bool = True,
    ) -> OperationResult:
        """Back up, pull, recreate and prune, one step at a time."""
        name = await self._require_stack(stack_name)
        operation = Operation(type=OperationType.UPDATE, target=name, streaming=True)

        async def _action(tracker: ProgressTracker) -> CommandResult:
            await self.files.write_backup(self.files.stack_dir(name))
            return await self.run_steps(name, UPDATE_STEPS, tracker, delay=self.settings.update_step_delay)

        return await self.controller.execute(
            operation,
            _action,
            confirm=confirm,
            prompt=f"Update stack '{name}'? Images are pulled and containers recreated.",
            control=self.controller.control_for(OperationType.UPDATE, name),
            success_message=f"Stack '{name}' updated successfully",
            after_success=self.update_checker.check if recheck else None,
        )

    async def update_all(self, confirm: ConfirmCallback | None = None) -> dict[str, Any]:
        """Update every stack flagged as having updates, pausing between stacks.

        A failed stack is reported and the batch carries on.
        """
        names = sorted(name for name in self.registry.stacks if self.update_checker.has_update(name))
        if not names:
            return {"success": True, "message": "All stacks are up to date", "results": []}

        prompt = f"Update {len(names)} stack(s): {', '.join(names)}?"
        if confirm is None or not await confirm(prompt):
            return {
                "success": False,
                "message": "Operation cancelled: confirmation required",
                "stacks": names,
                "results": [],
            }

        results = await sequential(
            names,
            lambda name: self.update(name, confirm=_always_confirm, recheck=False),
            delay=self.settings.update_all_delay,
        )

        summary = []
        for name, result in zip(names, results, strict=True):
            if isinstance(result, BatchError):
                summary.append({"stack_name": name, "success": False, "message": str(result.error)})
            else:
                summary.append({"stack_name": name, "success": result.success, "message": result.message})

        await self.update_checker.check()

        failed = [entry["stack_name"] for entry in summary if not entry["success"]]
        level = NoticeLevel.SUCCESS if not failed else NoticeLevel.WARNING
        message = (
            f"Updated {len(names) - len(failed)} of {len(names)} stacks"
            + (f"; failed: {', '.join(failed)}" if failed else "")
        )
        self.controller.notifier.notify(Notice(level=level, message=message))
        return {"success": not failed, "message": message, "results": summary}

    async def remove(self, stack_name: str, confirm: ConfirmCallback | None = None) -> OperationResult:
        """Bring the stack down with its volumes, then delete its directory."""
        name = await self._require_stack(stack_name)
        operation = Operation(type=OperationType.REMOVE, target=name, streaming=True)
        stack_dir = self.files.stack_dir(name)

        async def _action(tracker: ProgressTracker) -> CommandResult:
            result = await self.run_step(name, REMOVE_STEP, tracker)
            if not result.success or tracker.has_error:
                return result
            try:
                await self.files.remove_stack_dir(stack_dir)
            except OSError as e:
                return CommandFailure(kind=ErrorKind.RUNTIME_STATE, message=f"Failed to delete {stack_dir}: {e}")
            return result

        return await self.controller.execute(
            operation,
            _action,
            confirm=confirm,
            prompt=f"Remove stack '{name}'? Containers, volumes and the stack directory are deleted.",
            control=self.controller.control_for(OperationType.REMOVE, name),
            success_message=f"Stack '{name}' removed successfully",
        )

    async def create(
        self,
        stack_name: str,
        compose_content: str,
        env_content: str = "",
        start: bool = False,
    ) -> OperationResult:
        """Create a new stack directory from compose (and optional env) content."""
        name = validate_stack_name(stack_name)
        validate_compose_content(compose_content)
        validate_env_content(env_content)

        stack_dir = self.files.stack_dir(name)
        if await self.files.exists(stack_dir):
            raise StackValidationError(f"Stack '{name}' already exists")

        operation = Operation(type=OperationType.CREATE, target=name, streaming=start)

        async def _action(tracker: ProgressTracker) -> CommandResult:
            await self.files.write_stack(stack_dir, compose_content, env_content)
            await self.files.create_build_contexts(stack_dir, compose_content)
            await self.validate(name)
            if start:
                return await self.run_step(name, SIMPLE_OPERATIONS[OperationType.START], tracker)
            return CommandSuccess()

        return await self.controller.execute(
            operation,
            _action,
            control=self.controller.control_for(OperationType.CREATE, name),
            success_message=f"Stack '{name}' created" + (" and started" if start else ""),
        )

    async def save(self, stack_name: str, compose_content: str, env_content: str = "") -> dict[str, Any]:
        """Rewrite an existing stack's files; a failed compose validation is only a warning."""
        name = await self._require_stack(stack_name)
        validate_compose_content(compose_content)
        validate_env_content(env_content)

        stack_dir = self.files.stack_dir(name)
        target = await self.files.write_stack(stack_dir, compose_content, env_content)
        created = await self.files.create_build_contexts(stack_dir, compose_content)
        warning = await self.validate(name)
        await self.registry.refresh_stack(name)

        self.controller.notifier.notify(
            Notice(level=NoticeLevel.SUCCESS, message=f"Stack '{name}' saved", stack_name=name)
        )
        return {
            "success": True,
            "stack_name": name,
            "compose_file": target.name,
            "build_contexts_created": created,
            "validation_warning": warning,
        }

    async def validate(self, stack_name: str) -> str | None:
        """Run ``compose config --quiet``; returns a warning message on failure."""
        result = await self.run_step(stack_name, VALIDATE_STEP, ProgressTracker())
        if result.success:
            return None

        warning = f"Compose validation for '{stack_name}' reported: {result.summary}"
        self.controller.notifier.notify(Notice(level=NoticeLevel.WARNING, message=warning, stack_name=stack_name))
        return warning

    def describe_state(self, stack_name: str) -> dict[str, Any]:
        """In-flight operations and control states for one stack."""
        active = sorted(
            op.value for op in OperationType if self.controller.is_active(op, stack_name)
        )
        controls = {
            op.value: {
                "label": control.label,
                "css_class": control.css_class,
                "disabled": control.disabled,
            }
            for op in OperationType
            if (control := self.controller.control_for(op, stack_name))
        }
        return {"active_operations": active, "controls": controls, "idle": not active}


