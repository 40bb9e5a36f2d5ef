"""
Stack Management Service

Facade wiring the engine together and exposing one action handler per tool.
Handlers return plain dicts (or ToolResult for listing views) carrying a
``formatted_output`` text alongside the structured data.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from fastmcp.tools.tool import ToolResult
from mcp.types import TextContent

from ..constants import FORMATTED_OUTPUT, STACK_NAME
from ..core.config_loader import StackMCPConfig, change_stacks_path
from ..core.exceptions import StackMCPError
from ..core.refresh_scheduler import DEFAULT_VIEW, AdaptiveRefreshScheduler
from ..core.settings import EngineSettings, RefreshSettings
from ..core.subprocess_manager import SubprocessManager
from ..models.enums import (
    NoticeLevel,
    OperationState,
    OperationType,
    RefreshAction,
    ServiceAction,
    SettingsAction,
    StackAction,
)
from ..models.operation import Notice, OperationResult
from .compose_files import ComposeFiles
from .lifecycle import StackLifecycle
from .operations import ConfirmCallback, NoticeLog, OperationController
from .runtime_status import RuntimeStatusService
from .stack_details import StackDetails
from .stack_registry import StackRegistry
from .update_checker import UpdateChecker, UpdateRecordStore

STACK_VIEW_PREFIX = "stack:"

_STATUS_ICONS = {
    "running": "🟢",
    "partial": "🟡",
    "stopped": "⚪",
    "error": "🔴",
    "unknown": "❔",
}


def _tool_result(text: str, structured: dict[str, Any]) -> ToolResult:
    return ToolResult(
        content=[TextContent(type="text", text=text)],
        structured_content={FORMATTED_OUTPUT: text, **structured},
    )


class StackService:
    """Facade service for stack management, refresh and docker service control."""

    def __init__(
        self,
        config: StackMCPConfig,
        engine_settings: EngineSettings | None = None,
        refresh_settings: RefreshSettings | None = None,
        runner: SubprocessManager | None = None,
    ):
        self.config = config
        self.settings = engine_settings or EngineSettings()
        self.logger = structlog.get_logger()

        self.notices = NoticeLog()
        self.runner = runner or SubprocessManager(error_reporter=self._report_error)
        self.files = ComposeFiles(config)
        self.registry = StackRegistry(self.files, self.runner, self.settings)
        self.update_checker = UpdateChecker(
            self.runner, self.registry, UpdateRecordStore(config.update_file), self.settings
        )
        self.controller = OperationController(self.notices, self.registry.reload, self.settings)
        self.lifecycle = StackLifecycle(
            self.controller, self.runner, self.files, self.registry, self.update_checker, self.settings
        )
        self.details = StackDetails(self.runner, self.registry, self.settings)
        self.runtime = RuntimeStatusService(self.runner)
        self.scheduler = AdaptiveRefreshScheduler(self.reload_view, self.runtime.probe, refresh_settings)
        self._auto_check_task: asyncio.Task | None = None

    def _report_error(self, message: str) -> None:
        self.notices.notify(Notice(level=NoticeLevel.ERROR, message=message))

    # Lifecycle

    async def startup(self) -> None:
        """Detect docker, load state and start background polling."""
        if not await self.runtime.detect_docker():
            self.notices.notify(
                Notice(level=NoticeLevel.WARNING, message="Docker CLI not found or not responding")
            )

        await self.update_checker.load_status()
        await self.registry.reload()
        self.scheduler.start()

        if self.update_checker.should_check():
            self._auto_check_task = asyncio.create_task(self._auto_update_check())

        self.logger.info(
            "Stack service started",
            stacks_path=self.config.stacks_path,
            stacks=len(self.registry.stacks),
            docker_version=self.runtime.docker_version,
        )

    async def shutdown(self) -> None:
        if self._auto_check_task is not None:
            self._auto_check_task.cancel()
            await asyncio.gather(self._auto_check_task, return_exceptions=True)
            self._auto_check_task = None
        self.details.close()
        await self.scheduler.shutdown()
        await self.controller.cancel_pending_reloads()
        await self.runner.cleanup_all()
        self.logger.info("Stack service stopped")

    async def _auto_update_check(self) -> None:
        await asyncio.sleep(self.settings.auto_update_check_delay)
        try:
            await self.update_checker.check()
        except Exception as e:
            self.logger.error("Automatic update check failed", error=str(e))

    async def reload_view(self, view: str) -> None:
        """Reload whatever the scheduler considers the active view."""
        if view.startswith(STACK_VIEW_PREFIX):
            await self.registry.refresh_stack(view[len(STACK_VIEW_PREFIX) :])
        else:
            await self.registry.reload()

    # docker_stacks

    async def handle_action(self, action: StackAction | str, **params) -> ToolResult | dict[str, Any]:
        """Unified action handler for all stack operations."""
        try:
            return await self._dispatch_action(action, **params)
        except StackMCPError as e:
            return self._error_response(str(e), action=str(getattr(action, "value", action)))
        except Exception as e:
            self.logger.error(
                "stack service action error",
                action=str(action),
                stack_name=params.get(STACK_NAME, ""),
                error=str(e),
            )
            return self._error_response(
                f"Service action failed: {e}",
                action=str(getattr(action, "value", action)),
                stack_name=params.get(STACK_NAME, ""),
            )

    async def _dispatch_action(self, action: StackAction | str, **params) -> ToolResult | dict[str, Any]:
        normalized = self._normalize_action(action)

        dispatch_map: dict[StackAction, Callable[..., Awaitable[ToolResult | dict[str, Any]]]] = {
            StackAction.LIST: self._handle_list_action,
            StackAction.VIEW: self._handle_view_action,
            StackAction.CREATE: self._handle_create_action,
            StackAction.SAVE: self._handle_save_action,
            StackAction.START: self._handle_lifecycle_action,
            StackAction.STOP: self._handle_lifecycle_action,
            StackAction.RESTART: self._handle_lifecycle_action,
            StackAction.UPDATE: self._handle_update_action,
            StackAction.UPDATE_ALL: self._handle_update_all_action,
            StackAction.REMOVE: self._handle_remove_action,
            StackAction.CHECK_UPDATES: self._handle_check_updates_action,
            StackAction.STATS: self._handle_stats_action,
            StackAction.LOGS: self._handle_logs_action,
            StackAction.DETAILS: self._handle_details_action,
            StackAction.CLOSE_DETAILS: self._handle_close_details_action,
            StackAction.NOTICES: self._handle_notices_action,
        }

        if not isinstance(normalized, StackAction):
            return {
                "success": False,
                "error": f"Unsupported action: {normalized}",
                "supported_actions": [a.value for a in StackAction],
            }

        handler = dispatch_map[normalized]
        if normalized in (StackAction.START, StackAction.STOP, StackAction.RESTART):
            return await handler(normalized, **params)
        return await handler(**params)

    def _normalize_action(self, action: StackAction | str) -> StackAction | str:
        if isinstance(action, str):
            try:
                return StackAction(action.lower().strip())
            except ValueError:
                return action.lower().strip()
        return action

    def _error_response(self, message: str, **extra: Any) -> dict[str, Any]:
        response: dict[str, Any] = {
            "success": False,
            "error": message,
            FORMATTED_OUTPUT: f"❌ {message}",
        }
        response.update(extra)
        return response

    @staticmethod
    def _confirmation(confirmed: bool) -> tuple[ConfirmCallback, list[str]]:
        """Confirmation callback answering with the caller's ``confirm`` flag.

        The prompts it was asked are collected so a declined request can tell
        the caller what needs confirming.
        """
        prompts: list[str] = []

        async def _confirm(prompt: str) -> bool:
            prompts.append(prompt)
            return confirmed

        return _confirm, prompts

    def _operation_response(self, result: OperationResult, prompts: list[str] | None = None) -> dict[str, Any]:
        response = result.model_dump(mode="json")
        if result.success:
            lines = [f"✅ {result.message}"]
        elif result.state is OperationState.IDLE:
            lines = [f"⚠️ {result.message}"]
            if prompts:
                response["confirmation_prompt"] = prompts[-1]
                lines.append(f"{prompts[-1]} Repeat the request with confirm=true to proceed.")
        else:
            lines = [f"❌ {result.message}"]
            response["error"] = result.message

        errors = [event.message for event in result.progress if event.is_error]
        steps = [event.message for event in result.progress if not event.is_error]
        if steps:
            lines.append("")
            lines.extend(f"  {message}" for message in steps[-15:])
        if errors:
            lines.append("")
            lines.extend(f"  ❗ {message}" for message in errors)

        response[FORMATTED_OUTPUT] = "\n".join(lines)
        return response

    async def _handle_list_action(self, **params) -> ToolResult | dict[str, Any]:
        stacks = await self.registry.reload()
        summaries = [stack.summary(self.update_checker.has_update(stack.name)) for stack in stacks]

        lines = [f"Stacks in {self.config.stacks_path} ({len(summaries)})"]
        for summary in summaries:
            ports = ", ".join(summary["ports"]) or "-"
            update = "  ⬆ update available" if summary["has_update"] else ""
            lines.append(
                f"  {_STATUS_ICONS.get(summary['status'], '')} {summary['name']}  "
                f"{summary['status']}  {summary['running']}/{summary['containers']} up  "
                f"uptime: {summary['uptime']}  ports: {ports}{update}"
            )
        if not summaries:
            lines.append("  No stacks found")

        return _tool_result(
            "\n".join(lines),
            {
                "success": True,
                "stacks_path": self.config.stacks_path,
                "stacks": summaries,
                "last_update_check": self.update_checker.last_check,
            },
        )

    async def _handle_view_action(self, **params) -> ToolResult | dict[str, Any]:
        stack_name = params.get(STACK_NAME, "")
        if not stack_name:
            return self._error_response("stack_name is required for view action")

        stack = await self.registry.refresh_stack(stack_name)
        if stack is None:
            return self._error_response(f"Stack '{stack_name}' not found")

        env_content = await self.files.read_env(self.files.stack_dir(stack_name))
        header = f"Stack: {stack.name} ({stack.status.value}, uptime {stack.uptime})"
        text = "\n".join(
            [
                header,
                f"Compose file: {stack.compose_file}",
                "",
                stack.compose_content or "(compose file could not be read)",
            ]
        )
        return _tool_result(
            text,
            {
                "success": True,
                "stack": stack.summary(self.update_checker.has_update(stack.name)),
                "compose_file": stack.compose_file,
                "compose_content": stack.compose_content,
                "env_content": env_content,
                "containers": [c.model_dump() for c in stack.containers or []],
                "operations": self.lifecycle.describe_state(stack.name),
            },
        )

    async def _handle_create_action(self, **params) -> dict[str, Any]:
        stack_name = params.get(STACK_NAME, "")
        compose_content = params.get("compose_content", "")
        if not stack_name:
            return self._error_response("stack_name is required for create action")
        if not compose_content:
            return self._error_response("compose_content is required for create action")

        result = await self.lifecycle.create(
            stack_name,
            compose_content,
            params.get("env_content", ""),
            start=params.get("start", False),
        )
        return self._operation_response(result)

    async def _handle_save_action(self, **params) -> dict[str, Any]:
        stack_name = params.get(STACK_NAME, "")
        compose_content = params.get("compose_content", "")
        if not stack_name:
            return self._error_response("stack_name is required for save action")
        if not compose_content:
            return self._error_response("compose_content is required for save action")

        result = await self.lifecycle.save(stack_name, compose_content, params.get("env_content", ""))
        lines = [f"✅ Stack '{result[STACK_NAME]}' saved to {result['compose_file']}"]
        if result["build_contexts_created"]:
            lines.append(f"Created build contexts: {', '.join(result['build_contexts_created'])}")
        if result["validation_warning"]:
            lines.append(f"⚠️ {result['validation_warning']}")
        result[FORMATTED_OUTPUT] = "\n".join(lines)
        return result

    async def _handle_lifecycle_action(self, action: StackAction, **params) -> dict[str, Any]:
        stack_name = params.get(STACK_NAME, "")
        if not stack_name:
            return self._error_response(f"stack_name is required for {action.value} action")

        result = await self.lifecycle.simple(OperationType(action.value), stack_name)
        return self._operation_response(result)

    async def _handle_update_action(self, **params) -> dict[str, Any]:
        stack_name = params.get(STACK_NAME, "")
        if not stack_name:
            return self._error_response("stack_name is required for update action")

        confirm, prompts = self._confirmation(params.get("confirm", False))
        result = await self.lifecycle.update(stack_name, confirm=confirm)
        return self._operation_response(result, prompts)

    async def _handle_update_all_action(self, **params) -> dict[str, Any]:
        confirm, prompts = self._confirmation(params.get("confirm", False))
        result = await self.lifecycle.update_all(confirm=confirm)

        lines = [("✅ " if result["success"] else "⚠️ ") + result["message"]]
        for entry in result["results"]:
            icon = "✅" if entry["success"] else "❌"
            lines.append(f"  {icon} {entry[STACK_NAME]}: {entry['message']}")
        if prompts and not result["results"] and not result["success"]:
            result["confirmation_prompt"] = prompts[-1]
            lines.append(f"{prompts[-1]} Repeat the request with confirm=true to proceed.")
        result[FORMATTED_OUTPUT] = "\n".join(lines)
        return result

    async def _handle_remove_action(self, **params) -> dict[str, Any]:
        stack_name = params.get(STACK_NAME, "")
        if not stack_name:
            return self._error_response("stack_name is required for remove action")

        confirm, prompts = self._confirmation(params.get("confirm", False))
        result = await self.lifecycle.remove(stack_name, confirm=confirm)
        if result.success and self.details.view is not None and self.details.view.stack_name == stack_name:
            self._close_details()
        return self._operation_response(result, prompts)

    async def _handle_check_updates_action(self, **params) -> dict[str, Any]:
        if not self.registry.stacks:
            await self.registry.reload()
        record = await self.update_checker.check()
        flagged = sorted(name for name, flag in record.flags().items() if flag)

        if flagged:
            text = f"⬆ Updates available for {len(flagged)} stack(s): {', '.join(flagged)}"
        else:
            text = "✅ All stacks are up to date"
        return {
            "success": True,
            "stacks_with_updates": flagged,
            **self.update_checker.status(),
            FORMATTED_OUTPUT: text,
        }

    async def _handle_stats_action(self, **params) -> ToolResult | dict[str, Any]:
        stack_name = params.get(STACK_NAME, "")
        if not stack_name:
            return self._error_response("stack_name is required for stats action")

        if self.registry.get(stack_name) is None:
            await self.registry.refresh_stack(stack_name)
        stats = await self.details.stats(stack_name)

        lines = [f"Container stats: {stack_name}"]
        for entry in stats:
            if "error" in entry:
                lines.append(f"  {entry['container']}: ❌ {entry['error']}")
            else:
                lines.append(
                    f"  {entry['container']}: CPU {entry['CPUPerc']}  MEM {entry['MemUsage']} "
                    f"({entry['MemPerc']})  NET {entry['NetIO']}  IO {entry['BlockIO']}"
                )
        if not stats:
            lines.append("  No containers")

        return _tool_result("\n".join(lines), {"success": True, STACK_NAME: stack_name, "stats": stats})

    async def _handle_logs_action(self, **params) -> ToolResult | dict[str, Any]:
        stack_name = params.get(STACK_NAME, "")
        if not stack_name:
            return self._error_response("stack_name is required for logs action")

        if self.registry.get(stack_name) is None:
            await self.registry.refresh_stack(stack_name)
        search = params.get("search") or None
        logs = await self.details.logs(stack_name, search=search, tail=params.get("lines"))

        total = sum(len(lines) for lines in logs.values())
        header = f"Stack Logs: {stack_name} ({total} lines)"
        if search:
            header += f" matching '{search}'"
        formatted = [header]
        for container, lines in logs.items():
            formatted.append("")
            formatted.append(f"== {container} ==")
            formatted.extend(lines)

        return _tool_result(
            "\n".join(formatted),
            {"success": True, STACK_NAME: stack_name, "search": search, "logs": logs, "lines_returned": total},
        )

    async def _handle_details_action(self, **params) -> dict[str, Any]:
        stack_name = params.get(STACK_NAME, "")
        if not stack_name:
            snapshot = self.details.snapshot()
            if snapshot is None:
                return self._error_response("No detail view is open; pass stack_name to open one")
            return {"success": True, **snapshot, FORMATTED_OUTPUT: f"Detail view: {snapshot[STACK_NAME]}"}

        if self.registry.get(stack_name) is None:
            await self.registry.refresh_stack(stack_name)
        self.details.open(stack_name, search=params.get("search") or None)
        self.scheduler.set_active_view(f"{STACK_VIEW_PREFIX}{stack_name}")

        return {
            "success": True,
            STACK_NAME: stack_name,
            "stats_interval": self.settings.stats_refresh_interval,
            "logs_interval": self.settings.logs_refresh_interval,
            FORMATTED_OUTPUT: (
                f"Detail view opened for '{stack_name}'. Stats refresh every "
                f"{self.settings.stats_refresh_interval:g}s, logs every {self.settings.logs_refresh_interval:g}s."
            ),
        }

    async def _handle_close_details_action(self, **params) -> dict[str, Any]:
        closed = self._close_details()
        text = f"Detail view for '{closed}' closed" if closed else "No detail view was open"
        return {"success": True, "closed": closed, FORMATTED_OUTPUT: text}

    def _close_details(self) -> str | None:
        closed = self.details.close()
        self.scheduler.set_active_view(DEFAULT_VIEW)
        return closed

    async def _handle_notices_action(self, **params) -> dict[str, Any]:
        notices = self.notices.recent(params.get("limit", 20))
        lines = [f"[{n.level.value}] {n.message}" for n in notices] or ["No notices"]
        return {
            "success": True,
            "notices": [n.model_dump(mode="json") for n in notices],
            FORMATTED_OUTPUT: "\n".join(lines),
        }

    # docker_service

    async def handle_service_action(self, action: ServiceAction) -> dict[str, Any]:
        result = await self.runtime.control(action)
        if action is ServiceAction.STATUS:
            installed = "installed" if result["docker_installed"] else "not found"
            version = f" {result['docker_version']}" if result.get("docker_version") else ""
            text = f"Docker{version} {installed}; service {result['service_state']}"
        elif result["success"]:
            text = f"✅ Docker service {action.value} requested; service {result['service_state']}"
        else:
            text = f"❌ {result['error']}"
        result[FORMATTED_OUTPUT] = text
        return result

    # stack_refresh

    async def handle_refresh_action(self, action: RefreshAction) -> dict[str, Any]:
        if action is RefreshAction.PAUSE:
            self.scheduler.set_hidden(True)
        elif action is RefreshAction.RESUME:
            self.scheduler.set_hidden(False)
        elif action is RefreshAction.ACTIVITY:
            self.scheduler.record_activity()

        snapshot = self.scheduler.snapshot()
        state = "paused" if snapshot["hidden"] else ("idle" if snapshot["idle"] else "active")
        text = (
            f"Refresh {state}: reloading '{snapshot['active_view']}' every "
            f"{snapshot['current_interval']:g}s"
        )
        return {"success": True, "action": action.value, **snapshot, FORMATTED_OUTPUT: text}

    # stack_settings

    async def handle_settings_action(
        self, action: SettingsAction, stacks_path: str = "", migrate: bool = False
    ) -> dict[str, Any]:
        if action is SettingsAction.SHOW:
            return {
                "success": True,
                "stacks_path": self.config.stacks_path,
                "config_file": self.config.config_file,
                "update_file": self.config.update_file,
                FORMATTED_OUTPUT: f"Stacks path: {self.config.stacks_path}",
            }

        if not stacks_path:
            return self._error_response("stacks_path is required for set_path action")

        try:
            result = await change_stacks_path(self.config, stacks_path, migrate=migrate)
        except StackMCPError as e:
            return self._error_response(str(e))

        self._close_details()
        await self.registry.reload()
        self.notices.notify(
            Notice(level=NoticeLevel.SUCCESS, message=f"Stacks path changed to {result['stacks_path']}")
        )

        text = f"✅ Stacks path changed from {result['previous_path']} to {result['stacks_path']}"
        if result["migrated"]:
            text += f"; migrated {len(result['migrated'])} stack(s)"
        return {"success": True, **result, FORMATTED_OUTPUT: text}
