"""Tests for Stack MCP Pydantic models."""

import pytest
from pydantic import ValidationError

from stack_mcp.models.enums import (
    OperationState,
    OperationType,
    ProgressKind,
    ServiceAction,
    StackAction,
    StackStatus,
)
from stack_mcp.models.operation import Operation, OperationResult, ProgressEvent
from stack_mcp.models.params import DockerServiceParams, DockerStacksParams, StackSettingsParams
from stack_mcp.models.stack import ContainerSnapshot, PortMapping, Stack, parse_uptime_seconds
from stack_mcp.models.update import ImageDigests, UpdateCheckRecord


def _stack(containers=None, **kwargs) -> Stack:
    return Stack(name="app", path="/opt/stacks/app", containers=containers, **kwargs)


def _container(name: str, state: str = "running", status: str = "Up 2 hours") -> ContainerSnapshot:
    return ContainerSnapshot(name=name, state=state, status_text=status)


class TestStackStatus:
    """Status and uptime are derived together from the container snapshot."""

    def test_unknown_before_query(self):
        """A stack that was never queried has unknown status."""
        stack = _stack()
        assert stack.status is StackStatus.UNKNOWN
        assert stack.uptime == "N/A"

    def test_no_containers_is_stopped(self):
        stack = _stack(containers=[])
        assert stack.status is StackStatus.STOPPED
        assert stack.uptime == "N/A"

    def test_all_running(self):
        """Uptime comes from the longest-running container."""
        stack = _stack(
            containers=[
                _container("app-web-1", status="Up 5 minutes"),
                _container("app-db-1", status="Up 3 days"),
            ]
        )
        assert stack.status is StackStatus.RUNNING
        assert stack.uptime == "3 days"
        assert stack.running_count == 2

    def test_partial(self):
        stack = _stack(
            containers=[
                _container("app-web-1", status="Up About an hour"),
                _container("app-db-1", state="exited", status="Exited (1) 2 minutes ago"),
            ]
        )
        assert stack.status is StackStatus.PARTIAL
        assert stack.uptime == "About an hour"
        assert stack.running_count == 1

    def test_all_exited(self):
        stack = _stack(containers=[_container("app-web-1", state="exited", status="Exited (0) 1 hour ago")])
        assert stack.status is StackStatus.STOPPED
        assert stack.uptime == "Stopped"

    def test_config_error_wins(self):
        """An unreadable compose file marks the stack as errored."""
        stack = _stack(containers=[_container("app-web-1")], has_config_error=True)
        assert stack.status is StackStatus.ERROR
        assert stack.uptime == "N/A"

    def test_query_failure_is_error(self):
        assert _stack(query_failed=True).status is StackStatus.ERROR

    def test_status_cannot_be_assigned(self):
        """Stacks are frozen; a refresh builds a new instance."""
        stack = _stack(containers=[])
        with pytest.raises(ValidationError):
            stack.name = "other"

    def test_summary(self):
        stack = _stack(
            containers=[_container("app-web-1")],
            ports=[PortMapping(host="8080", container="80")],
            images=["nginx:alpine"],
        )
        summary = stack.summary(has_update=True)

        assert summary["status"] == "running"
        assert summary["ports"] == ["8080:80"]
        assert summary["has_update"] is True
        assert summary["containers"] == 1

    def test_dump_includes_derived_fields(self):
        """model_dump carries the computed status and drops None fields."""
        data = _stack(containers=[]).model_dump(mode="json")
        assert data["status"] == "stopped"
        assert "compose_file" not in data


class TestParseUptimeSeconds:
    @pytest.mark.parametrize(
        "status,expected",
        [
            ("Up 2 hours", 7200),
            ("Up About an hour", 3600),
            ("Up 3 days", 259200),
            ("Up 45 seconds", 45),
            ("Up Less than a second", 0),
            ("Up 2 weeks (healthy)", 1209600),
            ("Exited (0) 5 minutes ago", 0),
        ],
    )
    def test_parse(self, status, expected):
        assert parse_uptime_seconds(status) == expected


class TestPortMapping:
    def test_ip_bound_host_port(self):
        """Host ports bound to an address keep the address."""
        mapping = PortMapping(host="127.0.0.1:8080", container="80")
        assert mapping.host == "127.0.0.1:8080"

    @pytest.mark.parametrize("host", ["0", "70000", "http"])
    def test_invalid_port(self, host):
        with pytest.raises(ValidationError):
            PortMapping(host=host, container="80")


class TestOperationModels:
    def test_dedup_key(self):
        operation = Operation(type=OperationType.UPDATE, target="web")
        assert operation.dedup_key == "update:web"

    def test_result_success_follows_state(self):
        result = OperationResult(
            operation=OperationType.START,
            stack_name="web",
            state=OperationState.SUCCEEDED,
            message="ok",
        )
        assert result.success
        assert not result.model_copy(update={"state": OperationState.FAILED}).success

    def test_progress_event_error_flag(self):
        assert ProgressEvent(kind=ProgressKind.ERROR, message="boom").is_error
        assert not ProgressEvent(kind=ProgressKind.STATUS, message="ok").is_error


class TestUpdateModels:
    def test_record_document_uses_persisted_names(self):
        """The record serializes to lastCheck / hasUpdates."""
        record = UpdateCheckRecord.from_flags(1700000000000, {"web": True, "db": False})
        assert record.to_document() == {
            "lastCheck": 1700000000000,
            "updates": {"web": {"hasUpdates": True}, "db": {"hasUpdates": False}},
        }
        assert UpdateCheckRecord.model_validate(record.to_document()).flags() == {"web": True, "db": False}

    @pytest.mark.parametrize(
        "local,remote,expected",
        [
            ("sha256:a", "sha256:b", True),
            ("sha256:a", "sha256:a", False),
            (None, "sha256:b", False),
            ("sha256:a", None, False),
        ],
    )
    def test_image_has_update(self, local, remote, expected):
        """Only two known and differing digests mean an update."""
        assert ImageDigests(image="nginx", local=local, remote=remote).has_update is expected


class TestParams:
    """Tool parameter validation."""

    def test_defaults(self):
        params = DockerStacksParams()
        assert params.action is StackAction.LIST
        assert params.lines is None
        assert params.confirm is False

    @pytest.mark.parametrize("action", ["update_all", "UPDATE_ALL", "StackAction.UPDATE_ALL"])
    def test_action_spellings(self, action):
        assert DockerStacksParams(action=action).action is StackAction.UPDATE_ALL

    def test_unknown_action(self):
        with pytest.raises(ValidationError):
            DockerStacksParams(action="explode")

    @pytest.mark.parametrize("name", ["-web", "web/../etc", "a b", "x" * 129])
    def test_invalid_stack_names(self, name):
        with pytest.raises(ValidationError):
            DockerStacksParams(action="view", stack_name=name)

    def test_valid_stack_name(self):
        assert DockerStacksParams(action="view", stack_name="my_app.v2-1").stack_name == "my_app.v2-1"

    def test_env_content_lines(self):
        """Comments and blanks are allowed; other lines need KEY=value."""
        assert DockerStacksParams(env_content="# comment\n\nA=1\nB=").env_content
        with pytest.raises(ValidationError, match="line 2"):
            DockerStacksParams(env_content="A=1\nbroken")

    @pytest.mark.parametrize("lines", [0, 10001])
    def test_lines_bounds(self, lines):
        with pytest.raises(ValidationError):
            DockerStacksParams(lines=lines)

    def test_service_and_settings_defaults(self):
        assert DockerServiceParams().action is ServiceAction.STATUS
        assert DockerServiceParams(action="restart").action is ServiceAction.RESTART
        assert StackSettingsParams(action="set_path", stacks_path="/srv/stacks").stacks_path == "/srv/stacks"
