"""Fluent builder for workflow definitions and their execution."""

from __future__ import annotations

import dataclasses
import enum
import json
import logging
import queue
from typing import Any, Mapping

from conductorkit.executor import ExecutorError, StartWorkflowRequest, WorkflowExecutor
from conductorkit.task import Task

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2


class TimeoutPolicy(str, enum.Enum):
    TIME_OUT_WORKFLOW = "TIME_OUT_WF"
    ALERT_ONLY = "ALERT_ONLY"


def input_as_map(value: Any) -> dict[str, Any] | None:
    """Convert workflow input to a JSON-style mapping; None if it cannot be."""
    if value is None:
        return None
    if isinstance(value, dict):
        return value
    if isinstance(value, Mapping):
        return dict(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        candidate: Any = dataclasses.asdict(value)
    elif hasattr(value, "to_dict"):
        candidate = value.to_dict()
    elif hasattr(value, "__dict__") and not isinstance(value, type):
        candidate = {k: v for k, v in vars(value).items() if not k.startswith("_")}
    else:
        candidate = value
    try:
        parsed = json.loads(json.dumps(candidate))
    except (TypeError, ValueError) as exc:
        logger.debug("Failed to parse input, reason: %s", exc)
        return None
    return parsed if isinstance(parsed, dict) else None


class ConductorWorkflow:
    """A workflow definition built task by task; setters return the workflow."""

    def __init__(self, executor: WorkflowExecutor | None = None) -> None:
        self._executor = executor
        self._name = ""
        self._version = 0
        self._description = ""
        self._owner_email = ""
        self._tasks: list[Task] = []
        self._timeout_policy = TimeoutPolicy.ALERT_ONLY
        self._timeout_seconds = 0
        self._failure_workflow = ""
        self._input_parameters: list[str] = []
        self._output_parameters: dict[str, Any] | None = None
        self._input_template: dict[str, Any] | None = None
        self._variables: dict[str, Any] | None = None
        self._restartable = True

    def name(self, name: str) -> "ConductorWorkflow":
        self._name = name
        return self

    def version(self, version: int) -> "ConductorWorkflow":
        self._version = version
        return self

    def description(self, description: str) -> "ConductorWorkflow":
        self._description = description
        return self

    def timeout_policy(self, timeout_policy: TimeoutPolicy | str, timeout_seconds: int) -> "ConductorWorkflow":
        self._timeout_policy = TimeoutPolicy(timeout_policy)
        self._timeout_seconds = timeout_seconds
        return self

    def timeout_seconds(self, timeout_seconds: int) -> "ConductorWorkflow":
        self._timeout_seconds = timeout_seconds
        return self

    def failure_workflow(self, failure_workflow: str) -> "ConductorWorkflow":
        """Workflow to run when this one fails, e.g. for compensation logic."""
        self._failure_workflow = failure_workflow
        return self

    def restartable(self, restartable: bool) -> "ConductorWorkflow":
        """Whether the workflow may be restarted after reaching a terminal state."""
        self._restartable = restartable
        return self

    def output_parameters(self, output_parameters: Any) -> "ConductorWorkflow":
        self._output_parameters = input_as_map(output_parameters)
        return self

    def input_template(self, input_template: Any) -> "ConductorWorkflow":
        self._input_template = input_as_map(input_template)
        return self

    def variables(self, variables: Any) -> "ConductorWorkflow":
        self._variables = input_as_map(variables)
        return self

    def input_parameters(self, *args: str) -> "ConductorWorkflow":
        """Names of the workflow inputs; for documentation only."""
        self._input_parameters = list(args)
        return self

    def owner_email(self, owner_email: str) -> "ConductorWorkflow":
        self._owner_email = owner_email
        return self

    def workflow_name(self) -> str:
        return self._name

    def workflow_version(self) -> int:
        return self._version

    def add(self, task: Task) -> "ConductorWorkflow":
        self._tasks.append(task)
        return self

    def _require_executor(self) -> WorkflowExecutor:
        if self._executor is None:
            raise ExecutorError("no workflow executor configured")
        return self._executor

    def register(self, overwrite: bool) -> None:
        """Register the definition on the server, replacing it if overwrite is set."""
        self._require_executor().register_workflow(overwrite, self.to_workflow_def())

    def start_workflow_with_input(self, input: Any) -> str:
        """Start an execution with the given input; returns the workflow id."""
        request = StartWorkflowRequest(
            name=self._name,
            version=self._version,
            input=input_as_map(input),
            workflow_def=self.to_workflow_def(),
        )
        return self._require_executor().start_workflow(request)

    def start_workflow(self, start_workflow_request: StartWorkflowRequest) -> str:
        """Start an execution of this definition; returns the workflow id."""
        executor = self._require_executor()
        start_workflow_request.workflow_def = self.to_workflow_def()
        return executor.start_workflow(start_workflow_request)

    def start_workflow_and_monitor_execution(self, start_workflow_request: StartWorkflowRequest) -> queue.Queue:
        """Start an execution and return the channel receiving it once finished."""
        workflow_id = self.start_workflow(start_workflow_request)
        return self._require_executor().monitor_execution(workflow_id)

    def to_workflow_def(self) -> dict[str, Any]:
        """The JSON-serialisable workflow definition."""
        definition: dict[str, Any] = {
            "name": self._name,
            "description": self._description,
            "version": self._version,
            "tasks": [wt for task in self._tasks for wt in task.to_workflow_task()],
            "inputParameters": list(self._input_parameters),
            "failureWorkflow": self._failure_workflow,
            "schemaVersion": SCHEMA_VERSION,
            "ownerEmail": self._owner_email,
            "timeoutPolicy": self._timeout_policy.value,
            "timeoutSeconds": self._timeout_seconds,
            "restartable": self._restartable,
        }
        optional_maps = (
            ("outputParameters", self._output_parameters),
            ("variables", self._variables),
            ("inputTemplate", self._input_template),
        )
        definition.update((key, value) for key, value in optional_maps if value is not None)
        return definition