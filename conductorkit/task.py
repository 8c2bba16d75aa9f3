"""Workflow task builders and their workflow-task representation."""

from __future__ import annotations

import enum
from datetime import timedelta
from typing import Any, Mapping

JAVASCRIPT_EVALUATOR = "javascript"
DYNAMIC_TASK_NAME_PARAMETER = "taskToExecute"
SQS_EVENT_PREFIX = "sqs"
CONDUCTOR_EVENT_PREFIX = "conductor"

_NANOS_PER_SECOND = 10**9


class TaskType(str, enum.Enum):
    """Kinds of tasks understood by the workflow server."""

    SIMPLE = "SIMPLE"
    DYNAMIC = "DYNAMIC"
    FORK_JOIN = "FORK_JOIN"
    FORK_JOIN_DYNAMIC = "FORK_JOIN_DYNAMIC"
    SWITCH = "SWITCH"
    JOIN = "JOIN"
    DO_WHILE = "DO_WHILE"
    SUB_WORKFLOW = "SUB_WORKFLOW"
    START_WORKFLOW = "START_WORKFLOW"
    EVENT = "EVENT"
    WAIT = "WAIT"
    HUMAN = "HUMAN"
    HTTP = "HTTP"
    INLINE = "INLINE"
    TERMINATE = "TERMINATE"
    KAFKA_PUBLISH = "KAFKA_PUBLISH"
    JSON_JQ_TRANSFORM = "JSON_JQ_TRANSFORM"
    SET_VARIABLE = "SET_VARIABLE"


class Task:
    """Base task with a fluent interface; every setter returns the task itself."""

    def __init__(
        self,
        name: str,
        task_reference_name: str,
        task_type: TaskType,
        input_parameters: Mapping[str, Any] | None = None,
    ) -> None:
        self._name = name
        self._task_reference_name = task_reference_name
        self._task_type = TaskType(task_type)
        self._description = ""
        self._optional = False
        self._input_parameters: dict[str, Any] = dict(input_parameters or {})

    @property
    def task_name(self) -> str:
        return self._name

    @property
    def task_type(self) -> TaskType:
        return self._task_type

    @property
    def input_parameters(self) -> dict[str, Any]:
        """The live input parameter mapping of this task."""
        return self._input_parameters

    @property
    def is_optional(self) -> bool:
        return self._optional

    def to_workflow_task(self) -> list[dict[str, Any]]:
        """Return the workflow tasks this task expands to."""
        return [
            {
                "name": self._name,
                "taskReferenceName": self._task_reference_name,
                "description": self._description,
                "inputParameters": dict(self._input_parameters),
                "optional": self._optional,
                "type": self._task_type.value,
            }
        ]

    def to_task_def(self) -> dict[str, Any]:
        return {"name": self._name, "description": self._description}

    def reference_name(self) -> str:
        return self._task_reference_name

    def output_ref(self, path: str = "") -> str:
        """Expression referring to this task's output, or to one path of it."""
        if not path:
            return f"${{{self._task_reference_name}.output}}"
        return f"${{{self._task_reference_name}.output.{path}}}"

    def input(self, key: str, value: Any) -> "Task":
        self._input_parameters[key] = value
        return self

    def input_map(self, input_map: Mapping[str, Any]) -> "Task":
        self._input_parameters.update(input_map)
        return self

    def description(self, description: str) -> "Task":
        self._description = description
        return self

    def optional(self, optional: bool) -> "Task":
        """If true, a failure of this task does not fail the workflow."""
        self._optional = optional
        return self

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self._name!r}, "
            f"reference={self._task_reference_name!r}, type={self._task_type.value})"
        )


class SimpleTask(Task):
    """A task executed by a worker polling for the task definition name."""

    def __init__(self, task_def_name: str, task_ref_name: str) -> None:
        super().__init__(task_def_name, task_ref_name, TaskType.SIMPLE)


class DynamicTask(Task):
    """A task whose concrete type is resolved at runtime from an input expression."""

    def __init__(self, task_ref_name: str, task_name_parameter: str) -> None:
        super().__init__(
            task_ref_name,
            task_ref_name,
            TaskType.DYNAMIC,
            {DYNAMIC_TASK_NAME_PARAMETER: task_name_parameter},
        )

    def to_workflow_task(self) -> list[dict[str, Any]]:
        workflow_tasks = super().to_workflow_task()
        workflow_tasks[0]["dynamicTaskNameParam"] = DYNAMIC_TASK_NAME_PARAMETER
        return workflow_tasks


class EventTask(Task):
    """Publishes an event to an external queue such as SQS or the conductor bus."""

    def __init__(self, task_ref_name: str, event_prefix: str, event_suffix: str) -> None:
        super().__init__(task_ref_name, task_ref_name, TaskType.EVENT)
        self._sink = f"{event_prefix}:{event_suffix}"

    @property
    def sink(self) -> str:
        return self._sink

    def to_workflow_task(self) -> list[dict[str, Any]]:
        workflow_tasks = super().to_workflow_task()
        workflow_tasks[0]["sink"] = self._sink
        return workflow_tasks


def sqs_event_task(task_ref_name: str, queue_name: str) -> EventTask:
    return EventTask(task_ref_name, SQS_EVENT_PREFIX, queue_name)


def conductor_event_task(task_ref_name: str, event_name: str) -> EventTask:
    return EventTask(task_ref_name, CONDUCTOR_EVENT_PREFIX, event_name)


class HumanTask(Task):
    def __init__(self, task_ref_name: str) -> None:
        super().__init__(task_ref_name, task_ref_name, TaskType.HUMAN)


class InlineTask(Task):
    """Evaluates a JavaScript expression on the server."""

    def __init__(self, name: str, script: str) -> None:
        super().__init__(
            name,
            name,
            TaskType.INLINE,
            {"evaluatorType": JAVASCRIPT_EVALUATOR, "expression": script},
        )


class JQTask(Task):
    """Transforms JSON input with a jq query expression."""

    def __init__(self, name: str, script: str) -> None:
        super().__init__(name, name, TaskType.JSON_JQ_TRANSFORM, {"queryExpression": script})


class SetVariableTask(Task):
    def __init__(self, task_ref_name: str) -> None:
        super().__init__(task_ref_name, task_ref_name, TaskType.SET_VARIABLE)


class TerminateTask(Task):
    """Ends the workflow with the given status and reason."""

    def __init__(self, task_ref_name: str, status: Any, termination_reason: str) -> None:
        status_value = status.value if isinstance(status, enum.Enum) else status
        super().__init__(
            task_ref_name,
            task_ref_name,
            TaskType.TERMINATE,
            {"terminationStatus": status_value, "terminationReason": termination_reason},
        )


class WaitTask(Task):
    """Waits until an external event or a timeout occurs."""

    def __init__(self, task_ref_name: str) -> None:
        super().__init__(task_ref_name, task_ref_name, TaskType.WAIT)


def wait_for_duration_task(task_ref_name: str, duration: timedelta | float) -> WaitTask:
    task = WaitTask(task_ref_name)
    task.input("duration", format_duration(duration))
    return task


def wait_until_task(task_ref_name: str, date_time: str) -> WaitTask:
    task = WaitTask(task_ref_name)
    task.input("until", date_time)
    return task


def _to_nanoseconds(duration: timedelta | float) -> int:
    if isinstance(duration, timedelta):
        seconds = duration.days * 86400 + duration.seconds
        return seconds * _NANOS_PER_SECOND + duration.microseconds * 1000
    if isinstance(duration, bool) or not isinstance(duration, (int, float)):
        raise TypeError(f"duration must be a timedelta or a number of seconds, not {duration!r}")
    if isinstance(duration, int):
        return duration * _NANOS_PER_SECOND
    return round(duration * _NANOS_PER_SECOND)


def _fraction(value: int, digits: int) -> str:
    whole, rest = divmod(value, 10**digits)
    frac = str(rest).rjust(digits, "0").rstrip("0")
    return f"{whole}.{frac}" if frac else str(whole)


def format_duration(duration: timedelta | float) -> str:
    """Render a duration (timedelta or seconds) as e.g. ``1h2m3.5s`` or ``250ms``."""
    nanos = _to_nanoseconds(duration)
    if nanos == 0:
        return "0s"
    sign = "-" if nanos < 0 else ""
    nanos = abs(nanos)
    if nanos < _NANOS_PER_SECOND:
        if nanos < 1000:
            return f"{sign}{nanos}ns"
        if nanos < 10**6:
            return f"{sign}{_fraction(nanos, 3)}µs"
        return f"{sign}{_fraction(nanos, 6)}ms"
    total_seconds = nanos // _NANOS_PER_SECOND
    hours, remainder = divmod(total_seconds, 3600)
    minutes = remainder // 60
    text = f"{_fraction(nanos % (60 * _NANOS_PER_SECOND), 9)}s"
    if total_seconds >= 60:
        text = f"{minutes}m{text}"
    if total_seconds >= 3600:
        text = f"{hours}h{text}"
    return sign + text