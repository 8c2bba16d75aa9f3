"""Start, inspect and control workflow executions through server clients."""

from __future__ import annotations

import dataclasses
import enum
import json
import logging
import queue
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping

from conductorkit.monitor import RunningWorkflow, WorkflowMonitor

logger = logging.getLogger(__name__)

COMPLETED_TASK_STATUS = "COMPLETED"
_NOT_FOUND = 404


class ExecutorError(Exception):
    """Raised when a workflow operation cannot be completed."""


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


@dataclass
class StartWorkflowRequest:
    """Request to start a workflow execution."""

    name: str
    version: int | None = None
    correlation_id: str | None = None
    input: dict[str, Any] | None = None
    task_to_domain: dict[str, str] | None = None
    workflow_def: Any = None
    external_input_payload_storage_path: str | None = None
    priority: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Wire form with camelCase keys; unset fields are left out."""
        result = {}
        for item in dataclasses.fields(self):
            value = getattr(self, item.name)
            if value is None:
                continue
            if hasattr(value, "to_dict"):
                value = value.to_dict()
            result[_camel(item.name)] = value
        return result


def _is_not_found(exc: BaseException) -> bool:
    for attribute in ("status", "status_code"):
        if getattr(exc, attribute, None) == _NOT_FOUND:
            return True
    response = getattr(exc, "response", None)
    return getattr(response, "status_code", None) == _NOT_FOUND


def _status_value(status: Any) -> Any:
    return status.value if isinstance(status, enum.Enum) else status


def _to_map(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if hasattr(value, "to_dict"):
        return dict(value.to_dict())
    try:
        parsed = json.loads(json.dumps(value))
    except (TypeError, ValueError) as exc:
        raise TypeError(f"cannot convert {value!r} to a mapping") from exc
    if not isinstance(parsed, dict):
        raise TypeError(f"cannot convert {value!r} to a mapping")
    return parsed


def _task_result_from_output(task_id: str, workflow_instance_id: str, output: Any) -> dict[str, Any]:
    if hasattr(output, "to_dict") and not isinstance(output, Mapping):
        return dict(output.to_dict())
    return {
        "taskId": task_id,
        "workflowInstanceId": workflow_instance_id,
        "outputData": _to_map(output),
        "status": COMPLETED_TASK_STATUS,
    }


def wait_for_workflow_completion_until_timeout(
    execution_channel: queue.Queue, timeout: timedelta | float
) -> Any:
    """Wait on an execution channel for the finished workflow."""
    seconds = timeout.total_seconds() if isinstance(timeout, timedelta) else float(timeout)
    try:
        workflow = execution_channel.get(timeout=max(seconds, 0.0))
    except queue.Empty:
        raise ExecutorError("timeout") from None
    if workflow is None:
        try:
            execution_channel.put_nowait(None)
        except queue.Full:
            pass
        raise ExecutorError("channel closed")
    return workflow


class WorkflowExecutor:
    """Runs workflow operations against the metadata, task and workflow clients.

    Client methods return parsed server responses and raise on failure; an
    exception carrying a 404 status means the resource was not found.
    """

    def __init__(
        self,
        metadata_client: Any,
        task_client: Any,
        workflow_client: Any,
        monitor: WorkflowMonitor | None = None,
    ) -> None:
        self._metadata_client = metadata_client
        self._task_client = task_client
        self._workflow_client = workflow_client
        if monitor is None:
            monitor = WorkflowMonitor(workflow_client).start()
        self._monitor = monitor

    @property
    def monitor(self) -> WorkflowMonitor:
        return self._monitor

    def register_workflow(self, overwrite: bool, workflow_def: Any) -> None:
        """Register a workflow definition, replacing the server's one if overwrite is set."""
        self._metadata_client.register_workflow_def(workflow_def, overwrite=overwrite)

    def monitor_execution(self, workflow_id: str) -> queue.Queue:
        """Channel that receives the workflow once it reaches a terminal state."""
        return self._monitor.generate_execution_channel(workflow_id)

    def start_workflow(self, start_workflow_request: StartWorkflowRequest) -> str:
        """Start a workflow and return its id."""
        return self._workflow_client.start_workflow(start_workflow_request.to_dict())

    def _execute_workflow(self, request: StartWorkflowRequest) -> str:
        body = dataclasses.replace(request, workflow_def=None).to_dict()
        try:
            workflow_id = self._workflow_client.start_workflow(body)
        except Exception as exc:
            logger.debug(
                "Failed to start workflow, reason: %s, name: %s, version: %s",
                exc,
                request.name,
                request.version,
            )
            raise
        logger.debug("Started workflow, workflowId: %s, name: %s", workflow_id, request.name)
        return workflow_id

    def _start_one(self, monitor_execution: bool, request: StartWorkflowRequest) -> RunningWorkflow:
        try:
            workflow_id = self._execute_workflow(request)
        except Exception as exc:
            return RunningWorkflow("", None, exc)
        if not monitor_execution:
            return RunningWorkflow(workflow_id)
        try:
            channel = self._monitor.generate_execution_channel(workflow_id)
        except Exception as exc:
            return RunningWorkflow(workflow_id, None, exc)
        return RunningWorkflow(workflow_id, channel)

    def start_workflows(self, monitor_execution: bool, *args: StartWorkflowRequest) -> list[RunningWorkflow]:
        """Start workflows in parallel; results come back in request order."""
        if not args:
            return []
        logger.debug("Starting %d workflows", len(args))
        with ThreadPoolExecutor(max_workers=len(args)) as pool:
            started = list(pool.map(lambda request: self._start_one(monitor_execution, request), args))
        logger.debug("Started %d workflows", len(args))
        return started

    def get_workflow(self, workflow_id: str, include_tasks: bool) -> Any:
        """The workflow execution, or None if there is no such workflow."""
        try:
            return self._workflow_client.get_execution_status(workflow_id, include_tasks=include_tasks)
        except Exception as exc:
            if _is_not_found(exc):
                return None
            raise

    def get_workflow_status(self, workflow_id: str, include_output: bool, include_variables: bool) -> Any:
        """Lightweight overall state of the workflow, or None if not found."""
        try:
            return self._workflow_client.get_workflow_state(
                workflow_id,
                include_output=include_output,
                include_variables=include_variables,
            )
        except Exception as exc:
            if _is_not_found(exc):
                return None
            raise

    def get_by_correlation_ids(
        self, workflow_name: str, include_closed: bool, include_tasks: bool, *args: str
    ) -> dict[str, list[Any]]:
        """Workflows grouped by correlation id."""
        return self._workflow_client.get_workflows(
            workflow_name,
            list(args),
            include_closed=include_closed,
            include_tasks=include_tasks,
        )

    def search(self, start: int, size: int, query: str, free_text: str) -> list[Any]:
        """Workflow summaries matching the query and free-text search."""
        result = self._workflow_client.search(start=start, size=size, query=query, free_text=free_text)
        if isinstance(result, Mapping):
            return list(result.get("results") or [])
        return list(getattr(result, "results", None) or [])

    def pause(self, workflow_id: str) -> None:
        self._workflow_client.pause_workflow(workflow_id)

    def resume(self, workflow_id: str) -> None:
        self._workflow_client.resume_workflow(workflow_id)

    def terminate(self, workflow_id: str, reason: str) -> None:
        self._workflow_client.terminate(workflow_id, reason=reason)

    def restart(self, workflow_id: str, use_latest_definition: bool) -> None:
        self._workflow_client.restart(workflow_id, use_latest_definitions=use_latest_definition)

    def retry(self, workflow_id: str, resume_subworkflow_tasks: bool) -> None:
        """Retry a failed workflow from its last failed task; failures are only logged."""
        try:
            self._workflow_client.retry(workflow_id, resume_subworkflow_tasks=resume_subworkflow_tasks)
        except Exception as exc:
            logger.warning("Failed to retry workflow %s: %s", workflow_id, exc)

    def rerun(self, workflow_id: str, rerun_request: Any) -> str:
        """Re-run a workflow from a given task; returns the workflow id."""
        return self._workflow_client.rerun(workflow_id, rerun_request)

    def skip_task_from_workflow(self, workflow_id: str, task_reference_name: str, skip_task_request: Any) -> None:
        self._workflow_client.skip_task_from_workflow(workflow_id, task_reference_name, skip_task_request)

    def update_task(self, task_id: str, workflow_instance_id: str, status: Any, output: Any) -> None:
        """Update a task's status and output; failures of the update call are only logged."""
        task_result = _task_result_from_output(task_id, workflow_instance_id, output)
        task_result["status"] = _status_value(status)
        try:
            self._task_client.update_task(task_result)
        except Exception as exc:
            logger.warning("Failed to update task %s: %s", task_id, exc)

    def update_task_by_ref_name(self, task_ref_name: str, workflow_instance_id: str, status: Any, output: Any) -> None:
        output_data = _to_map(output)
        self._task_client.update_task_by_ref_name(
            output_data, workflow_instance_id, task_ref_name, _status_value(status)
        )

    def get_task(self, task_id: str) -> Any:
        """The task, or None if there is no such task."""
        try:
            return self._task_client.get_task(task_id)
        except Exception as exc:
            if _is_not_found(exc):
                return None
            raise