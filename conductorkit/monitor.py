"""Background monitoring of running workflows until they reach a terminal state."""

from __future__ import annotations

import enum
import logging
import queue
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = 0.1
TERMINAL_STATES = frozenset({"COMPLETED", "FAILED", "TIMED_OUT", "TERMINATED"})


def _seconds(value: timedelta | float) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def _workflow_field(workflow: Any, key: str, attribute: str) -> Any:
    if isinstance(workflow, Mapping):
        return workflow.get(key)
    return getattr(workflow, attribute, None)


@dataclass
class RunningWorkflow:
    """A workflow that was asked to start.

    ``execution_channel`` receives the finished workflow (followed by ``None``
    once the channel is closed) when monitoring was requested; ``error`` holds
    the exception raised while starting or registering it, if any.
    """

    workflow_id: str
    execution_channel: queue.Queue | None = None
    error: BaseException | None = None


def is_workflow_in_terminal_state(workflow: Any) -> bool:
    """True if the workflow's status is one the server never leaves."""
    status = _workflow_field(workflow, "status", "status")
    if isinstance(status, enum.Enum):
        status = status.value
    return status in TERMINAL_STATES


class WorkflowMonitor:
    """Polls the workflow client and hands finished workflows to their channels.

    The client must provide ``get_execution_status(workflow_id)`` returning the
    workflow (a mapping with ``workflowId`` and ``status``) and raising on failure.
    """

    def __init__(self, workflow_client: Any, refresh_interval: timedelta | float = DEFAULT_REFRESH_INTERVAL) -> None:
        self._workflow_client = workflow_client
        self._refresh_interval = _seconds(refresh_interval)
        self._lock = threading.Lock()
        self._channels: dict[str, queue.Queue] = {}
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def refresh_interval(self) -> float:
        return self._refresh_interval

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def generate_execution_channel(self, workflow_id: str) -> queue.Queue:
        """Register a channel that will receive the workflow once it finishes."""
        channel: queue.Queue = queue.Queue(maxsize=2)
        with self._lock:
            self._channels[workflow_id] = channel
        logger.debug("Added workflow execution channel, workflowId: %s", workflow_id)
        return channel

    def monitor_running_workflows(self) -> None:
        """Check every monitored workflow once and notify the finished ones."""
        for workflow_id, workflow in self._workflows_in_terminal_state():
            self._notify_finished_workflow(workflow_id, workflow)

    def _running_workflow_ids(self) -> list[str]:
        with self._lock:
            return list(self._channels)

    def _workflows_in_terminal_state(self) -> list[tuple[str, Any]]:
        finished = []
        for workflow_id in self._running_workflow_ids():
            try:
                workflow = self._workflow_client.get_execution_status(workflow_id)
            except Exception as exc:
                logger.debug(
                    "Failed to get workflow execution status, reason: %s, workflowId: %s",
                    exc,
                    workflow_id,
                )
                raise
            if is_workflow_in_terminal_state(workflow):
                reported_id = _workflow_field(workflow, "workflowId", "workflow_id")
                finished.append((reported_id or workflow_id, workflow))
        return finished

    def _notify_finished_workflow(self, workflow_id: str, workflow: Any) -> None:
        with self._lock:
            logger.debug("Notifying finished workflowId: %s", workflow_id)
            channel = self._channels.pop(workflow_id, None)
            if channel is None:
                raise KeyError(f"execution channel not found for workflowId: {workflow_id}")
            channel.put(workflow)
            channel.put(None)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.monitor_running_workflows()
            except Exception as exc:
                logger.warning("Failed to monitor running workflows, error: %s", exc)
            if self._stop_event.wait(self._refresh_interval):
                break

    def start(self) -> "WorkflowMonitor":
        """Start the background polling thread; does nothing if already running."""
        if self.is_running:
            return self
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="workflow-monitor", daemon=True)
        self._thread.start()
        return self

    def stop(self) -> None:
        """Stop the background polling thread and wait for it to finish."""
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join()

    def __enter__(self) -> "WorkflowMonitor":
        return self.start()

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()