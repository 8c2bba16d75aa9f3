"""Polls the server for tasks and runs them on worker functions."""

from __future__ import annotations

import dataclasses
import enum
import json
import logging
import socket
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Mapping

logger = logging.getLogger(__name__)

TASK_UPDATE_RETRY_ATTEMPTS_LIMIT = 3
BATCH_POLL_ERROR_RETRY_INTERVAL = 0.1
BATCH_POLL_NO_AVAILABLE_WORKER_RETRY_INTERVAL = 0.001

COMPLETED = "COMPLETED"
FAILED = "FAILED"

ExecuteFunction = Callable[[Any], Any]


class TaskRunnerError(Exception):
    """Raised when a worker operation cannot be carried out."""


def _seconds(value: timedelta | float) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def _task_field(task: Any, key: str, attribute: str) -> Any:
    if isinstance(task, Mapping):
        return task.get(key)
    return getattr(task, attribute, None)


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


@dataclass
class TaskResult:
    """Outcome of a task execution, sent back to the server."""

    task_id: str
    workflow_instance_id: str
    status: str = COMPLETED
    output_data: dict[str, Any] = field(default_factory=dict)
    reason_for_incompletion: str = ""
    worker_id: str = ""
    logs: list[Any] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Wire form with camelCase keys; empty optional fields are left out."""
        status = self.status.value if isinstance(self.status, enum.Enum) else self.status
        result: dict[str, Any] = {
            "taskId": self.task_id,
            "workflowInstanceId": self.workflow_instance_id,
            "status": status,
            "outputData": dict(self.output_data),
        }
        if self.reason_for_incompletion:
            result["reasonForIncompletion"] = self.reason_for_incompletion
        if self.worker_id:
            result["workerId"] = self.worker_id
        if self.logs:
            result["logs"] = list(self.logs)
        return result


def task_result_from_output(task: Any, output: Any) -> TaskResult:
    """Result of a worker's return value: kept if already a TaskResult, else completed with it as output."""
    if isinstance(output, TaskResult):
        return output
    return TaskResult(
        task_id=_task_field(task, "taskId", "task_id") or "",
        workflow_instance_id=_task_field(task, "workflowInstanceId", "workflow_instance_id") or "",
        status=COMPLETED,
        output_data=_to_map(output),
    )


def task_result_from_error(task: Any, error: BaseException) -> TaskResult:
    """A failed result carrying the error as the reason."""
    return TaskResult(
        task_id=_task_field(task, "taskId", "task_id") or "",
        workflow_instance_id=_task_field(task, "workflowInstanceId", "workflow_instance_id") or "",
        status=FAILED,
        reason_for_incompletion=str(error),
    )


class TaskRunner:
    """Polls for tasks by name and executes each one in its own thread.

    The task client must provide ``batch_poll(task_name, worker_id=, count=,
    timeout=, domain=)`` returning a list of tasks (or None when there are none)
    and ``update_task(task_result_dict)``; both raise on failure.
    """

    update_retry_delay = 1.0
    poll_error_retry_interval = BATCH_POLL_ERROR_RETRY_INTERVAL
    no_available_worker_retry_interval = BATCH_POLL_NO_AVAILABLE_WORKER_RETRY_INTERVAL

    def __init__(self, task_client: Any, worker_id: str | None = None) -> None:
        self._task_client = task_client
        self._worker_id = worker_id if worker_id is not None else socket.gethostname()
        self._batch_size_lock = threading.RLock()
        self._batch_size_by_task: dict[str, int] = {}
        self._running_lock = threading.Lock()
        self._running_by_task: dict[str, int] = {}
        self._poll_interval_lock = threading.Lock()
        self._poll_interval_by_task: dict[str, float] = {}
        self._threads_lock = threading.Lock()
        self._poll_threads: list[threading.Thread] = []

    @property
    def worker_id(self) -> str:
        return self._worker_id

    def start_worker(
        self,
        task_name: str,
        execute_function: ExecuteFunction,
        batch_size: int,
        poll_interval: timedelta | float,
        domain: str = "",
    ) -> None:
        """Add batch_size workers for task_name, starting its poller if none was running."""
        self.set_poll_interval_for_task(task_name, poll_interval)
        with self._batch_size_lock:
            previous = self._batch_size_by_task.get(task_name, 0)
            self._batch_size_by_task[task_name] = previous + batch_size
        logger.debug("Increased max allowed workers of task: %s, by: %d", task_name, batch_size)
        if previous < 1:
            thread = threading.Thread(
                target=self._poll_and_execute,
                args=(task_name, execute_function, domain),
                name=f"poller-{task_name}",
                daemon=True,
            )
            with self._threads_lock:
                self._poll_threads.append(thread)
            thread.start()
        logger.info(
            "Started %d worker(s) for taskName %s, polling in interval of %d ms",
            batch_size,
            task_name,
            int(_seconds(poll_interval) * 1000),
        )

    def set_batch_size(self, task_name: str, batch_size: int) -> None:
        if batch_size < 0:
            raise TaskRunnerError("batchSize can not be negative")
        with self._batch_size_lock:
            self._require_alive(task_name)
            previous = self._batch_size_by_task.get(task_name, 0)
            self._batch_size_by_task[task_name] = batch_size
        logger.debug("Set batchSize for task: %s, from: %d, to: %d", task_name, previous, batch_size)
        if batch_size == 0:
            logger.info("Stopped worker for task: %s", task_name)
        elif previous == 0:
            logger.info("Started worker for task: %s", task_name)

    def increase_batch_size(self, task_name: str, batch_size: int) -> None:
        if batch_size < 1:
            raise TaskRunnerError("batchSize value must be positive")
        with self._batch_size_lock:
            self._require_alive(task_name)
            previous = self._batch_size_by_task.get(task_name, 0)
            self._batch_size_by_task[task_name] = previous + batch_size
        logger.debug(
            "Increased batchSize for task: %s, from: %d, to: %d", task_name, previous, previous + batch_size
        )

    def decrease_batch_size(self, task_name: str, batch_size: int) -> None:
        if batch_size < 1:
            raise TaskRunnerError("batchSize value must be positive")
        with self._batch_size_lock:
            self._require_alive(task_name)
            previous = self._batch_size_by_task.get(task_name, 0)
            updated = max(previous - batch_size, 0)
            self._batch_size_by_task[task_name] = updated
        logger.debug("Decreased batchSize for task: %s, from: %d, to: %d", task_name, previous, updated)
        if updated == 0:
            logger.info("Stopped worker for task: %s", task_name)

    def wait_workers(self, timeout: timedelta | float | None = None) -> bool:
        """Wait for all pollers to stop; False if the timeout ran out first."""
        deadline = None if timeout is None else time.monotonic() + _seconds(timeout)
        with self._threads_lock:
            threads = list(self._poll_threads)
        for thread in threads:
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            thread.join(remaining)
        finished = not any(thread.is_alive() for thread in threads)
        if finished:
            with self._threads_lock:
                self._poll_threads = [t for t in self._poll_threads if t.is_alive()]
        return finished

    def set_poll_interval_for_task(self, task_name: str, poll_interval: timedelta | float) -> None:
        seconds = _seconds(poll_interval)
        with self._poll_interval_lock:
            self._poll_interval_by_task[task_name] = seconds
        logger.debug("Updated poll interval for task: %s, to: %d ms", task_name, int(seconds * 1000))

    def get_poll_interval_for_task(self, task_name: str) -> float:
        """The poll interval in seconds."""
        with self._poll_interval_lock:
            try:
                return self._poll_interval_by_task[task_name]
            except KeyError:
                raise TaskRunnerError(f"poll interval not registered for task: {task_name}") from None

    def get_batch_size_for_all(self) -> dict[str, int]:
        with self._batch_size_lock:
            return dict(self._batch_size_by_task)

    def get_batch_size_for_task(self, task_name: str) -> int:
        with self._batch_size_lock:
            return self._batch_size_by_task.get(task_name, 0)

    def _require_alive(self, task_name: str) -> None:
        if not self._is_worker_alive(task_name):
            raise TaskRunnerError(f"no worker registered for taskName: {task_name}")

    def _is_worker_alive(self, task_name: str) -> bool:
        with self._batch_size_lock:
            return self._batch_size_by_task.get(task_name, 0) > 0

    def _available_workers(self, task_name: str) -> int:
        allowed = self.get_batch_size_for_task(task_name)
        with self._running_lock:
            running = self._running_by_task.get(task_name, 0)
        return allowed - running

    def _change_running(self, task_name: str, amount: int) -> None:
        with self._running_lock:
            self._running_by_task[task_name] = self._running_by_task.get(task_name, 0) + amount

    def _poll_and_execute(self, task_name: str, execute_function: ExecuteFunction, domain: str) -> None:
        while self._is_worker_alive(task_name):
            try:
                self._run_batch(task_name, execute_function, domain)
            except Exception as exc:
                logger.error(
                    "Failed to poll and execute, reason: %s, taskName: %s, domain: %s",
                    exc,
                    task_name,
                    domain,
                )

    def _run_batch(self, task_name: str, execute_function: ExecuteFunction, domain: str) -> None:
        batch_size = self._available_workers(task_name)
        if batch_size < 1:
            time.sleep(self.no_available_worker_retry_interval)
            return
        try:
            tasks = self._batch_poll(task_name, batch_size, domain)
        except Exception:
            time.sleep(self.poll_error_retry_interval)
            raise
        if not tasks:
            logger.debug("No tasks available for: %s", task_name)
            time.sleep(self.get_poll_interval_for_task(task_name))
            return
        self._change_running(task_name, len(tasks))
        for task in tasks:
            threading.Thread(
                target=self._execute_and_update_task,
                args=(task_name, task, execute_function),
                daemon=True,
            ).start()

    def _batch_poll(self, task_name: str, count: int, domain: str) -> list[Any]:
        timeout = self.get_poll_interval_for_task(task_name)
        logger.debug("Polling for task: %s, in batches of size: %d", task_name, count)
        tasks = self._task_client.batch_poll(
            task_name,
            worker_id=self._worker_id,
            count=count,
            timeout=int(timeout * 1000),
            domain=domain or None,
        )
        tasks = list(tasks or [])
        logger.debug("Polled %d tasks for taskName: %s", len(tasks), task_name)
        return tasks

    def _execute_and_update_task(self, task_name: str, task: Any, execute_function: ExecuteFunction) -> None:
        try:
            task_result = self._execute_task(task, execute_function)
            self._update_task_with_retry(task_name, task_result)
        except Exception as exc:
            logger.error("Failed to execute and update task %s: %s", task_name, exc)
        finally:
            self._change_running(task_name, -1)

    @staticmethod
    def _execute_task(task: Any, execute_function: ExecuteFunction) -> TaskResult:
        try:
            output = execute_function(task)
            return task_result_from_output(task, output)
        except Exception as exc:
            return task_result_from_error(task, exc)

    def _update_task_with_retry(self, task_name: str, task_result: TaskResult) -> None:
        body = task_result.to_dict()
        for attempt in range(TASK_UPDATE_RETRY_ATTEMPTS_LIMIT):
            try:
                self._task_client.update_task(body)
            except Exception as exc:
                logger.debug(
                    "Failed to update task, reason: %s, task type: %s, taskId: %s",
                    exc,
                    task_name,
                    task_result.task_id,
                )
                time.sleep((1 << attempt) * self.update_retry_delay)
                continue
            logger.debug("Updated task of type: %s, taskId: %s", task_name, task_result.task_id)
            return
        raise TaskRunnerError(
            f"failed to update task {task_name} after {TASK_UPDATE_RETRY_ATTEMPTS_LIMIT} attempts"
        )