import queue
import threading
from dataclasses import dataclass

import pytest

from conductorkit.executor import (
    ExecutorError,
    StartWorkflowRequest,
    WorkflowExecutor,
    wait_for_workflow_completion_until_timeout,
)
from conductorkit.monitor import WorkflowMonitor


class NotFound(Exception):
    status = 404


class Recorder:
    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def record(self, *item):
        with self._lock:
            self.calls.append(item)


class FakeWorkflowClient(Recorder):
    def __init__(self):
        super().__init__()
        self.workflows = {}
        self.fail_names = set()

    def start_workflow(self, body):
        self.record("start", body)
        if body["name"] in self.fail_names:
            raise RuntimeError("rejected")
        return "id-" + body["name"]

    def get_execution_status(self, workflow_id, include_tasks=True):
        if workflow_id not in self.workflows:
            raise NotFound(workflow_id)
        return self.workflows[workflow_id]

    def get_workflow_state(self, workflow_id, include_output, include_variables):
        raise NotFound(workflow_id)

    def search(self, start, size, query, free_text):
        self.record("search", start, size, query, free_text)
        return {"totalHits": 1, "results": [{"workflowId": "a"}]}

    def retry(self, workflow_id, resume_subworkflow_tasks):
        self.record("retry", workflow_id, resume_subworkflow_tasks)
        raise RuntimeError("failed")

    def terminate(self, workflow_id, reason):
        self.record("terminate", workflow_id, reason)

    def get_workflows(self, workflow_name, correlation_ids, include_closed, include_tasks):
        self.record("get_workflows", workflow_name, correlation_ids, include_closed, include_tasks)
        return {cid: [] for cid in correlation_ids}


class FakeTaskClient(Recorder):
    def update_task(self, result):
        self.record("update", result)

    def update_task_by_ref_name(self, output, workflow_id, ref_name, status):
        self.record("update_ref", output, workflow_id, ref_name, status)

    def get_task(self, task_id):
        raise NotFound(task_id)


class FakeMetadataClient(Recorder):
    def register_workflow_def(self, workflow_def, overwrite):
        self.record("register", workflow_def, overwrite)
        if not overwrite:
            raise RuntimeError("conflict")


@pytest.fixture
def clients():
    return FakeMetadataClient(), FakeTaskClient(), FakeWorkflowClient()


@pytest.fixture
def executor(clients):
    metadata, tasks, workflows = clients
    return WorkflowExecutor(metadata, tasks, workflows, WorkflowMonitor(workflows))


def test_request_to_dict_omits_unset_fields():
    request = StartWorkflowRequest("wf", version=1, correlation_id="c")
    assert request.to_dict() == {"name": "wf", "version": 1, "correlationId": "c"}


def test_start_workflow_returns_id(executor, clients):
    assert executor.start_workflow(StartWorkflowRequest("wf")) == "id-wf"
    assert clients[2].calls == [("start", {"name": "wf"})]


def test_start_workflows_keeps_order_and_drops_definition(executor, clients):
    requests = [StartWorkflowRequest(name, workflow_def={"name": name}) for name in ("a", "b", "c")]
    started = executor.start_workflows(False, *requests)
    assert [r.workflow_id for r in started] == ["id-a", "id-b", "id-c"]
    assert all("workflowDef" not in body for _, body in clients[2].calls)


def test_start_workflows_captures_errors(executor, clients):
    clients[2].fail_names.add("bad")
    started = executor.start_workflows(True, StartWorkflowRequest("ok"), StartWorkflowRequest("bad"))
    assert started[0].execution_channel is not None and started[0].error is None
    assert started[1].workflow_id == ""
    assert isinstance(started[1].error, RuntimeError)


def test_monitored_workflow_completes(executor, clients):
    started = executor.start_workflows(True, StartWorkflowRequest("wf"))
    clients[2].workflows["id-wf"] = {"workflowId": "id-wf", "status": "COMPLETED"}
    executor.monitor.monitor_running_workflows()
    result = wait_for_workflow_completion_until_timeout(started[0].execution_channel, 1)
    assert result["status"] == "COMPLETED"
    with pytest.raises(ExecutorError, match="channel closed"):
        wait_for_workflow_completion_until_timeout(started[0].execution_channel, 1)


def test_wait_times_out():
    with pytest.raises(ExecutorError, match="timeout"):
        wait_for_workflow_completion_until_timeout(queue.Queue(), 0.01)


def test_not_found_returns_none(executor):
    assert executor.get_workflow("missing", True) is None
    assert executor.get_workflow_status("missing", True, False) is None
    assert executor.get_task("missing") is None


def test_get_workflow_found(executor, clients):
    clients[2].workflows["x"] = {"workflowId": "x", "status": "RUNNING"}
    assert executor.get_workflow("x", False) == {"workflowId": "x", "status": "RUNNING"}


def test_register_passes_overwrite_and_raises(executor, clients):
    assert executor.register_workflow(True, {"name": "wf"}) is None
    assert clients[0].calls == [("register", {"name": "wf"}, True)]
    with pytest.raises(RuntimeError):
        executor.register_workflow(False, {"name": "wf"})


def test_search_returns_results(executor, clients):
    assert executor.search(0, 10, "status = 'RUNNING'", "*") == [{"workflowId": "a"}]
    assert clients[2].calls[0][1:] == (0, 10, "status = 'RUNNING'", "*")


def test_retry_swallows_errors(executor, clients):
    result = executor.retry("wf", True)
    assert result is None
    assert clients[2].calls == [("retry", "wf", True)]


def test_terminate_passes_reason(executor, clients):
    result = executor.terminate("wf", "stop")
    assert result is None
    assert clients[2].calls == [("terminate", "wf", "stop")]


def test_get_by_correlation_ids(executor):
    assert executor.get_by_correlation_ids("wf", True, False, "c1", "c2") == {"c1": [], "c2": []}


def test_update_task_builds_result(executor, clients):
    returned = executor.update_task("t", "wf", "FAILED", {"k": "v"})
    assert returned is None
    (_, result), = clients[1].calls
    assert result == {
        "taskId": "t",
        "workflowInstanceId": "wf",
        "outputData": {"k": "v"},
        "status": "FAILED",
    }


def test_update_task_with_result_object(executor, clients):
    class Result:
        def to_dict(self):
            return {"taskId": "own", "status": "IN_PROGRESS"}

    returned = executor.update_task("t", "wf", "COMPLETED", Result())
    assert returned is None
    assert clients[1].calls[0][1] == {"taskId": "own", "status": "COMPLETED"}


def test_update_task_by_ref_name_converts_dataclass(executor, clients):
    @dataclass
    class Output:
        key: str

    returned = executor.update_task_by_ref_name("ref", "wf", "COMPLETED", Output("value"))
    assert returned is None
    assert clients[1].calls == [("update_ref", {"key": "value"}, "wf", "ref", "COMPLETED")]


def test_update_task_rejects_unconvertible_output(executor):
    with pytest.raises(TypeError):
        executor.update_task("t", "wf", "COMPLETED", [1, 2])