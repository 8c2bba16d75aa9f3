# conductorkit

Build workflow definitions in Python, run workers that poll for tasks and
report their results, and start, monitor and control workflow executions
through the clients of a Conductor-style orchestration server.

## Installation

```
pip install conductorkit
```

For running the test suite:

```
pip install "conductorkit[test]"
pytest
```

## What is inside

| Module | Purpose |
| --- | --- |
| `conductorkit.task` | The base `Task` and the simple task kinds: `SimpleTask`, `DynamicTask`, `EventTask` (with `sqs_event_task` and `conductor_event_task`), `HumanTask`, `InlineTask`, `JQTask`, `SetVariableTask`, `TerminateTask`, `WaitTask` (with `wait_for_duration_task` and `wait_until_task`) |
| `conductorkit.flow` | Control-flow tasks: `ForkTask`, `JoinTask`, `DynamicForkTask`, `DynamicForkInput`, `DoWhileTask` (and `loop_task`), `SwitchTask` |
| `conductorkit.integration` | `HttpTask` with `HttpInput`, `KafkaPublishTask` with `KafkaPublishTaskInput`, `SubWorkflowTask` (and `inline_sub_workflow_task`), `StartWorkflowTask` |
| `conductorkit.workflow` | `ConductorWorkflow`, the fluent builder that turns tasks into a workflow definition |
| `conductorkit.executor` | `WorkflowExecutor` for registering, starting, searching and controlling executions |
| `conductorkit.monitor` | `WorkflowMonitor`, which watches started workflows until they reach a terminal state |
| `conductorkit.task_runner` | `TaskRunner`, which polls for tasks, runs your function and reports the result |

## Defining a workflow

Every task builder is fluent: `input`, `input_map`, `description` and
`optional` return the task itself, so calls can be chained. `to_workflow_task()`
gives the plain-dict workflow tasks a task expands to.

```python
from conductorkit.task import SimpleTask, InlineTask
from conductorkit.flow import SwitchTask
from conductorkit.workflow import ConductorWorkflow

fetch = SimpleTask("fetch_user", "fetch_user_ref").input("id", "${workflow.input.userId}")

route = (
    SwitchTask("route_ref", fetch.output_ref("tier"))
    .switch_case("gold", SimpleTask("send_gift", "send_gift_ref"))
    .default_case(InlineTask("noop_ref", "(function () { return {}; })();"))
)

workflow = (
    ConductorWorkflow(None)
    .name("user_onboarding")
    .version(1)
    .owner_email("ops@example.com")
    .add(fetch)
    .add(route)
)

definition = workflow.to_workflow_def()
```

`output_ref("tier")` produces the expression `${fetch_user_ref.output.tier}`;
`output_ref("")` refers to the whole output.

A `ForkTask` runs several lists of tasks in parallel and is followed by a
generated join task named `<reference>_join`; a `DynamicForkTask` expands to
its preparatory task, the fork and such a join. `loop_task(ref, n, *tasks)`
repeats its tasks `n` times; `DoWhileTask` loops while a JavaScript condition
holds. `wait_for_duration_task` accepts a `timedelta` or a number of seconds
and writes it in the form `1h2m3.5s`, as `format_duration` does.

## Running workflows

`WorkflowExecutor` does not open connections itself: it is given a metadata
client, a task client and a workflow client, and calls methods on them. These
clients return parsed responses and raise on failure; an exception carrying a
404 status (as `status`, `status_code` or `response.status_code`) makes
`get_workflow`, `get_workflow_status` and `get_task` return `None`. Other
client exceptions are passed on to the caller.

The methods called are:

- metadata client: `register_workflow_def(workflow_def, overwrite=...)`
- workflow client: `start_workflow(body)`, `get_execution_status(workflow_id, include_tasks=...)`,
  `get_workflow_state(...)`, `get_workflows(...)`, `search(...)`, `pause_workflow`,
  `resume_workflow`, `terminate`, `restart`, `retry`, `rerun`, `skip_task_from_workflow`
- task client: `update_task(result)`, `update_task_by_ref_name(...)`, `get_task(task_id)`

```python
from conductorkit.executor import (
    StartWorkflowRequest,
    WorkflowExecutor,
    wait_for_workflow_completion_until_timeout,
)

executor = WorkflowExecutor(metadata_client, task_client, workflow_client, None)
workflow = ConductorWorkflow(executor).name("user_onboarding").version(1).add(fetch)

workflow.register(True)
workflow_id = workflow.start_workflow_with_input({"userId": "u-1"})

channel = workflow.start_workflow_and_monitor_execution(
    StartWorkflowRequest(name="user_onboarding", input={"userId": "u-2"})
)
finished = wait_for_workflow_completion_until_timeout(channel, 10)
```

When no monitor is passed, the executor creates a `WorkflowMonitor` on the
workflow client and starts its background thread. The monitor polls every
monitored workflow (every 0.1 s by default) and, once its status is
`COMPLETED`, `FAILED`, `TIMED_OUT` or `TERMINATED`, puts it on the workflow's
channel (a `queue.Queue`) followed by `None`. It can be started and stopped
with `start()`/`stop()` or used as a context manager.

`wait_for_workflow_completion_until_timeout` raises `ExecutorError` with
`"timeout"` or `"channel closed"`; `ConductorWorkflow` raises `ExecutorError`
when asked to register or start without an executor. `start_workflows` starts
several requests in parallel and returns one `RunningWorkflow` per request, in
order, holding the workflow id, the channel if monitoring was asked for, and
any error. `retry` and `update_task` only log failures of the client call.

## Running workers

`TaskRunner` is given a task client providing
`batch_poll(task_name, worker_id=..., count=..., timeout=..., domain=...)`
(returning a list of tasks, or `None`) and `update_task(result)`. The worker id
defaults to the host name.

```python
from conductorkit.task_runner import TaskRunner

def fetch_user(task):
    return {"tier": "gold"}

runner = TaskRunner(task_client, "worker-1")
runner.start_worker("fetch_user", fetch_user, 5, 0.25, "")
runner.wait_workers(None)
```

Each polled task runs in its own thread. A worker may return a mapping (or
anything convertible to one, reported as a completed task) or a `TaskResult`;
an exception raised by the worker is reported as a failed task with the error
as the reason. A result update is tried three times with growing pauses.

The batch size, the number of tasks handled at once, can be changed while the
worker runs with `set_batch_size`, `increase_batch_size` and
`decrease_batch_size`; a batch size of zero stops the poller, and
`wait_workers` returns once all pollers have stopped (or `False` if its
timeout ran out first). Changes for a task with no running worker, or with an
invalid size, raise `TaskRunnerError`.

## What this package does not do

It contains no HTTP client for the server's API, no authentication and no
metrics: you provide the client objects described above. There is no
command-line program.