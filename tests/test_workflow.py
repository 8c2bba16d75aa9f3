import queue
from dataclasses import dataclass

import pytest

from conductorkit.executor import ExecutorError, StartWorkflowRequest
from conductorkit.flow import DynamicForkTask, ForkTask, SwitchTask, loop_task
from conductorkit.integration import SubWorkflowTask, inline_sub_workflow_task
from conductorkit.task import JQTask, SetVariableTask, SimpleTask, TerminateTask
from conductorkit.workflow import ConductorWorkflow, TimeoutPolicy, input_as_map


class _FakeExecutor:
    def __init__(self):
        self.registered = []
        self.started = []
        self.channel = queue.Queue()
        self.monitored = []

    def register_workflow(self, overwrite, workflow_def):
        self.registered.append((overwrite, workflow_def))

    def start_workflow(self, request):
        self.started.append(request)
        return "wf-1"

    def monitor_execution(self, workflow_id):
        self.monitored.append(workflow_id)
        return self.channel


def _kitchen_sink(executor=None):
    task = SimpleTask("simple_task", "simple_task_0")
    simple_workflow = ConductorWorkflow(executor).name("inline_sub").add(
        SimpleTask("simple_task", "simple_task_0")
    )
    sub_workflow_inline = inline_sub_workflow_task("sub_flow_inline", simple_workflow)
    decide = (
        SwitchTask("fact_length", "$.number < 15 ? 'LONG':'LONG'")
        .description("Fail if the fact is too short")
        .input("number", "${get_data.output.number}")
        .use_javascript(True)
        .switch_case(
            "LONG",
            SimpleTask("simple_task", "simple_task_1"),
            SimpleTask("simple_task", "simple_task_1"),
        )
        .switch_case("SHORT", TerminateTask("too_short", "FAILED", "value too short"))
    )
    do_while = loop_task("loop_until_success", 2, decide).optional(True)
    fork = ForkTask(
        "fork",
        [do_while, sub_workflow_inline],
        [SimpleTask("simple_task", "simple_task_5")],
    )
    dynamic_fork = DynamicForkTask(
        "dynamic_fork", SimpleTask("dynamic_fork_prep", "dynamic_fork_prep")
    )
    set_variable = (
        SetVariableTask("set_state")
        .input("call_made", True)
        .input("number", task.output_ref("number"))
    )
    sub_workflow = SubWorkflowTask("sub_flow", "PopulationMinMax", None)
    jq_task = JQTask("jq", "{ key3: (.key1.value1 + .key2.value2) }")
    jq_task.input("key1", {"value1": ["a", "b"]})
    jq_task.input_map({"value2": ["d", "e"]})
    return (
        ConductorWorkflow(executor)
        .name("sdk_kitchen_sink2")
        .version(1)
        .owner_email("kitchen@example.com")
        .add(task)
        .add(jq_task)
        .add(set_variable)
        .add(sub_workflow)
        .add(dynamic_fork)
        .add(fork)
    )


def test_kitchen_sink_top_level_tasks():
    definition = _kitchen_sink().to_workflow_def()
    refs = [t["taskReferenceName"] for t in definition["tasks"]]
    assert refs == [
        "simple_task_0",
        "jq",
        "set_state",
        "sub_flow",
        "dynamic_fork_prep",
        "dynamic_fork",
        "dynamic_fork_join",
        "fork",
        "fork_join",
    ]
    types = [t["type"] for t in definition["tasks"]]
    assert types == [
        "SIMPLE",
        "JSON_JQ_TRANSFORM",
        "SET_VARIABLE",
        "SUB_WORKFLOW",
        "SIMPLE",
        "FORK_JOIN_DYNAMIC",
        "JOIN",
        "FORK_JOIN",
        "JOIN",
    ]


def test_kitchen_sink_definition_header():
    definition = _kitchen_sink().to_workflow_def()
    assert definition["name"] == "sdk_kitchen_sink2"
    assert definition["version"] == 1
    assert definition["ownerEmail"] == "kitchen@example.com"
    assert definition["schemaVersion"] == 2
    assert definition["timeoutPolicy"] == "ALERT_ONLY"
    assert definition["restartable"] is True


def test_kitchen_sink_task_inputs():
    tasks = {t["taskReferenceName"]: t for t in _kitchen_sink().to_workflow_def()["tasks"]}
    assert tasks["jq"]["inputParameters"] == {
        "queryExpression": "{ key3: (.key1.value1 + .key2.value2) }",
        "key1": {"value1": ["a", "b"]},
        "value2": ["d", "e"],
    }
    assert tasks["set_state"]["inputParameters"] == {
        "call_made": True,
        "number": "${simple_task_0.output.number}",
    }
    assert tasks["sub_flow"]["subWorkflowParam"] == {"name": "PopulationMinMax"}
    assert tasks["dynamic_fork"]["inputParameters"]["forkedTasks"] == (
        "${dynamic_fork_prep.output.forkedTasks}"
    )


def test_kitchen_sink_fork_branches():
    tasks = {t["taskReferenceName"]: t for t in _kitchen_sink().to_workflow_def()["tasks"]}
    branches = tasks["fork"]["forkTasks"]
    assert [[t["taskReferenceName"] for t in b] for b in branches] == [
        ["loop_until_success", "sub_flow_inline"],
        ["simple_task_5"],
    ]
    loop = branches[0][0]
    assert loop["optional"] is True
    assert loop["inputParameters"] == {"loop_count": 2}
    switch = loop["loopOver"][0]
    assert switch["evaluatorType"] == "javascript"
    assert switch["expression"] == "$.number < 15 ? 'LONG':'LONG'"
    assert [t["taskReferenceName"] for t in switch["decisionCases"]["LONG"]] == ["simple_task_1"]
    assert switch["decisionCases"]["SHORT"][0]["type"] == "TERMINATE"
    inline = branches[0][1]["subWorkflowParam"]
    assert inline["name"] == "inline_sub"
    assert [t["taskReferenceName"] for t in inline["workflowDefinition"]["tasks"]] == ["simple_task_0"]


def test_register_passes_definition():
    executor = _FakeExecutor()
    workflow = ConductorWorkflow(executor).name("w").version(2)
    workflow.register(True)
    assert executor.registered == [(True, workflow.to_workflow_def())]


def test_start_workflow_with_input():
    executor = _FakeExecutor()
    workflow = ConductorWorkflow(executor).name("w").version(3)
    assert workflow.start_workflow_with_input({"a": 1}) == "wf-1"
    request = executor.started[0]
    assert request.name == "w"
    assert request.version == 3
    assert request.input == {"a": 1}
    assert request.workflow_def == workflow.to_workflow_def()


def test_start_workflow_sets_definition():
    executor = _FakeExecutor()
    workflow = _kitchen_sink(executor)
    request = StartWorkflowRequest(name=workflow.workflow_name())
    assert workflow.start_workflow(request) == "wf-1"
    assert request.workflow_def == workflow.to_workflow_def()


def test_start_and_monitor_returns_channel():
    executor = _FakeExecutor()
    workflow = ConductorWorkflow(executor).name("w")
    channel = workflow.start_workflow_and_monitor_execution(StartWorkflowRequest(name="w"))
    assert channel is executor.channel
    assert executor.monitored == ["wf-1"]


def test_without_executor_raises():
    with pytest.raises(ExecutorError):
        ConductorWorkflow().name("w").register(False)


def test_setters_reflected_in_definition():
    definition = (
        ConductorWorkflow()
        .name("w")
        .description("d")
        .timeout_policy(TimeoutPolicy.TIME_OUT_WORKFLOW, 60)
        .failure_workflow("fail_flow")
        .restartable(False)
        .input_parameters("a", "b")
        .output_parameters({"o": "${x.output}"})
        .variables({"v": 1})
        .input_template({"t": 2})
        .to_workflow_def()
    )
    assert definition["timeoutPolicy"] == "TIME_OUT_WF"
    assert definition["timeoutSeconds"] == 60
    assert definition["failureWorkflow"] == "fail_flow"
    assert definition["restartable"] is False
    assert definition["inputParameters"] == ["a", "b"]
    assert definition["outputParameters"] == {"o": "${x.output}"}
    assert definition["variables"] == {"v": 1}
    assert definition["inputTemplate"] == {"t": 2}
    assert definition["description"] == "d"


def test_workflow_getters():
    workflow = ConductorWorkflow().name("n").version(5)
    assert (workflow.workflow_name(), workflow.workflow_version()) == ("n", 5)


@dataclass
class _Chest:
    importantValue: str


def test_input_as_map_variants():
    mapping = {"k": 1}
    assert input_as_map(mapping) is mapping
    assert input_as_map(None) is None
    assert input_as_map(_Chest("Go is really nice :)")) == {"importantValue": "Go is really nice :)"}
    assert input_as_map([1, 2]) is None
    assert input_as_map({1, 2}) is None