"""Control-flow tasks: join, fork, dynamic fork, do-while loops and switches."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from conductorkit.task import Task, TaskType

LOOP_COUNT_PARAMETER = "loop_count"
FORKED_TASKS = "forkedTasks"
FORKED_TASKS_INPUTS = "forkedTasksInputs"
SWITCH_CASE_VALUE = "switchCaseValue"
VALUE_PARAM_EVALUATOR = "value-param"
JAVASCRIPT_EVALUATOR = "javascript"
JOIN_SUFFIX = "_join"


def _join_workflow_task(task_ref_name: str) -> dict[str, Any]:
    return JoinTask(task_ref_name + JOIN_SUFFIX).to_workflow_task()[0]


class JoinTask(Task):
    """Waits for the given task references to complete."""

    def __init__(self, task_ref_name: str, *args: str) -> None:
        super().__init__(task_ref_name, task_ref_name, TaskType.JOIN)
        self._join_on = list(args)

    @property
    def join_on(self) -> list[str]:
        return list(self._join_on)

    def to_workflow_task(self) -> list[dict[str, Any]]:
        workflow_tasks = super().to_workflow_task()
        workflow_tasks[0]["joinOn"] = list(self._join_on)
        return workflow_tasks


class ForkTask(Task):
    """Runs each branch in parallel; tasks within a branch run in sequence.

    The fork is always followed by a join whose reference name is the fork's
    reference name with ``_join`` appended.
    """

    def __init__(self, task_ref_name: str, *args: Sequence[Task]) -> None:
        super().__init__(task_ref_name, task_ref_name, TaskType.FORK_JOIN)
        self._forked_tasks = [list(branch) for branch in args]

    @property
    def forked_tasks(self) -> list[list[Task]]:
        return [list(branch) for branch in self._forked_tasks]

    def to_workflow_task(self) -> list[dict[str, Any]]:
        fork = super().to_workflow_task()[0]
        fork["forkTasks"] = [
            [task.to_workflow_task()[0] for task in branch]
            for branch in self._forked_tasks
        ]
        return [fork, _join_workflow_task(self.reference_name())]


@dataclass
class DynamicForkInput:
    """Output expected from the task that prepares a dynamic fork.

    ``tasks`` lists the workflow tasks to fork; ``task_input`` maps each task
    reference name to its input.
    """

    tasks: list[dict[str, Any]] = field(default_factory=list)
    task_input: dict[str, Any] = field(default_factory=dict)


class DynamicForkTask(Task):
    """Forks the tasks produced at runtime by a preparatory task."""

    def __init__(
        self,
        task_ref_name: str,
        fork_prepare_task: Task,
        join: JoinTask | None = None,
    ) -> None:
        super().__init__(task_ref_name, task_ref_name, TaskType.FORK_JOIN_DYNAMIC)
        self._pre_fork_task = fork_prepare_task
        self._join = join

    @property
    def pre_fork_task(self) -> Task:
        return self._pre_fork_task

    @property
    def join(self) -> JoinTask | None:
        return self._join

    def to_workflow_task(self) -> list[dict[str, Any]]:
        fork = super().to_workflow_task()[0]
        fork["dynamicForkTasksParam"] = FORKED_TASKS
        fork["dynamicForkTasksInputParamName"] = FORKED_TASKS_INPUTS
        fork["inputParameters"][FORKED_TASKS] = self._pre_fork_task.output_ref(FORKED_TASKS)
        fork["inputParameters"][FORKED_TASKS_INPUTS] = self._pre_fork_task.output_ref(
            FORKED_TASKS_INPUTS
        )
        tasks = self._pre_fork_task.to_workflow_task()
        tasks.append(fork)
        tasks.append(_join_workflow_task(self.reference_name()))
        return tasks


def _for_loop_condition(loop_value: str, task_reference_name: str) -> str:
    return (
        f"if ( $.{task_reference_name}['iteration'] < $.{loop_value} ) "
        "{ true; } else { false; }"
    )


class DoWhileTask(Task):
    """Repeats the given tasks while the JavaScript termination condition is true."""

    def __init__(self, task_ref_name: str, termination_condition: str, *args: Task) -> None:
        super().__init__(task_ref_name, task_ref_name, TaskType.DO_WHILE)
        self._loop_condition = termination_condition
        self._loop_over = list(args)

    @property
    def loop_condition(self) -> str:
        return self._loop_condition

    @property
    def loop_over(self) -> list[Task]:
        return list(self._loop_over)

    def to_workflow_task(self) -> list[dict[str, Any]]:
        workflow_tasks = super().to_workflow_task()
        workflow_tasks[0]["loopCondition"] = self._loop_condition
        workflow_tasks[0]["loopOver"] = [
            workflow_task
            for task in self._loop_over
            for workflow_task in task.to_workflow_task()
        ]
        return workflow_tasks


def loop_task(task_ref_name: str, iterations: int, *args: Task) -> DoWhileTask:
    """A do-while task that runs its tasks a fixed number of times."""
    task = DoWhileTask(
        task_ref_name,
        _for_loop_condition(task_ref_name, LOOP_COUNT_PARAMETER),
        *args,
    )
    task.input(LOOP_COUNT_PARAMETER, iterations)
    return task


class SwitchTask(Task):
    """Chooses a branch by the value of a case expression.

    Each case, and the default case, ends up holding a single workflow task:
    the last one produced by the tasks given for it.
    """

    def __init__(self, task_ref_name: str, case_expression: str) -> None:
        super().__init__(task_ref_name, task_ref_name, TaskType.SWITCH)
        self._decision_cases: dict[str, list[Task]] = {}
        self._default_case: list[Task] = []
        self._expression = case_expression
        self._use_javascript = False

    @property
    def decision_cases(self) -> dict[str, list[Task]]:
        return {name: list(tasks) for name, tasks in self._decision_cases.items()}

    @property
    def expression(self) -> str:
        return self._expression

    def switch_case(self, case_name: str, *args: Task) -> "SwitchTask":
        self._decision_cases[case_name] = list(args)
        return self

    def default_case(self, *args: Task) -> "SwitchTask":
        self._default_case = list(args)
        return self

    def use_javascript(self, use: bool) -> "SwitchTask":
        """Treat the case expression as JavaScript instead of an input mapping."""
        self._use_javascript = use
        return self

    @staticmethod
    def _last_workflow_task(tasks: list[Task]) -> list[dict[str, Any]]:
        expanded = [wt for task in tasks for wt in task.to_workflow_task()]
        return expanded[-1:]

    def to_workflow_task(self) -> list[dict[str, Any]]:
        if self._use_javascript:
            evaluator_type = JAVASCRIPT_EVALUATOR
            expression = self._expression
        else:
            evaluator_type = VALUE_PARAM_EVALUATOR
            if self._expression != SWITCH_CASE_VALUE or SWITCH_CASE_VALUE not in self.input_parameters:
                self.input_parameters[SWITCH_CASE_VALUE] = self._expression
            expression = SWITCH_CASE_VALUE
        decision_cases = {}
        for case_value, tasks in self._decision_cases.items():
            last = self._last_workflow_task(tasks)
            if last:
                decision_cases[case_value] = last
        workflow_tasks = super().to_workflow_task()
        workflow_tasks[0]["decisionCases"] = decision_cases
        workflow_tasks[0]["defaultCase"] = self._last_workflow_task(self._default_case)
        workflow_tasks[0]["evaluatorType"] = evaluator_type
        workflow_tasks[0]["expression"] = expression
        return workflow_tasks