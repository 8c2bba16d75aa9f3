"""Tasks that reach outside the workflow: HTTP calls, Kafka, sub-workflows."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping

from conductorkit.task import Task, TaskType

if TYPE_CHECKING:
    from conductorkit.workflow import ConductorWorkflow


class HttpMethod(str, enum.Enum):
    GET = "GET"
    PUT = "PUT"
    POST = "POST"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, enum.Enum) else value


@dataclass
class HttpInput:
    """Request made by an HTTP task."""

    method: HttpMethod | str = HttpMethod.GET
    uri: str = ""
    headers: dict[str, list[str]] | None = None
    accept: str = ""
    content_type: str = ""
    connection_time_out: int = 0
    read_timeout: int = 0
    body: Any = None

    def to_dict(self) -> dict[str, Any]:
        """Wire form; empty optional fields are left out."""
        result: dict[str, Any] = {"method": _enum_value(self.method), "uri": self.uri}
        optional_fields = (
            ("headers", self.headers),
            ("accept", self.accept),
            ("contentType", self.content_type),
            ("ConnectionTimeOut", self.connection_time_out),
            ("readTimeout", self.read_timeout),
        )
        result.update((key, value) for key, value in optional_fields if value)
        if self.body is not None:
            result["body"] = self.body
        return result


class HttpTask(Task):
    """Calls an HTTP endpoint; the method defaults to GET."""

    def __init__(self, task_ref_name: str, http_input: HttpInput) -> None:
        if not http_input.method:
            http_input.method = HttpMethod.GET
        super().__init__(
            task_ref_name,
            task_ref_name,
            TaskType.HTTP,
            {"http_request": http_input.to_dict()},
        )


@dataclass
class KafkaPublishTaskInput:
    """Message and connection settings for a Kafka publish task."""

    boot_strap_servers: str = ""
    key: str = ""
    key_serializer: str = ""
    value: str = ""
    request_timeout_ms: str = ""
    max_block_ms: str = ""
    headers: Mapping[str, Any] | None = None
    topic: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Wire form; empty optional fields are left out."""
        result: dict[str, Any] = {
            "bootStrapServers": self.boot_strap_servers,
            "key": self.key,
            "value": self.value,
            "topic": self.topic,
        }
        if self.key_serializer:
            result["keySerializer"] = self.key_serializer
        if self.request_timeout_ms:
            result["requestTimeoutMs"] = self.request_timeout_ms
        if self.max_block_ms:
            result["maxBlockMs"] = self.max_block_ms
        if self.headers:
            result["headers"] = dict(self.headers)
        return result


class KafkaPublishTask(Task):
    """Publishes a message to a Kafka topic."""

    def __init__(self, task_ref_name: str, kafka_input: KafkaPublishTaskInput) -> None:
        super().__init__(
            task_ref_name,
            task_ref_name,
            TaskType.KAFKA_PUBLISH,
            {"kafka_request": kafka_input.to_dict()},
        )


class SubWorkflowTask(Task):
    """Runs another workflow, registered by name or defined inline."""

    def __init__(self, task_ref_name: str, workflow_name: str, version: int | None = None) -> None:
        super().__init__(task_ref_name, task_ref_name, TaskType.SUB_WORKFLOW)
        self._workflow_name = workflow_name
        self._version = version
        self._task_to_domain: dict[str, str] | None = None
        self._workflow: ConductorWorkflow | None = None

    def task_to_domain(self, task_to_domain_map: Mapping[str, str]) -> "SubWorkflowTask":
        self._task_to_domain = dict(task_to_domain_map)
        return self

    def to_workflow_task(self) -> list[dict[str, Any]]:
        workflow_tasks = super().to_workflow_task()
        if self._workflow is not None:
            param: dict[str, Any] = {"name": self._workflow.workflow_name()}
            if self._task_to_domain is not None:
                param["taskToDomain"] = dict(self._task_to_domain)
            param["workflowDefinition"] = self._workflow.to_workflow_def()
        else:
            param = {"name": self._workflow_name}
            if self._version is not None:
                param["version"] = self._version
            if self._task_to_domain is not None:
                param["taskToDomain"] = dict(self._task_to_domain)
        workflow_tasks[0]["subWorkflowParam"] = param
        return workflow_tasks


def inline_sub_workflow_task(task_ref_name: str, workflow: "ConductorWorkflow") -> SubWorkflowTask:
    """A sub-workflow task carrying the full definition of the given workflow."""
    task = SubWorkflowTask(task_ref_name, workflow.workflow_name())
    task._workflow = workflow
    return task


class StartWorkflowTask(Task):
    """Starts another workflow without waiting for it to finish."""

    def __init__(
        self,
        task_ref_name: str,
        workflow_name: str,
        version: int | None = None,
        input: Mapping[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> None:
        super().__init__(
            task_ref_name,
            task_ref_name,
            TaskType.START_WORKFLOW,
            {
                "startWorkflow": {
                    "name": workflow_name,
                    "version": version,
                    "input": dict(input) if input is not None else None,
                    "correlationId": correlation_id,
                }
            },
        )