"""
SOAR data models for playbooks, steps, conditions, connectors and execution records.

Python attributes are snake_case; the persisted (wire) names are the camelCase
aliases used by stored playbook definitions and execution records.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def step_id_list(value: Any) -> Any:
    """
    Normalize a step ID list from a stored definition.

    None is an empty list and a single ID (string or number) a one-item list;
    other non-list values are returned unchanged for validation to reject.
    """
    if value is None:
        return []
    if isinstance(value, (str, int)):
        return [str(value)]
    if isinstance(value, (list, tuple)):
        return [str(i) for i in value]
    return value


class StepType(str, Enum):
    """Wire-stable playbook step type identifiers."""

    # EDR
    EDR_ISOLATE_HOST = "edr_isolate_host"
    EDR_UNISOLATE_HOST = "edr_unisolate_host"
    EDR_SCAN_HOST = "edr_scan_host"
    EDR_GET_PROCESS_LIST = "edr_get_process_list"
    EDR_KILL_PROCESS = "edr_kill_process"

    # Firewall
    FIREWALL_BLOCK_IP = "firewall_block_ip"
    FIREWALL_UNBLOCK_IP = "firewall_unblock_ip"
    FIREWALL_BLOCK_DOMAIN = "firewall_block_domain"
    FIREWALL_UNBLOCK_DOMAIN = "firewall_unblock_domain"

    # Identity
    IDENTITY_DISABLE_USER = "identity_disable_user"
    IDENTITY_ENABLE_USER = "identity_enable_user"
    IDENTITY_RESET_PASSWORD = "identity_reset_password"
    IDENTITY_ADD_TO_GROUP = "identity_add_to_group"
    IDENTITY_REMOVE_FROM_GROUP = "identity_remove_from_group"

    # Notification
    NOTIFY_EMAIL = "notify_email"
    NOTIFY_SLACK = "notify_slack"
    NOTIFY_SMS = "notify_sms"

    # Enrichment and analysis
    ENRICH_IOC = "enrich_ioc"
    AI_ANALYZE_ALERT = "ai_analyze_alert"
    LOOKUP_THREAT_INTEL = "lookup_threat_intel"

    # Control flow
    CONDITION = "condition"
    WAIT = "wait"
    PARALLEL = "parallel"
    CALL_API = "call_api"


# Step types that are always treated as graph entry points.
CONTROL_START_TYPES = {"CONDITION", "TRIGGER"}


class ConditionType(str, Enum):
    """Predicates supported by step conditions."""

    EQUALS = "equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    EXISTS = "exists"


class RevisitPolicy(str, Enum):
    """
    What the graph walker does when it reaches a step it has already run.

    ALWAYS re-executes on every arrival (no cycle protection). PER_PATH refuses
    to re-enter a step that is already an ancestor on the current path, so
    cycles terminate while shared downstream steps still run once per branch.
    ONCE_PER_RUN runs each step id at most once per execution.
    """

    ALWAYS = "always"
    PER_PATH = "per_path"
    ONCE_PER_RUN = "once_per_run"


class ExecutionStatus(str, Enum):
    """Execution record lifecycle states."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class LogLevel(str, Enum):
    """Execution log entry levels."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    DEBUG = "debug"


class PlaybookStepCondition(BaseModel):
    """A predicate evaluated against the execution context before a step runs."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "type": "equals",
                "field": "trigger.entity.severity",
                "value": "critical",
            }
        }
    )

    type: ConditionType
    field: str  # Dot path into the context (e.g. "trigger.entity.severity")
    value: Any = None


class PlaybookStep(BaseModel):
    """
    One node of a playbook graph.

    `config` keeps the raw key/value map of the stored definition; use
    `typed_config()` to get the validated config model for the step type.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    name: str = ""
    type: str
    config: Dict[str, Any] = Field(default_factory=dict)
    condition: Optional[PlaybookStepCondition] = None
    on_success: List[str] = Field(default_factory=list, alias="onSuccess")
    on_failure: List[str] = Field(default_factory=list, alias="onFailure")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        """Accept numeric step IDs from YAML definitions."""
        return str(v) if isinstance(v, int) else v

    @field_validator("config", mode="before")
    @classmethod
    def default_config(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("on_success", "on_failure", mode="before")
    @classmethod
    def default_edges(cls, v: Any) -> Any:
        """Missing edge lists are terminal; a single ID becomes a one-item list."""
        return step_id_list(v)

    @property
    def step_type(self) -> Optional[StepType]:
        """The StepType for this step, or None if the type is not supported."""
        try:
            return StepType(self.type)
        except ValueError:
            return None

    def next_step_ids(self, succeeded: bool) -> List[str]:
        """Edge list to follow for a handler result."""
        return self.on_success if succeeded else self.on_failure

    def typed_config(self):
        """
        Validate the raw config map against the model for this step type.

        Raises:
            StepConfigError: If the step type is unknown or the config is invalid
        """
        from .step_configs import parse_step_config

        return parse_step_config(self)


class Playbook(BaseModel):
    """
    A declarative response workflow: a directed graph of typed steps.

    Run statistics (execution count, average duration) are maintained by the
    execution store after every run.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: int
    name: str
    description: str = ""
    is_active: bool = Field(default=True, alias="isActive")
    steps: List[PlaybookStep] = Field(default_factory=list)
    execution_count: int = Field(default=0, alias="executionCount")
    avg_execution_time: Optional[int] = Field(default=None, alias="avgExecutionTime")
    last_executed: Optional[datetime] = Field(default=None, alias="lastExecuted")

    def get_step(self, step_id: str) -> Optional[PlaybookStep]:
        """Get a step by ID."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def referenced_step_ids(self) -> set:
        """All step IDs referenced from any onSuccess / onFailure list."""
        referenced = set()
        for step in self.steps:
            referenced.update(step.on_success)
            referenced.update(step.on_failure)
        return referenced

    def dangling_references(self) -> List[str]:
        """
        Describe every edge that points at a step ID not in this playbook.

        Parallel steps' `config.steps` lists are checked too.
        """
        known = {step.id for step in self.steps}
        problems = []
        for step in self.steps:
            for edge, targets in (("onSuccess", step.on_success), ("onFailure", step.on_failure)):
                for target in targets:
                    if target not in known:
                        problems.append(
                            f"Step '{step.id}' {edge} references unknown step '{target}'"
                        )
            if step.type == StepType.PARALLEL.value:
                targets = step_id_list(step.config.get("steps"))
                for target in targets if isinstance(targets, list) else []:
                    if target not in known:
                        problems.append(
                            f"Parallel step '{step.id}' references unknown step '{target}'"
                        )
        return problems

    def validate_graph(self) -> List[str]:
        """
        Structural checks used by strict loading.

        Returns:
            List of problems (empty if the graph is consistent)
        """
        problems = []
        if not self.steps:
            problems.append("Playbook does not have any steps defined")

        seen = set()
        for step in self.steps:
            if step.id in seen:
                problems.append(f"Duplicate step ID '{step.id}'")
            seen.add(step.id)
            if step.step_type is None:
                problems.append(f"Step '{step.id}' has unsupported type '{step.type}'")

        problems.extend(self.dangling_references())
        return problems


class Connector(BaseModel):
    """
    An externally configured integration identified by name.

    `configuration` carries at least `baseUrl` and `apiKey` for EDR, firewall
    and identity connectors.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    type: str
    configuration: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = Field(default=True, alias="isActive")


class RetryPolicy(BaseModel):
    """Attempt budget and exponential backoff for one external call."""

    model_config = ConfigDict(populate_by_name=True)

    max_attempts: int = Field(default=1, ge=1, alias="maxAttempts")
    backoff_ms: int = Field(default=1000, ge=0, alias="backoffMs")
    max_backoff_ms: int = Field(default=10000, ge=0, alias="maxBackoffMs")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        delay_ms = min(self.backoff_ms * (2 ** (attempt - 1)), self.max_backoff_ms)
        return delay_ms / 1000


class ActionOutcome(BaseModel):
    """Normalized result of one external call made by the action dispatcher."""

    success: bool
    status_code: Optional[int] = None
    data: Any = None
    error: Optional[str] = None
    timed_out: bool = False
    attempts: int = 1

    @property
    def retryable(self) -> bool:
        """Transport errors, timeouts, 429 and 5xx are worth another attempt."""
        if self.success:
            return False
        if self.timed_out or self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


class ExecutionLogEntry(BaseModel):
    """One structured log line of an execution run."""

    level: LogLevel
    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class ExecutionResults(BaseModel):
    """The `results` block persisted with a finished execution."""

    success: bool
    logs: List[ExecutionLogEntry] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)


class ExecutionRecord(BaseModel):
    """
    Persisted record of one playbook run.

    Created in `running` state when a run starts and updated exactly once
    when it finishes.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": 17,
                "playbookId": 3,
                "status": "completed",
                "startedAt": "2025-01-15T10:30:00Z",
                "completedAt": "2025-01-15T10:30:04Z",
                "error": None,
                "results": {
                    "success": True,
                    "logs": [
                        {
                            "level": "info",
                            "message": "Playbook execution started: Contain host",
                            "timestamp": "2025-01-15T10:30:00Z",
                        }
                    ],
                    "context": {"edrActions": {"isolateHost": {"host": "ws-042"}}},
                },
            }
        },
    )

    id: int
    playbook_id: int = Field(alias="playbookId")
    status: ExecutionStatus = ExecutionStatus.RUNNING
    started_at: datetime = Field(default_factory=utcnow, alias="startedAt")
    completed_at: Optional[datetime] = Field(default=None, alias="completedAt")
    error: Optional[str] = None
    results: Optional[ExecutionResults] = None
    triggered_by: Optional[int] = Field(default=None, alias="triggeredBy")
    trigger_entity_id: Optional[int] = Field(default=None, alias="triggerEntityId")
    trigger_source: Optional[str] = Field(default=None, alias="triggerSource")
    execution_time: Optional[int] = Field(default=None, alias="executionTime")

    def to_wire(self) -> Dict[str, Any]:
        """JSON-ready dict using the persisted field names."""
        return self.model_dump(mode="json", by_alias=True)
