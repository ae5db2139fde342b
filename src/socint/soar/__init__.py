"""
SOAR playbook execution engine.

Walks declarative response playbooks (directed graphs of typed steps),
calls external security systems for each action step, and records an
auditable execution record per run.
"""

from .context import ExecutionContext
from .dispatcher import ActionDispatcher
from .engine import PlaybookGraphWalker
from .errors import (
    ConnectorNotFoundError,
    EmptyPlaybookError,
    NoStartingStepsError,
    PlaybookNotFoundError,
    PlaybookValidationError,
    SoarError,
    StepConfigError,
)
from .handlers import StepHandlers
from .models import (
    Connector,
    ExecutionRecord,
    ExecutionStatus,
    Playbook,
    PlaybookStep,
    PlaybookStepCondition,
    RetryPolicy,
    RevisitPolicy,
    StepType,
)
from .service import PlaybookExecutionService
from .storage import InMemorySoarStore

__all__ = [
    "ActionDispatcher",
    "Connector",
    "ConnectorNotFoundError",
    "EmptyPlaybookError",
    "ExecutionContext",
    "ExecutionRecord",
    "ExecutionStatus",
    "InMemorySoarStore",
    "NoStartingStepsError",
    "Playbook",
    "PlaybookExecutionService",
    "PlaybookGraphWalker",
    "PlaybookNotFoundError",
    "PlaybookStep",
    "PlaybookStepCondition",
    "PlaybookValidationError",
    "RetryPolicy",
    "RevisitPolicy",
    "SoarError",
    "StepConfigError",
    "StepHandlers",
    "StepType",
]
