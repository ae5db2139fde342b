"""
Exceptions raised by the SOAR playbook engine.

They mark configuration problems (missing playbook, missing connector, bad
step config, unusable graph). Transport failures are never raised; the action
dispatcher reports them as failed outcomes instead.
"""

from typing import List, Optional


class SoarError(Exception):
    """Base class for playbook engine errors."""


class PlaybookNotFoundError(SoarError):
    """Raised when a playbook ID does not resolve to a definition."""

    def __init__(self, playbook_id):
        super().__init__(f"Playbook with ID {playbook_id} not found")
        self.playbook_id = playbook_id


class EmptyPlaybookError(SoarError):
    """Raised when a playbook has no steps at all."""

    def __init__(self):
        super().__init__("Playbook does not have any steps defined")


class NoStartingStepsError(SoarError):
    """Raised when start-node selection yields no steps."""

    def __init__(self):
        super().__init__("No starting steps found in playbook")


class PlaybookValidationError(SoarError):
    """Raised by strict loading when a playbook graph is inconsistent."""

    def __init__(self, playbook_id, errors: List[str]):
        super().__init__(
            f"Playbook {playbook_id} failed validation: {'; '.join(errors)}"
        )
        self.playbook_id = playbook_id
        self.errors = errors


class StepConfigError(SoarError):
    """Raised when a step's config map does not match its step type."""

    def __init__(self, step_id: str, step_type: str, detail: Optional[str] = None):
        message = f"Invalid config for step '{step_id}' ({step_type})"
        if detail:
            message += f": {detail}"
        super().__init__(message)
        self.step_id = step_id
        self.step_type = step_type


class ConnectorNotFoundError(SoarError):
    """Raised when a named connector is not registered."""

    def __init__(self, name: str):
        super().__init__(f"Connector '{name}' not found")
        self.name = name
