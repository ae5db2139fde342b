"""
Collaborator interfaces consumed by the playbook engine, plus an in-memory
implementation and YAML/JSON loaders for playbooks and connectors.
"""

import itertools
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConnectorNotFoundError, PlaybookValidationError
from .models import (
    Connector,
    ExecutionRecord,
    ExecutionResults,
    ExecutionStatus,
    Playbook,
    utcnow,
)

logger = logging.getLogger(__name__)


class PlaybookStore(ABC):
    """Source of playbook definitions."""

    @abstractmethod
    async def get_playbook(self, playbook_id: int) -> Optional[Playbook]:
        """Get a playbook by ID, or None if it does not exist."""
        pass


class ConnectorRegistry(ABC):
    """Registry of externally configured integrations."""

    @abstractmethod
    async def list_connectors(self) -> List[Connector]:
        """List all registered connectors."""
        pass

    async def get_connector_by_name(self, name: str) -> Optional[Connector]:
        """Find a connector by exact name match."""
        for connector in await self.list_connectors():
            if connector.name == name:
                return connector
        return None

    async def require_connector(self, name: str) -> Connector:
        """
        Find a connector by exact name match.

        Raises:
            ConnectorNotFoundError: If no connector has that name
        """
        connector = await self.get_connector_by_name(name)
        if connector is None:
            raise ConnectorNotFoundError(name)
        return connector

    async def get_connector_by_type(self, connector_type: str) -> Optional[Connector]:
        """First connector of a type (e.g. EMAIL, SLACK, SMS)."""
        for connector in await self.list_connectors():
            if connector.type.upper() == connector_type.upper():
                return connector
        return None


class EntityStore(ABC):
    """Alert / incident lookup used to seed trigger context."""

    @abstractmethod
    async def get_alert(self, alert_id: int) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_incident(self, incident_id: int) -> Optional[Dict[str, Any]]:
        pass


class ExecutionStore(ABC):
    """Persistence for execution records and playbook run statistics."""

    @abstractmethod
    async def create_execution_record(
        self,
        playbook_id: int,
        triggered_by: Optional[int] = None,
        trigger_entity_id: Optional[int] = None,
        trigger_source: Optional[str] = None,
    ) -> ExecutionRecord:
        """Create a record in `running` state."""
        pass

    @abstractmethod
    async def update_execution_record(
        self,
        execution_id: int,
        status: ExecutionStatus,
        completed_at: datetime,
        results: ExecutionResults,
        error: Optional[str] = None,
        execution_time: Optional[int] = None,
    ) -> ExecutionRecord:
        """Finalize a record."""
        pass

    @abstractmethod
    async def get_execution_record(self, execution_id: int) -> Optional[ExecutionRecord]:
        pass

    @abstractmethod
    async def increment_playbook_run_count(
        self, playbook_id: int, duration_ms: Optional[int] = None
    ) -> None:
        """Bump the playbook's run counter and fold the duration into its average."""
        pass


def running_average(
    current_avg: Optional[int], current_count: int, duration_ms: Optional[int]
) -> Optional[int]:
    """
    New average run duration after one more run.

    The first timed run sets the average; later runs are folded in.
    """
    if duration_ms is None:
        return current_avg
    if current_avg is None or current_count == 0:
        return duration_ms
    return round((current_avg * current_count + duration_ms) / (current_count + 1))


class InMemorySoarStore(PlaybookStore, ConnectorRegistry, EntityStore, ExecutionStore):
    """
    Dictionary-backed implementation of every engine collaborator.

    Used by the CLI and by tests.
    """

    def __init__(
        self,
        playbooks: Optional[List[Playbook]] = None,
        connectors: Optional[List[Connector]] = None,
        alerts: Optional[Dict[int, Dict[str, Any]]] = None,
        incidents: Optional[Dict[int, Dict[str, Any]]] = None,
    ):
        self.playbooks: Dict[int, Playbook] = {p.id: p for p in playbooks or []}
        self.connectors: List[Connector] = list(connectors or [])
        self.alerts: Dict[int, Dict[str, Any]] = dict(alerts or {})
        self.incidents: Dict[int, Dict[str, Any]] = dict(incidents or {})
        self.executions: Dict[int, ExecutionRecord] = {}
        self._ids = itertools.count(1)

    def add_playbook(self, playbook: Playbook) -> None:
        self.playbooks[playbook.id] = playbook

    def add_connector(self, connector: Connector) -> None:
        self.connectors.append(connector)

    async def get_playbook(self, playbook_id: int) -> Optional[Playbook]:
        return self.playbooks.get(playbook_id)

    async def list_connectors(self) -> List[Connector]:
        return list(self.connectors)

    async def get_alert(self, alert_id: int) -> Optional[Dict[str, Any]]:
        return self.alerts.get(alert_id)

    async def get_incident(self, incident_id: int) -> Optional[Dict[str, Any]]:
        return self.incidents.get(incident_id)

    async def create_execution_record(
        self,
        playbook_id: int,
        triggered_by: Optional[int] = None,
        trigger_entity_id: Optional[int] = None,
        trigger_source: Optional[str] = None,
    ) -> ExecutionRecord:
        record = ExecutionRecord(
            id=next(self._ids),
            playbook_id=playbook_id,
            status=ExecutionStatus.RUNNING,
            triggered_by=triggered_by,
            trigger_entity_id=trigger_entity_id,
            trigger_source=trigger_source,
        )
        self.executions[record.id] = record
        return record

    async def update_execution_record(
        self,
        execution_id: int,
        status: ExecutionStatus,
        completed_at: datetime,
        results: ExecutionResults,
        error: Optional[str] = None,
        execution_time: Optional[int] = None,
    ) -> ExecutionRecord:
        record = self.executions[execution_id].model_copy(
            update={
                "status": status,
                "completed_at": completed_at,
                "results": results,
                "error": error,
                "execution_time": execution_time,
            }
        )
        self.executions[execution_id] = record
        return record

    async def get_execution_record(self, execution_id: int) -> Optional[ExecutionRecord]:
        return self.executions.get(execution_id)

    async def increment_playbook_run_count(
        self, playbook_id: int, duration_ms: Optional[int] = None
    ) -> None:
        playbook = self.playbooks.get(playbook_id)
        if playbook is None:
            logger.warning(f"Playbook {playbook_id} not found while updating run statistics")
            return

        self.playbooks[playbook_id] = playbook.model_copy(
            update={
                "execution_count": playbook.execution_count + 1,
                "avg_execution_time": running_average(
                    playbook.avg_execution_time, playbook.execution_count, duration_ms
                ),
                "last_executed": utcnow(),
            }
        )


def _read_document(filepath: Path) -> Any:
    with open(filepath, "r") as f:
        if filepath.suffix.lower() == ".json":
            return json.load(f)
        return yaml.safe_load(f)


def load_playbooks_from_file(filepath: Path, strict: bool = False) -> List[Playbook]:
    """
    Load playbooks from a YAML or JSON file.

    Args:
        filepath: Path to playbook definition file
        strict: If True, reject playbooks whose graph has dangling references,
            duplicate step IDs or unsupported step types

    Returns:
        Loaded playbooks

    Raises:
        PlaybookValidationError: In strict mode, for the first inconsistent playbook

    Example YAML format:
        playbooks:
          - id: 1
            name: Contain compromised host
            steps:
              - id: isolate
                name: Isolate host
                type: edr_isolate_host
                config:
                  host: ws-042
                  edrSystem: CrowdStrike
                onSuccess: [notify]
              - id: notify
                name: Tell the SOC
                type: notify_slack
                config:
                  channel: "#soc"
                  message: Host ws-042 isolated
    """
    filepath = Path(filepath)
    data = _read_document(filepath)

    if not data or "playbooks" not in data:
        logger.warning(f"No playbooks found in {filepath}")
        return []

    playbooks = []
    for pb_data in data["playbooks"]:
        playbook = Playbook.model_validate(pb_data)

        problems = playbook.validate_graph()
        if problems:
            if strict:
                raise PlaybookValidationError(playbook.id, problems)
            for problem in problems:
                logger.warning(f"Playbook {playbook.id} ({playbook.name}): {problem}")

        playbooks.append(playbook)
        logger.info(f"Loaded playbook: {playbook.id} - {playbook.name}")

    logger.info(f"Loaded {len(playbooks)} playbooks from {filepath}")
    return playbooks


def load_connectors_from_file(filepath: Path) -> List[Connector]:
    """
    Load connectors from a YAML or JSON file with a top-level `connectors` list.
    """
    filepath = Path(filepath)
    data = _read_document(filepath)

    if not data or "connectors" not in data:
        logger.warning(f"No connectors found in {filepath}")
        return []

    connectors = [Connector.model_validate(c) for c in data["connectors"]]
    logger.info(f"Loaded {len(connectors)} connectors from {filepath}")
    return connectors


def load_entities_from_file(filepath: Path) -> Dict[str, Dict[int, Dict[str, Any]]]:
    """
    Load alerts and incidents (keyed by `id`) for offline runs.

    Returns:
        {"alerts": {...}, "incidents": {...}}
    """
    filepath = Path(filepath)
    data = _read_document(filepath) or {}
    return {
        kind: {int(entity["id"]): entity for entity in data.get(kind) or []}
        for kind in ("alerts", "incidents")
    }
