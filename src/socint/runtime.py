"""
Wiring of the playbook engine for the CLI and the HTTP server.

Playbooks, connectors and entities come from YAML/JSON files; execution
records go to SQLite (or memory, when no database path is given).
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .config import AppConfig, get_config
from .soar.dispatcher import ActionDispatcher
from .soar.errors import PlaybookNotFoundError
from .soar.models import ExecutionRecord, Playbook
from .soar.service import PlaybookExecutionService
from .soar.sqlite_store import SQLiteExecutionStore
from .soar.storage import (
    ExecutionStore,
    InMemorySoarStore,
    load_connectors_from_file,
    load_entities_from_file,
    load_playbooks_from_file,
)

logger = logging.getLogger(__name__)


@dataclass
class SoarRuntime:
    """Everything needed to run and inspect playbook executions."""

    store: InMemorySoarStore
    executions: ExecutionStore
    dispatcher: ActionDispatcher
    service: PlaybookExecutionService

    async def get_playbook(self, playbook_id: int) -> Playbook:
        """
        Raises:
            PlaybookNotFoundError: If the playbook is not loaded
        """
        playbook = await self.store.get_playbook(playbook_id)
        if playbook is None:
            raise PlaybookNotFoundError(playbook_id)
        return playbook

    async def validate_playbook(self, playbook_id: int) -> List[str]:
        """Structural problems of a loaded playbook (empty if consistent)."""
        playbook = await self.get_playbook(playbook_id)
        return playbook.validate_graph()

    async def execute(
        self,
        playbook_id: int,
        triggered_by: Optional[int] = None,
        trigger_entity_id: Optional[int] = None,
        trigger_source: Optional[str] = None,
    ) -> ExecutionRecord:
        """
        Run a playbook and return its execution record.

        Raises:
            PlaybookNotFoundError: If the playbook is not loaded
        """
        record = await self.service.execute(
            playbook_id,
            triggered_by=triggered_by,
            trigger_entity_id=trigger_entity_id,
            trigger_source=trigger_source,
        )
        if record is None:
            raise PlaybookNotFoundError(playbook_id)
        return record

    async def aclose(self) -> None:
        await self.dispatcher.aclose()


def build_runtime(
    config: Optional[AppConfig] = None,
    playbooks_file: Optional[str] = None,
    connectors_file: Optional[str] = None,
    entities_file: Optional[str] = None,
    db_path: Optional[str] = None,
    in_memory: bool = False,
    dispatcher: Optional[ActionDispatcher] = None,
) -> SoarRuntime:
    """
    Build a runtime from configuration, with optional file overrides.

    Args:
        config: Application config. If None, uses get_config().
        playbooks_file: Overrides `storage.playbooks_file`
        connectors_file: Overrides `storage.connectors_file`
        entities_file: Alerts / incidents file for trigger lookups
        db_path: Overrides `storage.db_path`
        in_memory: Keep execution records in memory instead of SQLite
        dispatcher: Action dispatcher. If None, one is created.

    Returns:
        SoarRuntime ready to execute playbooks
    """
    config = config or get_config()

    playbooks_path = playbooks_file or config.storage.playbooks_file
    connectors_path = connectors_file or config.storage.connectors_file

    store = InMemorySoarStore(playbooks=load_playbooks_from_file(Path(playbooks_path)))

    if connectors_path:
        for connector in load_connectors_from_file(Path(connectors_path)):
            store.add_connector(connector)

    if entities_file:
        entities = load_entities_from_file(Path(entities_file))
        store.alerts.update(entities["alerts"])
        store.incidents.update(entities["incidents"])

    if in_memory:
        executions: ExecutionStore = store
    else:
        executions = SQLiteExecutionStore(db_path or config.storage.db_path)

    dispatcher = dispatcher or ActionDispatcher(
        default_timeout_ms=config.engine.default_timeout_ms
    )

    service = PlaybookExecutionService(
        playbooks=store,
        executions=executions,
        entities=store,
        connectors=store,
        dispatcher=dispatcher,
        settings=config.engine,
        notification_settings=config.notifications,
    )

    logger.info(
        f"SOAR runtime ready: {len(store.playbooks)} playbooks, "
        f"{len(store.connectors)} connectors"
    )
    return SoarRuntime(
        store=store,
        executions=executions,
        dispatcher=dispatcher,
        service=service,
    )
