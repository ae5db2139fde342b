"""
Playbook execution service: the lifecycle of one playbook run.

Creates the execution record, seeds the context from the triggering alert or
incident, drives the graph walker, and finalizes the record and the
playbook's run statistics.
"""

import logging
import time
from typing import Optional

from ..config import EngineSettings, NotificationSettings
from .context import ExecutionContext
from .dispatcher import ActionDispatcher
from .engine import PlaybookGraphWalker
from .errors import SoarError
from .execution_log import ExecutionLogger
from .handlers import StepHandlers
from .models import (
    ExecutionRecord,
    ExecutionResults,
    ExecutionStatus,
    Playbook,
    RevisitPolicy,
    utcnow,
)
from .storage import ConnectorRegistry, EntityStore, ExecutionStore, PlaybookStore

logger = logging.getLogger(__name__)

TRIGGER_SOURCES = ("alert", "incident")


class PlaybookExecutionService:
    """
    Runs playbooks on demand.

    All collaborators are injected; one service instance can run any number
    of playbooks, each run getting its own context, log and walker.
    """

    def __init__(
        self,
        playbooks: PlaybookStore,
        executions: ExecutionStore,
        entities: EntityStore,
        connectors: ConnectorRegistry,
        dispatcher: ActionDispatcher,
        settings: Optional[EngineSettings] = None,
        notification_settings: Optional[NotificationSettings] = None,
        revisit_policy: Optional[RevisitPolicy] = None,
    ):
        """
        Initialize the execution service.

        Args:
            playbooks: Playbook definitions
            executions: Execution record and run statistics persistence
            entities: Alert / incident lookup
            connectors: Connector registry
            dispatcher: Action dispatcher for external calls
            settings: Engine settings. If None, loaded from the environment.
            notification_settings: Notification fallbacks. If None, loaded
                from the environment.
            revisit_policy: Overrides `settings.revisit_policy`
        """
        self.playbooks = playbooks
        self.executions = executions
        self.entities = entities
        self.settings = settings or EngineSettings()
        self.revisit_policy = RevisitPolicy(revisit_policy or self.settings.revisit_policy)
        self.handlers = StepHandlers(
            dispatcher,
            connectors,
            entities,
            settings=self.settings,
            notification_settings=notification_settings,
        )

    async def run(
        self,
        playbook_id: int,
        triggered_by: Optional[int] = None,
        trigger_entity_id: Optional[int] = None,
        trigger_source: Optional[str] = None,
    ) -> bool:
        """
        Execute a playbook.

        Args:
            playbook_id: Playbook to execute
            triggered_by: ID of the user who started the run
            trigger_entity_id: ID of the triggering alert or incident
            trigger_source: "alert" or "incident"

        Returns:
            True if the run completed successfully. Never raises.
        """
        try:
            record = await self.execute(
                playbook_id,
                triggered_by=triggered_by,
                trigger_entity_id=trigger_entity_id,
                trigger_source=trigger_source,
            )
        except Exception as e:
            logger.error(f"Error executing playbook {playbook_id}: {e}", exc_info=True)
            return False

        return record is not None and record.status == ExecutionStatus.COMPLETED

    async def execute(
        self,
        playbook_id: int,
        triggered_by: Optional[int] = None,
        trigger_entity_id: Optional[int] = None,
        trigger_source: Optional[str] = None,
    ) -> Optional[ExecutionRecord]:
        """
        Execute a playbook and return its finalized execution record.

        Returns:
            The finalized record, or None if the playbook does not exist

        Raises:
            Exception: Only for persistence failures of the execution store
        """
        playbook = await self.playbooks.get_playbook(playbook_id)
        if playbook is None:
            logger.error(f"Playbook with ID {playbook_id} not found")
            return None

        record = await self.executions.create_execution_record(
            playbook.id,
            triggered_by=triggered_by,
            trigger_entity_id=trigger_entity_id,
            trigger_source=trigger_source,
        )
        log = ExecutionLogger(record.id)
        context = ExecutionContext()

        await self._seed_trigger(context, log, trigger_entity_id, trigger_source)
        log.info(f"Playbook execution started: {playbook.name}")

        walker = PlaybookGraphWalker(
            playbook,
            self.handlers,
            context,
            log,
            record.id,
            revisit_policy=self.revisit_policy,
        )

        started = time.monotonic()
        error = None
        try:
            success = await walker.execute()
        except SoarError as e:
            log.error(str(e))
            success, error = False, str(e)
        except Exception as e:
            log.error(f"Error executing playbook: {e}")
            success, error = False, str(e)
        duration_ms = int(round((time.monotonic() - started) * 1000))

        return await self._finish(record, playbook, log, context, success, error, duration_ms)

    async def _seed_trigger(
        self,
        context: ExecutionContext,
        log: ExecutionLogger,
        entity_id: Optional[int],
        source: Optional[str],
    ) -> None:
        if entity_id is None or source not in TRIGGER_SOURCES:
            return

        try:
            if source == "alert":
                entity = await self.entities.get_alert(entity_id)
            else:
                entity = await self.entities.get_incident(entity_id)
        except Exception as e:
            log.warning(f"Failed to load trigger {source} with ID {entity_id}: {e}")
            return

        if entity is None:
            log.warning(f"Trigger {source} with ID {entity_id} not found")
            return

        context.seed_trigger(source, entity)

    async def _finish(
        self,
        record: ExecutionRecord,
        playbook: Playbook,
        log: ExecutionLogger,
        context: ExecutionContext,
        success: bool,
        error: Optional[str],
        duration_ms: int,
    ) -> ExecutionRecord:
        status = ExecutionStatus.COMPLETED if success else ExecutionStatus.FAILED
        log.info(f"Playbook execution finished with status: {status.value}")

        updated = await self.executions.update_execution_record(
            record.id,
            status=status,
            completed_at=utcnow(),
            results=ExecutionResults(
                success=success,
                logs=list(log.entries),
                context=context.snapshot(),
            ),
            error=error,
            execution_time=duration_ms,
        )
        await self.executions.increment_playbook_run_count(playbook.id, duration_ms)
        return updated
