"""
Playbook execution API endpoints.

Manual trigger surface of the engine: start a run, read its execution
record, and validate a loaded playbook graph.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from ..runtime import SoarRuntime, build_runtime
from ..soar.errors import PlaybookNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["playbooks"])


class ExecuteRequest(BaseModel):
    """Body of a manual playbook run."""

    model_config = ConfigDict(populate_by_name=True)

    triggered_by: Optional[int] = Field(default=None, alias="triggeredBy")
    trigger_entity_id: Optional[int] = Field(default=None, alias="triggerEntityId")
    trigger_source: Optional[str] = Field(default=None, alias="triggerSource")


class ExecuteResponse(BaseModel):
    """Result of a manual playbook run."""

    success: bool
    executionId: int
    status: str


class ValidationReport(BaseModel):
    """Structural check of a playbook graph."""

    playbookId: int
    valid: bool
    errors: List[str] = []


def get_runtime(request: Request) -> SoarRuntime:
    """Runtime stored on the app, built from configuration on first use."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        runtime = build_runtime()
        request.app.state.runtime = runtime
    return runtime


@router.post("/playbooks/{playbook_id}/execute", response_model=ExecuteResponse)
async def execute_playbook(
    playbook_id: int,
    body: Optional[ExecuteRequest] = None,
    runtime: SoarRuntime = Depends(get_runtime),
) -> ExecuteResponse:
    """
    Run a playbook now.

    Args:
        playbook_id: Playbook to run
        body: Optional trigger information (user, alert / incident)

    Returns:
        Overall success and the ID of the execution record
    """
    body = body or ExecuteRequest()
    logger.info(f"Manual execution requested for playbook {playbook_id}")

    try:
        record = await runtime.execute(
            playbook_id,
            triggered_by=body.triggered_by,
            trigger_entity_id=body.trigger_entity_id,
            trigger_source=body.trigger_source,
        )
    except PlaybookNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return ExecuteResponse(
        success=record.status.value == "completed",
        executionId=record.id,
        status=record.status.value,
    )


@router.get("/executions/{execution_id}")
async def get_execution(
    execution_id: int,
    runtime: SoarRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    """Get a persisted execution record."""
    record = await runtime.executions.get_execution_record(execution_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Execution {execution_id} not found")
    return record.to_wire()


@router.get("/playbooks/{playbook_id}/validate", response_model=ValidationReport)
async def validate_playbook(
    playbook_id: int,
    runtime: SoarRuntime = Depends(get_runtime),
) -> ValidationReport:
    """Report dangling references, duplicate IDs and unsupported step types."""
    try:
        errors = await runtime.validate_playbook(playbook_id)
    except PlaybookNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return ValidationReport(playbookId=playbook_id, valid=not errors, errors=errors)
