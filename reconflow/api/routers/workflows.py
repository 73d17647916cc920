"""Workflow definitions and recent executions."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ...models.workflow import WorkflowDefinition, WorkflowExecution
from ...utils.errors import NotFoundError, WorkflowNotFoundError
from ...workflows import WorkflowEngine
from ..dependencies import get_workflow_engine

router = APIRouter()


@router.get("", response_model=List[WorkflowDefinition])
async def list_workflows(engine: WorkflowEngine = Depends(get_workflow_engine)):
    return engine.list_workflows()


@router.get("/executions", response_model=List[WorkflowExecution])
async def list_executions(
    workflow_id: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    return engine.list_executions(workflow_id, limit)


@router.get("/executions/{execution_id}", response_model=WorkflowExecution)
async def get_execution(execution_id: str, engine: WorkflowEngine = Depends(get_workflow_engine)):
    execution = engine.get_execution(execution_id)
    if execution is None:
        raise NotFoundError("Execution not found")
    return execution


@router.get("/{workflow_id}", response_model=WorkflowDefinition)
async def get_workflow(workflow_id: str, engine: WorkflowEngine = Depends(get_workflow_engine)):
    workflow = engine.get_workflow(workflow_id)
    if workflow is None:
        raise WorkflowNotFoundError(workflow_id)
    return workflow
