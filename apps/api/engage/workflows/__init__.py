from engage.workflows.actions import ActionContext, WorkflowActionRunner
from engage.workflows.api import router
from engage.workflows.dispatcher import WorkflowDispatcher
from engage.workflows.engine import WorkflowEngine, conditions_match
from engage.workflows.models import Workflow, WorkflowExecution
from engage.workflows.schemas import (
    WorkflowCreate,
    WorkflowExecutionRead,
    WorkflowRead,
    WorkflowTriggerRequest,
    WorkflowUpdate,
)
from engage.workflows.service import WorkflowService, workflow_service

__all__ = [
    "router",
    "ActionContext",
    "WorkflowActionRunner",
    "WorkflowDispatcher",
    "WorkflowEngine",
    "conditions_match",
    "Workflow",
    "WorkflowExecution",
    "WorkflowCreate",
    "WorkflowUpdate",
    "WorkflowRead",
    "WorkflowTriggerRequest",
    "WorkflowExecutionRead",
    "WorkflowService",
    "workflow_service",
]
