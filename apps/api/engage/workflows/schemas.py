from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, TypeAdapter, model_validator


WorkflowTriggerType = Literal["contact_created", "deal_stage_changed", "task_completed", "manual", "scheduled"]
UpdatableEntity = Literal["contact", "deal", "task"]


class CreateTaskConfig(BaseModel):
    title: str = Field(default="Automated Task", min_length=1)
    priority: Literal["low", "medium", "high"] = "medium"
    description: str | None = None
    due_in_days: int | None = Field(default=None, ge=0, le=365)


class SendNotificationConfig(BaseModel):
    title: str = Field(min_length=1)
    message: str | None = None
    link: str | None = None


class UpdateFieldConfig(BaseModel):
    entity: UpdatableEntity
    field: str = Field(min_length=1)
    value: Any = None
    entity_id: UUID | None = None


class TriggerWebhookConfig(BaseModel):
    url: AnyHttpUrl


class WorkflowActionCreateTask(BaseModel):
    type: Literal["create_task"]
    config: CreateTaskConfig = Field(default_factory=CreateTaskConfig)


class WorkflowActionSendNotification(BaseModel):
    type: Literal["send_notification"]
    config: SendNotificationConfig


class WorkflowActionUpdateField(BaseModel):
    type: Literal["update_field"]
    config: UpdateFieldConfig


class WorkflowActionTriggerWebhook(BaseModel):
    type: Literal["trigger_webhook"]
    config: TriggerWebhookConfig


WorkflowAction = Annotated[
    WorkflowActionCreateTask | WorkflowActionSendNotification | WorkflowActionUpdateField | WorkflowActionTriggerWebhook,
    Field(discriminator="type"),
]

_workflow_action_list_adapter = TypeAdapter(list[WorkflowAction])


def normalize_actions(actions: list[dict[str, Any]]) -> list[dict[str, Any]]:
    parsed = _workflow_action_list_adapter.validate_python(actions)
    return [action.model_dump(mode="json", exclude_none=True) for action in parsed]


class WorkflowCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    trigger_type: WorkflowTriggerType
    trigger_conditions: dict[str, Any] = Field(default_factory=dict)
    actions: list[dict[str, Any]] = Field(default_factory=list)
    is_active: bool = True

    @model_validator(mode="after")
    def validate_actions(self) -> "WorkflowCreate":
        self.actions = normalize_actions(self.actions)
        return self


class WorkflowUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    trigger_type: WorkflowTriggerType | None = None
    trigger_conditions: dict[str, Any] | None = None
    actions: list[dict[str, Any]] | None = None
    is_active: bool | None = None

    @model_validator(mode="after")
    def validate_actions(self) -> "WorkflowUpdate":
        if self.actions is not None:
            self.actions = normalize_actions(self.actions)
        return self


class WorkflowRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_user_id: UUID
    name: str
    description: str | None
    trigger_type: str
    trigger_conditions: dict[str, Any]
    actions: list[dict[str, Any]]
    is_active: bool
    created_at: datetime
    updated_at: datetime


class WorkflowTriggerRequest(BaseModel):
    trigger_type: WorkflowTriggerType = "manual"
    trigger_data: dict[str, Any] = Field(default_factory=dict)


class WorkflowExecutionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    workflow_id: UUID | None
    trigger_type: str
    trigger_data: dict[str, Any] | None
    status: str
    error_message: str | None
    action_results: list[dict[str, Any]] | None
    executed_at: datetime
    completed_at: datetime | None
