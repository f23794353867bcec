from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


AutomationTriggerType = Literal["meeting_scheduled", "deal_stage_changed", "contact_inactive"]
AutomationActionType = Literal["create_task"]
TaskPriority = Literal["low", "medium", "high"]


class MeetingScheduledConfig(BaseModel):
    days_delay: int = Field(default=3, ge=0, le=365)


class DealStageChangedConfig(BaseModel):
    stage: str = Field(min_length=1)
    lookback_minutes: int | None = Field(default=None, ge=1, le=7 * 24 * 60)


class ContactInactiveConfig(BaseModel):
    days_inactive: int = Field(default=30, ge=1, le=3650)


class CreateTaskActionConfig(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    priority: TaskPriority = "medium"
    description: str | None = None


_TRIGGER_CONFIG_MODELS: dict[str, type[BaseModel]] = {
    "meeting_scheduled": MeetingScheduledConfig,
    "deal_stage_changed": DealStageChangedConfig,
    "contact_inactive": ContactInactiveConfig,
}


def validate_trigger_config(trigger_type: str, config: dict[str, Any]) -> dict[str, Any]:
    model = _TRIGGER_CONFIG_MODELS[trigger_type]
    return model.model_validate(config).model_dump(exclude_none=True)


class AutomationRuleCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    trigger_type: AutomationTriggerType
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    action_type: AutomationActionType = "create_task"
    action_config: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True

    @model_validator(mode="after")
    def validate_configs(self) -> "AutomationRuleCreate":
        self.trigger_config = validate_trigger_config(self.trigger_type, self.trigger_config)
        self.action_config = CreateTaskActionConfig.model_validate(self.action_config).model_dump(exclude_none=True)
        return self


class AutomationRuleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    trigger_config: dict[str, Any] | None = None
    action_config: dict[str, Any] | None = None
    is_active: bool | None = None

    @model_validator(mode="after")
    def validate_action_config(self) -> "AutomationRuleUpdate":
        if self.action_config is not None:
            self.action_config = CreateTaskActionConfig.model_validate(self.action_config).model_dump(exclude_none=True)
        return self


class AutomationRuleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_user_id: UUID
    name: str
    description: str | None
    trigger_type: str
    trigger_config: dict[str, Any]
    action_type: str
    action_config: dict[str, Any]
    is_active: bool
    created_at: datetime
    updated_at: datetime


class AutomationExecutionLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    rule_id: UUID | None
    status: str
    entity_type: str | None
    entity_id: UUID | None
    trigger_data: dict[str, Any] | None
    actions_performed: list[dict[str, Any]] | None
    error_message: str | None
    executed_at: datetime


class RuleScanResult(BaseModel):
    rule_id: UUID
    rule_name: str
    tasks_created: int | None = None
    error: str | None = None


class AutomationScanResponse(BaseModel):
    rules_processed: int
    results: list[RuleScanResult]
