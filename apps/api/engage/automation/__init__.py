from engage.automation.api import router
from engage.automation.executor import ActionExecutor, ActionResult
from engage.automation.guard import IdempotencyGuard, idempotency_key
from engage.automation.models import AutomationExecutionLog, AutomationRule
from engage.automation.schemas import (
    AutomationExecutionLogRead,
    AutomationRuleCreate,
    AutomationRuleRead,
    AutomationRuleUpdate,
    RuleScanResult,
)
from engage.automation.service import (
    AutomationRuleService,
    AutomationScanService,
    automation_rule_service,
    automation_scan_service,
)
from engage.automation.triggers import Candidate, get_evaluator

__all__ = [
    "router",
    "ActionExecutor",
    "ActionResult",
    "IdempotencyGuard",
    "idempotency_key",
    "AutomationRule",
    "AutomationExecutionLog",
    "AutomationRuleCreate",
    "AutomationRuleRead",
    "AutomationRuleUpdate",
    "AutomationExecutionLogRead",
    "RuleScanResult",
    "AutomationRuleService",
    "AutomationScanService",
    "automation_rule_service",
    "automation_scan_service",
    "Candidate",
    "get_evaluator",
]
