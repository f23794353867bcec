from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from engage import audit
from engage.automation.executor import ActionExecutor
from engage.automation.guard import IdempotencyGuard
from engage.automation.models import AutomationExecutionLog, AutomationRule
from engage.automation.schemas import (
    AutomationExecutionLogRead,
    AutomationRuleCreate,
    AutomationRuleRead,
    AutomationRuleUpdate,
    RuleScanResult,
    validate_trigger_config,
)
from engage.automation.triggers import RuleSnapshot, get_evaluator
from engage.context import get_correlation_id, reset_correlation_id, set_correlation_id
from engage.core.config import get_settings
from engage.core.timeutils import as_utc, utcnow
from engage.errors import EngageError, NotFoundError, ValidationError
from engage.metrics import observe_automation_rule, observe_automation_scan
from engage.otel import set_span_attributes

logger = logging.getLogger("engage.automation")
tracer = trace.get_tracer("engage.automation")


class AutomationRuleService:
    entity_type = "automation.rule"

    def list_rules(self, session: Session, owner_user_id: uuid.UUID) -> list[AutomationRuleRead]:
        rows = session.scalars(
            select(AutomationRule)
            .where(AutomationRule.owner_user_id == owner_user_id)
            .order_by(AutomationRule.created_at.desc())
        ).all()
        return [AutomationRuleRead.model_validate(row) for row in rows]

    def create_rule(
        self,
        session: Session,
        owner_user_id: uuid.UUID,
        dto: AutomationRuleCreate,
        actor_user_id: str | None = None,
    ) -> AutomationRuleRead:
        rule = AutomationRule(
            owner_user_id=owner_user_id,
            name=dto.name.strip(),
            description=dto.description,
            trigger_type=dto.trigger_type,
            trigger_config=dto.trigger_config,
            action_type=dto.action_type,
            action_config=dto.action_config,
            is_active=dto.is_active,
        )
        session.add(rule)
        session.flush()
        read_model = AutomationRuleRead.model_validate(rule)
        audit.record(
            actor_user_id=actor_user_id or str(owner_user_id),
            entity_type=self.entity_type,
            entity_id=str(rule.id),
            action="create",
            before=None,
            after=read_model.model_dump(mode="json"),
        )
        session.commit()
        return read_model

    def update_rule(
        self,
        session: Session,
        owner_user_id: uuid.UUID,
        rule_id: uuid.UUID,
        dto: AutomationRuleUpdate,
        actor_user_id: str | None = None,
    ) -> AutomationRuleRead:
        rule = self._get_owned(session, owner_user_id, rule_id)
        before = AutomationRuleRead.model_validate(rule).model_dump(mode="json")

        changes = dto.model_dump(exclude_unset=True)
        if "trigger_config" in changes and changes["trigger_config"] is not None:
            try:
                changes["trigger_config"] = validate_trigger_config(rule.trigger_type, changes["trigger_config"])
            except ValueError as exc:
                raise ValidationError("Invalid trigger_config", details=str(exc)) from exc
        for key, value in changes.items():
            if value is None and key != "description":
                continue
            setattr(rule, key, value)
        rule.updated_at = utcnow()
        session.flush()

        read_model = AutomationRuleRead.model_validate(rule)
        audit.record(
            actor_user_id=actor_user_id or str(owner_user_id),
            entity_type=self.entity_type,
            entity_id=str(rule.id),
            action="update",
            before=before,
            after=read_model.model_dump(mode="json"),
        )
        session.commit()
        return read_model

    def toggle_rule(
        self,
        session: Session,
        owner_user_id: uuid.UUID,
        rule_id: uuid.UUID,
        actor_user_id: str | None = None,
    ) -> AutomationRuleRead:
        rule = self._get_owned(session, owner_user_id, rule_id)
        rule.is_active = not rule.is_active
        rule.updated_at = utcnow()
        session.flush()
        read_model = AutomationRuleRead.model_validate(rule)
        audit.record(
            actor_user_id=actor_user_id or str(owner_user_id),
            entity_type=self.entity_type,
            entity_id=str(rule.id),
            action="toggle",
            before={"is_active": not rule.is_active},
            after={"is_active": rule.is_active},
        )
        session.commit()
        return read_model

    def delete_rule(
        self,
        session: Session,
        owner_user_id: uuid.UUID,
        rule_id: uuid.UUID,
        actor_user_id: str | None = None,
    ) -> None:
        rule = self._get_owned(session, owner_user_id, rule_id)
        before = AutomationRuleRead.model_validate(rule).model_dump(mode="json")
        session.delete(rule)
        audit.record(
            actor_user_id=actor_user_id or str(owner_user_id),
            entity_type=self.entity_type,
            entity_id=str(rule_id),
            action="delete",
            before=before,
            after=None,
        )
        session.commit()

    def list_logs(
        self,
        session: Session,
        owner_user_id: uuid.UUID,
        rule_id: uuid.UUID | None = None,
        limit: int = 100,
    ) -> list[AutomationExecutionLogRead]:
        stmt = select(AutomationExecutionLog).where(AutomationExecutionLog.owner_user_id == owner_user_id)
        if rule_id is not None:
            stmt = stmt.where(AutomationExecutionLog.rule_id == rule_id)
        rows = session.scalars(stmt.order_by(AutomationExecutionLog.executed_at.desc()).limit(limit)).all()
        return [AutomationExecutionLogRead.model_validate(row) for row in rows]

    def _get_owned(self, session: Session, owner_user_id: uuid.UUID, rule_id: uuid.UUID) -> AutomationRule:
        rule = session.scalar(
            select(AutomationRule).where(
                and_(AutomationRule.id == rule_id, AutomationRule.owner_user_id == owner_user_id)
            )
        )
        if rule is None:
            raise NotFoundError("Automation rule", rule_id)
        return rule


@dataclass(slots=True)
class AutomationScanService:
    """Periodic batch that evaluates every active automation rule.

    Rules run sequentially in one session. Each created task is committed
    together with its execution-log row, so a rule that fails halfway keeps
    the tasks it already produced and the remaining rules still run. Rules
    deleted or paused after the scan starts are skipped.
    """

    guard: IdempotencyGuard = field(default_factory=IdempotencyGuard)
    executor: ActionExecutor = field(default_factory=ActionExecutor)

    def run_automation_scan(self, session: Session, now: datetime | None = None) -> list[RuleScanResult]:
        scan_now = as_utc(now) if now is not None else utcnow()
        correlation_id = get_correlation_id() or f"automation-scan-{uuid.uuid4()}"
        token = set_correlation_id(correlation_id)
        started = time.perf_counter()
        results: list[RuleScanResult] = []

        try:
            with tracer.start_as_current_span("automation.scan") as span:
                rules = [
                    RuleSnapshot(
                        id=row.id,
                        owner_user_id=row.owner_user_id,
                        name=row.name,
                        trigger_type=row.trigger_type,
                        trigger_config=dict(row.trigger_config or {}),
                        action_config=dict(row.action_config or {}),
                    )
                    for row in session.execute(
                        select(
                            AutomationRule.id,
                            AutomationRule.owner_user_id,
                            AutomationRule.name,
                            AutomationRule.trigger_type,
                            AutomationRule.trigger_config,
                            AutomationRule.action_config,
                        )
                        .where(AutomationRule.is_active.is_(True))
                        .order_by(AutomationRule.created_at, AutomationRule.id)
                    ).all()
                ]
                set_span_attributes(span, {"automation.rules": len(rules), "correlation_id": correlation_id})

                for rule in rules:
                    result = self._run_rule(session, rule, scan_now)
                    if result is not None:
                        results.append(result)

            logger.info(
                "automation_scan_completed",
                extra={
                    "rules_processed": len(results),
                    "tasks_created": sum(item.tasks_created or 0 for item in results),
                },
            )
            return results
        finally:
            observe_automation_scan(time.perf_counter() - started)
            reset_correlation_id(token)

    def _run_rule(self, session: Session, rule: RuleSnapshot, now: datetime) -> RuleScanResult | None:
        rule_id = rule.id
        rule_name = rule.name
        trigger_type = rule.trigger_type
        owner_user_id = rule.owner_user_id
        tasks_created = 0

        with tracer.start_as_current_span("automation.rule") as span:
            set_span_attributes(span, {"automation.rule_id": rule_id, "automation.trigger_type": trigger_type})
            try:
                if not self._still_active(session, rule_id):
                    logger.info(
                        "automation_rule_skipped",
                        extra={"rule_id": str(rule_id), "rule_name": rule_name, "trigger_type": trigger_type},
                    )
                    return None

                evaluator = get_evaluator(trigger_type)
                if evaluator is None:
                    raise ValidationError(f"Unknown trigger type: {trigger_type}")

                priority = str(rule.action_config.get("priority") or "medium")
                candidates = evaluator.evaluate(session, rule, now, get_settings())
                for candidate in candidates:
                    key = self.guard.key_for(rule_id, candidate)
                    if self.guard.is_handled(session, key):
                        continue

                    result = self.executor.execute(
                        session,
                        owner_user_id=owner_user_id,
                        candidate=candidate,
                        priority=priority,
                        now=now,
                    )
                    if not result.success:
                        raise EngageError(result.error or "action failed")

                    self.guard.record(
                        session,
                        rule_id=rule_id,
                        owner_user_id=owner_user_id,
                        key=key,
                        candidate=candidate,
                        actions_performed=result.as_actions_performed(),
                    )
                    try:
                        session.commit()
                    except IntegrityError:
                        # Another scan recorded the same key first.
                        session.rollback()
                        logger.info(
                            "automation_candidate_already_handled",
                            extra={"rule_id": str(rule_id), "trigger_type": trigger_type},
                        )
                        continue
                    tasks_created += 1
            except Exception as exc:
                session.rollback()
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)[:200]))
                logger.exception(
                    "automation_rule_failed",
                    extra={
                        "rule_id": str(rule_id),
                        "rule_name": rule_name,
                        "trigger_type": trigger_type,
                        "tasks_created": tasks_created,
                        "error": str(exc)[:500],
                    },
                )
                self._record_error(session, rule_id, owner_user_id, trigger_type, exc)
                observe_automation_rule(trigger_type, "error", tasks_created)
                return RuleScanResult(rule_id=rule_id, rule_name=rule_name, error=str(exc)[:500])

            set_span_attributes(span, {"automation.tasks_created": tasks_created})

        logger.info(
            "automation_rule_processed",
            extra={
                "rule_id": str(rule_id),
                "rule_name": rule_name,
                "trigger_type": trigger_type,
                "tasks_created": tasks_created,
            },
        )
        observe_automation_rule(trigger_type, "success", tasks_created)
        return RuleScanResult(rule_id=rule_id, rule_name=rule_name, tasks_created=tasks_created)

    def _still_active(self, session: Session, rule_id: uuid.UUID) -> bool:
        found = session.scalar(
            select(AutomationRule.id).where(
                and_(AutomationRule.id == rule_id, AutomationRule.is_active.is_(True))
            )
        )
        return found is not None

    def _record_error(
        self,
        session: Session,
        rule_id: uuid.UUID,
        owner_user_id: uuid.UUID,
        trigger_type: str,
        exc: Exception,
    ) -> None:
        trigger_data: dict[str, Any] = {"trigger_type": trigger_type}
        session.add(
            AutomationExecutionLog(
                rule_id=rule_id,
                owner_user_id=owner_user_id,
                status="error",
                trigger_data=trigger_data,
                error_message=str(exc)[:1000],
            )
        )
        try:
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            logger.exception("automation_error_log_failed", extra={"rule_id": str(rule_id)})


automation_rule_service = AutomationRuleService()
automation_scan_service = AutomationScanService()
