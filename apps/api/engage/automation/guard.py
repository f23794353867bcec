from __future__ import annotations

import hashlib
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from engage.automation.models import AutomationExecutionLog
from engage.automation.triggers import Candidate


def idempotency_key(rule_id: uuid.UUID, entity_type: str, entity_id: uuid.UUID, bucket_id: str) -> str:
    raw = f"{rule_id}:{entity_type}:{entity_id}:{bucket_id}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class IdempotencyGuard:
    """Filters candidates a rule already acted on.

    The unique constraint on ``automation_execution_log.idempotency_key`` is the
    hard exclusion point; ``is_handled`` only avoids doing work that the insert
    would reject anyway.
    """

    def key_for(self, rule_id: uuid.UUID, candidate: Candidate) -> str:
        return idempotency_key(rule_id, candidate.entity_type, candidate.entity_id, candidate.bucket_id)

    def is_handled(self, session: Session, key: str) -> bool:
        existing = session.scalar(
            select(AutomationExecutionLog.id).where(AutomationExecutionLog.idempotency_key == key).limit(1)
        )
        return existing is not None

    def record(
        self,
        session: Session,
        *,
        rule_id: uuid.UUID,
        owner_user_id: uuid.UUID,
        key: str,
        candidate: Candidate,
        actions_performed: list[dict[str, Any]],
    ) -> AutomationExecutionLog:
        row = AutomationExecutionLog(
            rule_id=rule_id,
            owner_user_id=owner_user_id,
            status="success",
            idempotency_key=key,
            entity_type=candidate.entity_type,
            entity_id=candidate.entity_id,
            trigger_data=candidate.trigger_data,
            actions_performed=actions_performed,
        )
        session.add(row)
        return row
