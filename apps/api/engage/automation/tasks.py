from __future__ import annotations

import logging
from typing import Any

from engage.automation.service import automation_scan_service
from engage.core.celery_app import celery_app
from engage.core.database import SessionLocal

logger = logging.getLogger("engage.automation.tasks")


@celery_app.task(name="engage.automation.run_scan")
def run_scan() -> dict[str, Any]:
    session = SessionLocal()
    try:
        results = automation_scan_service.run_automation_scan(session)
    finally:
        session.close()
    return {
        "rules_processed": len(results),
        "results": [item.model_dump(mode="json", exclude_none=True) for item in results],
    }
