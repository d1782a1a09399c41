"""Celery background tasks for periodic, long-running operations."""

import logging

from sqlalchemy import select

from fixit.celery_app import app
from fixit.database import models
from fixit.database.config import SyncSessionLocal
from fixit.database.models import utcnow
from fixit.overdue import ACTIVE_STATUSES, evaluate_overdue, needs_overdue_notice
from fixit.tasks.notifications import notify_sync
from fixit.thresholds import get_all_thresholds_sync

logger = logging.getLogger(__name__)


@app.task(bind=True, max_retries=3, default_retry_delay=60)
def sweep_overdue_issues(self):
    """
    Notify assignees about issues that went past their department threshold.

    Runs the overdue evaluator over every active reported / in-progress issue.
    Each issue gets at most one overdue notification per stay in a status:
    a notice is sent again only after the issue moves to a new status and
    goes overdue there too.

    Returns:
        dict with the number of overdue issues and notifications sent

    Retries:
        - Max 3 retries on failure
        - Delay: 60s, 120s, 180s for retries 1, 2, 3
    """
    db = SyncSessionLocal()

    try:
        now = utcnow()
        thresholds = get_all_thresholds_sync(db)
        issues = db.execute(
            select(models.Issue).where(
                models.Issue.is_active.is_(True),
                models.Issue.status.in_(ACTIVE_STATUSES),
            )
        ).scalars().all()

        report = evaluate_overdue(issues, thresholds, now)
        issues_by_id = {issue.id: issue for issue in issues}

        notified = 0
        for overdue in report.all:
            issue = issues_by_id[overdue.id]
            if not issue.assigned_to_id or not needs_overdue_notice(issue, overdue):
                continue
            state = "pending" if overdue.status == "reported" else "in progress"
            notify_sync(
                db,
                issue.assigned_to_id,
                type="escalation",
                title="Issue Overdue",
                message=(
                    f'"{issue.title}" has been {state} for {overdue.age_hours:.0f} hours, '
                    f"{overdue.overdue_by:.0f} hours past the {overdue.threshold_hours}-hour limit."
                ),
                issue_id=issue.id,
                priority="high",
                icon="alert",
            )
            issue.overdue_notified_at = now
            notified += 1

        db.commit()
        logger.info(
            "Overdue sweep finished",
            extra={"overdue": len(report.all), "notified": notified},
        )
        return {"overdue": len(report.all), "notified": notified}

    except Exception as exc:
        db.rollback()
        logger.error(f"Overdue sweep failed: {str(exc)}", exc_info=True)

        # Retry with increasing delay
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))

    finally:
        db.close()
