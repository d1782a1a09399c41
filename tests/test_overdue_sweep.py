from datetime import timedelta

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fixit.database import models
from fixit.database.config import Base
from fixit.database.models import utcnow
from fixit.tasks import celery_tasks


@pytest.fixture
def sync_session_factory(monkeypatch):
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    monkeypatch.setattr(celery_tasks, "SyncSessionLocal", factory)
    yield factory
    engine.dispose()


def seed_issue(session, assignee, age_hours, status="reported", category="roads"):
    created_at = utcnow() - timedelta(hours=age_hours)
    issue = models.Issue(
        title="Overflowing drain",
        description="Water on the road",
        category=category,
        status=status,
        latitude=1.0,
        longitude=2.0,
        assigned_to_id=assignee.id if assignee else None,
        created_at=created_at,
        updated_at=created_at,
    )
    issue.status_logs.append(models.StatusLog(status="reported", changed_at=created_at))
    session.add(issue)
    return issue


def test_sweep_notifies_each_overdue_issue_once(sync_session_factory):
    with sync_session_factory() as session:
        worker = models.User(name="Worker", email="worker@example.com", role="government", department="roads")
        session.add(worker)
        session.flush()
        overdue = seed_issue(session, worker, age_hours=100)
        seed_issue(session, worker, age_hours=10)
        seed_issue(session, None, age_hours=100)
        seed_issue(session, worker, age_hours=500, status="closed")
        session.commit()

    first = celery_tasks.sweep_overdue_issues()
    second = celery_tasks.sweep_overdue_issues()

    assert first == {"overdue": 2, "notified": 1}
    assert second == {"overdue": 2, "notified": 0}
    with sync_session_factory() as session:
        [notice] = session.execute(select(models.Notification)).scalars().all()
        assert notice.user_id == worker.id
        assert notice.issue_id == overdue.id
        assert notice.type == "escalation"
        assert session.get(models.Issue, overdue.id).overdue_notified_at is not None


def test_sweep_uses_configured_thresholds(sync_session_factory):
    with sync_session_factory() as session:
        worker = models.User(name="Worker", email="worker@example.com", role="government", department="water")
        session.add(worker)
        session.flush()
        seed_issue(session, worker, age_hours=10, category="water")
        session.add(models.DepartmentThreshold(department="water", max_pending_hours=4, max_in_progress_hours=8))
        session.commit()

    assert celery_tasks.sweep_overdue_issues() == {"overdue": 1, "notified": 1}
