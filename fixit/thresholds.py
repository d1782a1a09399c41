"""Per-department overdue thresholds.

A department's threshold is the maximum number of hours an issue may stay in
``reported`` or ``in_progress`` before the government dashboard flags it as
overdue. Departments without an active row resolve to ``DEFAULT_THRESHOLDS``,
the single source of the fallback values used by both the store lookups below
and the overdue evaluator.
"""

import logging
import os
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from fixit.database import models
from fixit.errors import ValidationError
from fixit.schemas import DEPARTMENTS

logger = logging.getLogger(__name__)

MIN_THRESHOLD_HOURS = 1


@dataclass(frozen=True)
class ResolvedThreshold:
    department: str
    max_pending_hours: int
    max_in_progress_hours: int
    description: str = ""
    is_active: bool = True
    is_default: bool = False

    def limit_for(self, status: str) -> Optional[int]:
        """Hours allowed in ``status``, or None for statuses that never go overdue."""
        if status == "reported":
            return self.max_pending_hours
        if status == "in_progress":
            return self.max_in_progress_hours
        return None


@dataclass(frozen=True)
class ThresholdDefaults:
    max_pending_hours: int = 72
    max_in_progress_hours: int = 168

    def for_department(self, department: str) -> ResolvedThreshold:
        return ResolvedThreshold(
            department=department,
            max_pending_hours=self.max_pending_hours,
            max_in_progress_hours=self.max_in_progress_hours,
            is_default=True,
        )


def validate_department(department: str) -> str:
    if department not in DEPARTMENTS:
        raise ValidationError("Invalid department")
    return department


def validate_hours(value: int, label: str) -> int:
    if value is None or value < MIN_THRESHOLD_HOURS:
        raise ValidationError(f"{label} must be at least {MIN_THRESHOLD_HOURS}")
    return value


def load_defaults() -> ThresholdDefaults:
    """Fallback limits from DEFAULT_MAX_PENDING_HOURS and DEFAULT_MAX_IN_PROGRESS_HOURS."""
    return ThresholdDefaults(
        max_pending_hours=validate_hours(int(os.getenv("DEFAULT_MAX_PENDING_HOURS", 72)), "DEFAULT_MAX_PENDING_HOURS"),
        max_in_progress_hours=validate_hours(
            int(os.getenv("DEFAULT_MAX_IN_PROGRESS_HOURS", 168)), "DEFAULT_MAX_IN_PROGRESS_HOURS"
        ),
    )


DEFAULT_THRESHOLDS = load_defaults()


def _from_row(row: models.DepartmentThreshold) -> ResolvedThreshold:
    return ResolvedThreshold(
        department=row.department,
        max_pending_hours=row.max_pending_hours,
        max_in_progress_hours=row.max_in_progress_hours,
        description=row.description or "",
        is_active=row.is_active,
    )


def resolve_thresholds(
    rows: Iterable[models.DepartmentThreshold],
    defaults: ThresholdDefaults = DEFAULT_THRESHOLDS,
) -> dict[str, ResolvedThreshold]:
    """Map every department to its active threshold or the defaults."""
    configured = {row.department: _from_row(row) for row in rows if row.is_active}
    return {
        department: configured.get(department) or defaults.for_department(department)
        for department in DEPARTMENTS
    }


async def get_threshold(
    db: AsyncSession, department: str, defaults: ThresholdDefaults = DEFAULT_THRESHOLDS
) -> ResolvedThreshold:
    result = await db.execute(
        select(models.DepartmentThreshold).where(
            models.DepartmentThreshold.department == department,
            models.DepartmentThreshold.is_active.is_(True),
        )
    )
    row = result.scalars().first()
    return _from_row(row) if row else defaults.for_department(department)


async def get_all_thresholds(
    db: AsyncSession, defaults: ThresholdDefaults = DEFAULT_THRESHOLDS
) -> dict[str, ResolvedThreshold]:
    result = await db.execute(select(models.DepartmentThreshold))
    return resolve_thresholds(result.scalars().all(), defaults)


def get_all_thresholds_sync(
    session: Session, defaults: ThresholdDefaults = DEFAULT_THRESHOLDS
) -> dict[str, ResolvedThreshold]:
    """Same as ``get_all_thresholds`` for Celery workers on the sync engine."""
    rows = session.execute(select(models.DepartmentThreshold)).scalars().all()
    return resolve_thresholds(rows, defaults)


async def upsert_threshold(
    db: AsyncSession,
    department: str,
    *,
    max_pending_hours: Optional[int] = None,
    max_in_progress_hours: Optional[int] = None,
    description: Optional[str] = None,
    updated_by_id: Optional[str] = None,
    defaults: ThresholdDefaults = DEFAULT_THRESHOLDS,
) -> ResolvedThreshold:
    """Create or update the active threshold for ``department``.

    Omitted hour values keep the stored value, or the default for a new row.
    Any provided value below one hour is rejected before anything is written.
    """
    validate_department(department)
    if max_pending_hours is not None:
        validate_hours(max_pending_hours, "Max pending hours")
    if max_in_progress_hours is not None:
        validate_hours(max_in_progress_hours, "Max in-progress hours")

    result = await db.execute(
        select(models.DepartmentThreshold).where(models.DepartmentThreshold.department == department)
    )
    row = result.scalars().first()
    if row is None:
        row = models.DepartmentThreshold(
            department=department,
            max_pending_hours=defaults.max_pending_hours,
            max_in_progress_hours=defaults.max_in_progress_hours,
            description="",
        )
        db.add(row)

    if max_pending_hours is not None:
        row.max_pending_hours = max_pending_hours
    if max_in_progress_hours is not None:
        row.max_in_progress_hours = max_in_progress_hours
    if description is not None:
        row.description = description
    row.updated_by_id = updated_by_id
    row.is_active = True

    await db.commit()
    logger.info(
        "Threshold updated",
        extra={
            "department": department,
            "max_pending_hours": row.max_pending_hours,
            "max_in_progress_hours": row.max_in_progress_hours,
        },
    )
    return _from_row(row)


async def deactivate_threshold(
    db: AsyncSession,
    department: str,
    *,
    updated_by_id: Optional[str] = None,
    defaults: ThresholdDefaults = DEFAULT_THRESHOLDS,
) -> ResolvedThreshold:
    """Deactivate a department's threshold; lookups fall back to the defaults."""
    validate_department(department)
    result = await db.execute(
        select(models.DepartmentThreshold).where(models.DepartmentThreshold.department == department)
    )
    row = result.scalars().first()
    if row is not None and row.is_active:
        row.is_active = False
        row.updated_by_id = updated_by_id
        await db.commit()
        logger.info("Threshold deactivated", extra={"department": department})
    return defaults.for_department(department)
