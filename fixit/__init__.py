"""FixIt civic issue reporting API.

A FastAPI application for reporting and resolving civic issues with:
- Issue lifecycle (reported -> in_progress -> resolved -> closed)
- Per-department overdue thresholds and a government dashboard
- Gamification (impact score, levels, rewards)
- SQLAlchemy ORM with async support
- Celery background sweeps for overdue escalation
"""
