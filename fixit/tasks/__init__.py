"""Background work.

Post-commit side effects (notification records, point awards) run in the
request once the primary write is committed: see ``notifications``.

The periodic overdue sweep runs on Celery: see ``celery_tasks``. Import it
explicitly when needed to avoid circular imports with Celery initialization.
"""

from fixit.tasks.notifications import dispatch_transition_effects, notify

# Celery tasks are available but not imported here to prevent circular imports
# Use: from fixit.tasks.celery_tasks import sweep_overdue_issues

__all__ = ["dispatch_transition_effects", "notify"]
