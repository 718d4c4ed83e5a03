"""
Celery tasks package.

- email_tasks: password reset code delivery and stale record cleanup
"""

from app.tasks import email_tasks

__all__ = ["email_tasks"]
