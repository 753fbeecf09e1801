"""Notification utilities - email."""

from src.approvals.core.notifications.email import render_workflow_email_html, send_workflow_email

__all__ = [
    "render_workflow_email_html",
    "send_workflow_email",
]
