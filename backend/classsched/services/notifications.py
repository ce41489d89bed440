"""Fire-and-forget notification delivery.

Callers hand over a recipient contact, a template kind and the data the
template needs; delivery happens off the request thread and failures are only
logged, so a broken mail relay never rolls back the workflow that triggered it.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from functools import lru_cache
import logging
from typing import Protocol

from classsched.core.config import get_settings
from classsched.services.email import EmailDeliveryError, send_email, smtp_configured

logger = logging.getLogger(__name__)


class NotificationTemplate(str, Enum):
    substitution_request = "substitution_request"
    substitution_accepted = "substitution_accepted"
    substitution_declined = "substitution_declined"
    substitution_assigned = "substitution_assigned"
    substitution_unresolved = "substitution_unresolved"
    substitution_exhausted = "substitution_exhausted"
    leave_approved = "leave_approved"
    leave_rejected = "leave_rejected"


_TEMPLATES: dict[NotificationTemplate, tuple[str, str]] = {
    NotificationTemplate.substitution_request: (
        "Substitute Request: {subject_code} on {date}",
        "You have been asked to cover {subject_code} for {batch_name} on {date} "
        "({day} {start_time}-{end_time}) in {classroom_name}.\n"
        "Please accept or decline the request from the scheduler.",
    ),
    NotificationTemplate.substitution_accepted: (
        "Substitute Confirmed: {subject_code} on {date}",
        "{substitute_name} will cover {subject_code} for {batch_name} on {date} ({start_time}-{end_time}).",
    ),
    NotificationTemplate.substitution_declined: (
        "Substitute Declined: {subject_code} on {date}",
        "{substitute_name} declined to cover {subject_code} on {date}. The request moved to the next candidate.",
    ),
    NotificationTemplate.substitution_exhausted: (
        "Substitute Declined: {subject_code} on {date}",
        "{substitute_name} declined to cover {subject_code} on {date}. No other eligible substitute is left; "
        "an administrator has been asked to assign one.",
    ),
    NotificationTemplate.substitution_assigned: (
        "Substitute Assigned: {subject_code} on {date}",
        "You have been assigned to cover {subject_code} for {batch_name} on {date} "
        "({day} {start_time}-{end_time}) in {classroom_name}.",
    ),
    NotificationTemplate.substitution_unresolved: (
        "Substitute Needed: {subject_code} on {date}",
        "No eligible substitute is left for {subject_code} ({batch_name}) on {date} "
        "({start_time}-{end_time}). Manual assignment is required.",
    ),
    NotificationTemplate.leave_approved: (
        "Leave Approved: {start_date} to {end_date}",
        "Your leave from {start_date} to {end_date} was approved. "
        "{offers_created} substitute request(s) were raised for your classes.",
    ),
    NotificationTemplate.leave_rejected: (
        "Leave Rejected: {start_date} to {end_date}",
        "Your leave from {start_date} to {end_date} was rejected.\nReason: {rejection_reason}",
    ),
}


class _TemplateData(dict):
    def __missing__(self, key: str) -> str:
        return "-"


def render_notification(template_kind: NotificationTemplate, template_data: dict) -> tuple[str, str]:
    subject_template, body_template = _TEMPLATES[template_kind]
    data = _TemplateData(template_data)
    return subject_template.format_map(data), body_template.format_map(data)


class Notifier(Protocol):
    def notify(self, recipient_contact: str, template_kind: NotificationTemplate, template_data: dict) -> None:
        ...


class NullNotifier:
    """Drops every message; used when SMTP is not configured."""

    def notify(self, recipient_contact: str, template_kind: NotificationTemplate, template_data: dict) -> None:
        logger.debug("Notification skipped (no transport) | to=%s | kind=%s", recipient_contact, template_kind.value)


class EmailNotifier:
    def __init__(self, *, workers: int = 2) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="notify")

    def notify(self, recipient_contact: str, template_kind: NotificationTemplate, template_data: dict) -> None:
        if not recipient_contact:
            return
        subject, body = render_notification(template_kind, template_data)
        self._executor.submit(self._deliver, recipient_contact, template_kind, subject, body)

    def _deliver(self, recipient_contact: str, template_kind: NotificationTemplate, subject: str, body: str) -> None:
        try:
            send_email(to_email=recipient_contact, subject=subject, text_content=body)
        except EmailDeliveryError:
            logger.warning(
                "Notification email delivery failed | to=%s | kind=%s",
                recipient_contact,
                template_kind.value,
                exc_info=True,
            )
        except Exception:  # pragma: no cover - transport behavior
            logger.warning(
                "Notification worker crashed | to=%s | kind=%s",
                recipient_contact,
                template_kind.value,
                exc_info=True,
            )

    def shutdown(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


@lru_cache
def get_notifier() -> Notifier:
    settings = get_settings()
    if not smtp_configured():
        logger.info("SMTP not configured; notifications will be dropped")
        return NullNotifier()
    return EmailNotifier(workers=settings.notification_workers)
