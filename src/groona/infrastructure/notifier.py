"""Template emails sent on behalf of the assistant.

Only two templates are produced here; rendering is plain text because the
HTML templates belong to the main application's mailer.
"""

from __future__ import annotations

from email.message import EmailMessage
from typing import Any, Dict, Optional, Protocol
import logging
import smtplib
import ssl

from ..config import SmtpConfig, get_settings


logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send_email(self, to: str, template_type: str, data: Dict[str, Any]) -> None: ...


def render_template(template_type: str, data: Dict[str, Any]) -> tuple[str, str]:
    if template_type == "project_member_added":
        subject = f"You've been added to {data.get('projectName', 'a project')}"
        body = (
            f"Hi {data.get('memberName') or data.get('memberEmail', '')},\n\n"
            f"{data.get('addedBy', 'A teammate')} added you to the project "
            f"\"{data.get('projectName', '')}\".\n\n"
            f"{data.get('projectDescription') or ''}\n\n"
            f"Open the project: {data.get('projectUrl', '')}\n"
        )
        return subject, body
    if template_type == "task_assigned":
        subject = f"New task assigned: {data.get('taskTitle', '')}"
        body = (
            f"Hi {data.get('assigneeName', '')},\n\n"
            f"{data.get('assignedBy', 'A teammate')} assigned you \"{data.get('taskTitle', '')}\" "
            f"in {data.get('projectName', 'a project')}.\n"
            f"Priority: {data.get('priority', 'medium')}\n"
            f"Due date: {data.get('dueDate') or 'not set'}\n\n"
            f"{data.get('taskDescription') or ''}\n\n"
            f"Open the task: {data.get('taskUrl', '')}\n"
        )
        return subject, body
    raise ValueError(f"Unknown email template: {template_type}")


class SmtpNotifier:
    def __init__(self, config: Optional[SmtpConfig] = None) -> None:
        self._config = config or get_settings().smtp

    def send_email(self, to: str, template_type: str, data: Dict[str, Any]) -> None:
        cfg = self._config
        if not cfg.configured:
            logger.info("SMTP not fully configured; skipping %s email", template_type)
            return
        subject, body = render_template(template_type, data)
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = cfg.sender
        message["To"] = to
        message.set_content(body)

        context = ssl.create_default_context()
        if cfg.use_ssl:
            with smtplib.SMTP_SSL(cfg.host, cfg.port, timeout=cfg.timeout, context=context) as client:
                client.login(cfg.user, cfg.password)
                client.send_message(message)
        else:
            with smtplib.SMTP(cfg.host, cfg.port, timeout=cfg.timeout) as client:
                client.ehlo()
                if cfg.use_tls:
                    client.starttls(context=context)
                    client.ehlo()
                client.login(cfg.user, cfg.password)
                client.send_message(message)
        logger.info("Sent %s email via %s:%s", template_type, cfg.host, cfg.port)


_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = SmtpNotifier()
    return _notifier
