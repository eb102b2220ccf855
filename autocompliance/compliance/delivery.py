"""
Reminder delivery channels.

The dispatch service hands a :class:`ReminderNotification` to a
:class:`DeliveryGateway`, which calls one sender per requested channel and
reports per-channel success. A sender signals failure by raising.
"""
import json
import logging
import os
import smtplib
import ssl
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Callable, Dict, Iterable, List, Optional

from firebase_admin import _apps, credentials, initialize_app, messaging  # type: ignore

from .config import ComplianceSettings, settings as compliance_settings
from .reminder_states import DeliveryChannel

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """A channel could not deliver the notification."""


@dataclass
class ReminderNotification:
    reminder_id: int
    title: str
    message: str
    priority: str
    remind_at: Optional[str] = None
    due_at: Optional[str] = None
    recipient: Dict[str, Any] = field(default_factory=dict)
    escalation: bool = False

    @classmethod
    def from_reminder(cls, reminder: Any, escalation: bool = False) -> "ReminderNotification":
        meta = reminder.meta or {}
        return cls(
            reminder_id=reminder.id,
            title=reminder.title,
            message=reminder.description or f"Compliance reminder: {reminder.title}",
            priority=reminder.priority,
            remind_at=reminder.remind_at.isoformat() if reminder.remind_at else None,
            due_at=reminder.due_at.isoformat() if reminder.due_at else None,
            recipient={
                "user_id": reminder.assigned_user_id,
                "role": reminder.assigned_role,
                "email": meta.get("email"),
                "phone": meta.get("phone"),
                "fcm_token": meta.get("fcm_token"),
            },
            escalation=escalation,
        )


@dataclass
class ChannelResult:
    channel: str
    delivered: bool
    detail: Optional[str] = None


@dataclass
class DeliveryReport:
    results: List[ChannelResult] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        """At least one requested channel delivered."""
        return any(r.delivered for r in self.results)

    @property
    def delivered_channels(self) -> List[str]:
        return [r.channel for r in self.results if r.delivered]

    def as_metadata(self) -> Dict[str, Any]:
        return {r.channel: {"delivered": r.delivered, "detail": r.detail} for r in self.results}


Sender = Callable[[ReminderNotification], Optional[str]]


class DeliveryGateway:
    """Routes a notification to the sender registered for each channel"""

    def __init__(self, senders: Optional[Dict[str, Sender]] = None):
        self.senders: Dict[str, Sender] = dict(senders or {})

    def register(self, channel: str, sender: Sender) -> None:
        self.senders[channel] = sender

    def deliver(self, notification: ReminderNotification, channels: Iterable[str]) -> DeliveryReport:
        report = DeliveryReport()
        for channel in channels:
            sender = self.senders.get(channel)
            if sender is None:
                logger.warning("No sender configured for channel %s (reminder %s)", channel, notification.reminder_id)
                report.results.append(ChannelResult(channel, False, "channel not configured"))
                continue
            try:
                detail = sender(notification)
                report.results.append(ChannelResult(channel, True, detail))
            except Exception as e:
                logger.error("Delivery via %s failed for reminder %s: %r", channel, notification.reminder_id, e)
                report.results.append(ChannelResult(channel, False, str(e)))
        return report


class InAppSender:
    """In-app notices are read from the reminder event trail, so delivery is recording only."""

    def __call__(self, notification: ReminderNotification) -> Optional[str]:
        logger.info("In-app reminder %s recorded for user=%s role=%s", notification.reminder_id,
                    notification.recipient.get("user_id"), notification.recipient.get("role"))
        return "recorded"


class SmtpEmailSender:
    def __init__(self, cfg: ComplianceSettings):
        if not cfg.SMTP_SERVER:
            raise ValueError("SMTP_SERVER is required but not configured")
        if not cfg.FROM_EMAIL:
            raise ValueError("FROM_EMAIL is required but not configured")
        self.smtp_server = cfg.SMTP_SERVER
        self.smtp_port = int(cfg.SMTP_PORT)
        self.smtp_username = cfg.SMTP_USERNAME
        self.smtp_password = cfg.SMTP_PASSWORD
        self.use_tls = cfg.SMTP_USE_TLS
        self.from_email = cfg.FROM_EMAIL

    def build_message(self, notification: ReminderNotification, to_email: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        prefix = "[Escalation] " if notification.escalation else ""
        msg["Subject"] = f"{prefix}{notification.title}"
        msg["From"] = self.from_email
        msg["To"] = to_email
        lines = [notification.message, "", f"Priority: {notification.priority}"]
        if notification.due_at:
            lines.append(f"Due: {notification.due_at}")
        msg.attach(MIMEText("\n".join(lines), "plain"))
        return msg

    def __call__(self, notification: ReminderNotification) -> Optional[str]:
        to_email = notification.recipient.get("email")
        if not to_email:
            raise DeliveryError("no recipient email address")
        msg = self.build_message(notification, to_email)
        with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=30) as server:
            if self.use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.smtp_username and self.smtp_password:
                server.login(self.smtp_username, self.smtp_password)
            server.sendmail(self.from_email, [to_email], msg.as_string())
        return to_email


def _ensure_firebase_initialized(cfg: ComplianceSettings) -> bool:
    if _apps:
        return True

    proj = cfg.FCM_PROJECT_ID
    creds_json = cfg.FCM_CREDENTIALS_JSON or os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
    options = {"projectId": proj} if proj else None

    if creds_json and creds_json.strip().startswith("{"):
        cred = credentials.Certificate(json.loads(creds_json))
        initialize_app(cred, options=options)
    elif creds_json and os.path.exists(creds_json):
        initialize_app(credentials.Certificate(creds_json), options=options)
    elif proj:
        initialize_app(options=options)
    else:
        logger.warning("[FCM] No credentials or project configured, push delivery disabled")
        return False
    logger.info("[FCM] Firebase app initialized, project_id=%s", proj)
    return True


class FcmPushSender:
    def __init__(self, cfg: ComplianceSettings):
        self.cfg = cfg

    def __call__(self, notification: ReminderNotification) -> Optional[str]:
        token = notification.recipient.get("fcm_token")
        if not token:
            raise DeliveryError("no FCM token for recipient")
        if not _ensure_firebase_initialized(self.cfg):
            raise DeliveryError("Firebase is not configured")
        message = messaging.Message(
            token=token,
            notification=messaging.Notification(title=notification.title, body=notification.message),
            data={
                "reminder_id": str(notification.reminder_id),
                "priority": notification.priority,
                "escalation": "1" if notification.escalation else "0",
                "due_at": notification.due_at or "",
            },
        )
        return messaging.send(message)


def build_default_gateway(cfg: Optional[ComplianceSettings] = None) -> DeliveryGateway:
    """Gateway with every channel the configuration allows; sms has no provider."""
    cfg = cfg or compliance_settings
    gateway = DeliveryGateway({DeliveryChannel.IN_APP.value: InAppSender()})
    if cfg.smtp_configured:
        gateway.register(DeliveryChannel.EMAIL.value, SmtpEmailSender(cfg))
    if cfg.FCM_PROJECT_ID or cfg.FCM_CREDENTIALS_JSON:
        gateway.register(DeliveryChannel.PUSH.value, FcmPushSender(cfg))
    return gateway
