from __future__ import annotations

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from .settings import Settings, settings as default_settings


def send_email(subject: str, body: str, cfg: Settings | None = None) -> bool:
    """Send an email if SMTP settings are configured.

    Environment variables:
      - RSR_ENABLE_EMAIL=true
      - RSR_SMTP_HOST / RSR_SMTP_PORT
      - RSR_SMTP_USER / RSR_SMTP_PASSWORD
      - RSR_EMAIL_FROM / RSR_EMAIL_TO
    """
    cfg = cfg or default_settings
    if not cfg.enable_email:
        return False
    if not all([cfg.smtp_host, cfg.smtp_port, cfg.smtp_user, cfg.smtp_password, cfg.email_from, cfg.email_to]):
        return False

    msg = MIMEMultipart()
    msg["From"] = cfg.email_from
    msg["To"] = cfg.email_to
    msg["Subject"] = subject
    msg.attach(MIMEText(body, "plain"))

    try:
        with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=10) as server:
            server.starttls()
            server.login(cfg.smtp_user, cfg.smtp_password)
            server.sendmail(cfg.email_from, [cfg.email_to], msg.as_string())
        return True
    except (smtplib.SMTPException, OSError):
        return False


class CrashLoopAlerter:
    """Emails once when a slot reaches `threshold` consecutive crashes, and once when it recovers."""

    def __init__(self, threshold: int = 3, cfg: Settings | None = None):
        self.threshold = max(1, int(threshold))
        self.cfg = cfg

    def crashed(self, service: str, version: str, container_id: str, failure_count: int, retry_in_s: float) -> bool:
        if failure_count != self.threshold:
            return False
        subject = f"CRASH LOOP: {service} {version} ({container_id[:12]})"
        body = (
            f"Service: {service}\nVersion: {version}\nContainer: {container_id}\n"
            f"Consecutive crashes: {failure_count}\nNext replacement in: {retry_in_s:.0f}s"
        )
        return send_email(subject, body, self.cfg)

    def recovered(self, service: str, version: str, container_id: str, previous_failures: int) -> bool:
        if previous_failures < self.threshold:
            return False
        subject = f"RECOVERED: {service} {version} ({container_id[:12]})"
        body = (
            f"Service: {service}\nVersion: {version}\nContainer: {container_id}\n"
            f"Running steadily after {previous_failures} consecutive crashes."
        )
        return send_email(subject, body, self.cfg)
