# rsizevideo/notify.py
from __future__ import annotations

import asyncio
import logging
import smtplib
from datetime import datetime
from email.message import EmailMessage
from typing import Any, Dict, Tuple

import requests
from jinja2 import Environment, FileSystemLoader, select_autoescape

from .config import MB, TEMPLATES_DIR, Settings

logger = logging.getLogger(__name__)

SUBJECT = "Your compressed video is ready!"
NO_REPLY = "no-reply@rsizevideo.com"

env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html", "xml"]),
)


class Notifier:
    """Completion emails. Mailgun first when configured, SMTP as fallback."""

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def enabled(self) -> bool:
        s = self.settings
        return bool((s.mailgun_key and s.mailgun_domain) or (s.smtp_host and s.smtp_user and s.smtp_pass))

    def download_url(self, job_id: str) -> str:
        return f"{self.settings.frontend_url}/download/{job_id}"

    def render(self, job: Dict[str, Any]) -> Tuple[str, str]:
        ctx = {
            "reduction": f"{float(job.get('reductionPercentage') or 0):.2f}",
            "original_mb": f"{(job.get('originalSize') or 0) / MB:.2f}",
            "new_mb": f"{(job.get('newSize') or 0) / MB:.2f}",
            "filename": job.get("filename", ""),
            "minutes": f"{(job.get('compressionTime') or 0) / 60:.1f}",
            "download_url": self.download_url(job["id"]),
            "ttl_hours": f"{self.settings.ttl_hours:g}",
            "year": datetime.now().year,
        }
        text = env.get_template("ready_email.txt").render(**ctx)
        html = env.get_template("ready_email.html").render(**ctx)
        return text, html

    def _send_mailgun(self, to_email: str, text: str, html: str) -> None:
        s = self.settings
        r = requests.post(
            f"https://api.mailgun.net/v3/{s.mailgun_domain}/messages",
            auth=("api", s.mailgun_key),
            data={
                "from": s.sender_email or NO_REPLY,
                "to": [to_email],
                "subject": SUBJECT,
                "text": text,
                "html": html,
                "h:Auto-Submitted": "auto-generated",
                "h:X-Auto-Response-Suppress": "All",
                "h:Reply-To": NO_REPLY,
            },
            timeout=10,
        )
        r.raise_for_status()

    def _send_smtp(self, to_email: str, text: str, html: str) -> None:
        s = self.settings
        msg = EmailMessage()
        msg["From"] = s.sender_email or NO_REPLY
        msg["To"] = to_email
        msg["Subject"] = SUBJECT
        msg["Auto-Submitted"] = "auto-generated"
        msg["X-Auto-Response-Suppress"] = "All"
        msg["Reply-To"] = NO_REPLY
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")
        if s.smtp_port == 465:
            with smtplib.SMTP_SSL(s.smtp_host, s.smtp_port, timeout=10) as conn:
                conn.login(s.smtp_user, s.smtp_pass)
                conn.send_message(msg)
        else:
            with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=10) as conn:
                conn.starttls()
                conn.login(s.smtp_user, s.smtp_pass)
                conn.send_message(msg)

    def send_ready_email(self, to_email: str, job: Dict[str, Any]) -> bool:
        """Send the "video ready" mail. Returns False when no transport delivered it."""
        text, html = self.render(job)
        s = self.settings
        if s.mailgun_key and s.mailgun_domain:
            try:
                self._send_mailgun(to_email, text, html)
                logger.info("Email sent via Mailgun for job %s", job.get("id"))
                return True
            except requests.RequestException:
                logger.exception("Mailgun send failed for job %s", job.get("id"))
        if s.smtp_host and s.smtp_user and s.smtp_pass:
            try:
                self._send_smtp(to_email, text, html)
                logger.info("Email sent via SMTP for job %s", job.get("id"))
                return True
            except (smtplib.SMTPException, OSError):
                logger.exception("SMTP send failed for job %s", job.get("id"))
        if not self.enabled:
            logger.warning("No mail transport configured; job %s not notified", job.get("id"))
        return False

    async def notify_ready(self, to_email: str, job: Dict[str, Any]) -> bool:
        return await asyncio.to_thread(self.send_ready_email, to_email, job)
