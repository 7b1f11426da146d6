# checkin/emailer.py
"""
Outgoing mail for login links.

Providers (EMAIL_PROVIDER):
- console  logs the message instead of sending it (development)
- smtp     STARTTLS to SMTP_HOST:SMTP_PORT with SMTP_USER/SMTP_PASS
"""

from __future__ import annotations
import logging, smtplib, ssl
from email.message import EmailMessage
from typing import Any, Mapping

from flask import current_app

log = logging.getLogger(__name__)


def _as_list(x) -> list[str]:
    if not x:
        return []
    if isinstance(x, (list, tuple, set)):
        return [str(i).strip() for i in x if i]
    return [s.strip() for s in str(x).split(",") if s.strip()]


def _build_message(cfg: Mapping[str, Any], *, subject: str, text: str, html: str | None, to: list[str]) -> EmailMessage:
    if not to:
        raise ValueError("No recipients provided.")
    msg = EmailMessage()
    msg["Subject"] = subject
    from_email = cfg.get("FROM_EMAIL") or "no-reply@localhost"
    from_name = cfg.get("FROM_NAME")
    msg["From"] = f"{from_name} <{from_email}>" if from_name else from_email
    msg["To"] = ", ".join(to)
    msg.set_content(text or "")
    if html:
        msg.add_alternative(html, subtype="html")
    return msg


def _send_smtp(cfg: Mapping[str, Any], msg: EmailMessage, rcpts: list[str]) -> None:
    host = cfg.get("SMTP_HOST")
    if not host:
        raise RuntimeError("SMTP_HOST is not set")
    ctx = ssl.create_default_context()
    with smtplib.SMTP(host, int(cfg.get("SMTP_PORT") or 587), timeout=int(cfg.get("SMTP_TIMEOUT") or 30)) as smtp:
        smtp.ehlo()
        smtp.starttls(context=ctx)
        smtp.ehlo()
        if cfg.get("SMTP_USER"):
            smtp.login(cfg["SMTP_USER"], cfg.get("SMTP_PASS") or "")
        refused = smtp.send_message(msg, to_addrs=rcpts)
        if refused:
            raise smtplib.SMTPRecipientsRefused(refused)


def send_email(
    *,
    subject: str,
    text: str,
    html: str | None = None,
    to: list[str] | str | None = None,
    config: Mapping[str, Any] | None = None,
) -> None:
    """Send an email using the configured provider."""
    cfg = config if config is not None else current_app.config
    rcpts = _as_list(to)
    msg = _build_message(cfg, subject=subject, text=text, html=html, to=rcpts)

    provider = (cfg.get("EMAIL_PROVIDER") or "console").lower()
    if provider == "console":
        log.info("EMAIL (console) to=%s subject=%r\n%s", msg["To"], subject, (text or "")[:500])
        return
    if provider == "smtp":
        _send_smtp(cfg, msg, rcpts)
        return
    raise RuntimeError(f"Unsupported EMAIL_PROVIDER={provider!r}. Use 'smtp' or 'console'.")
