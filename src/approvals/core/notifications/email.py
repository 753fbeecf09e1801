"""Email client using Resend API."""

import html
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError

import resend

from src.approvals.core.config import get_settings
from src.approvals.core.logging import get_logger

logger = get_logger(__name__)

# Thread pool for email sending with timeout support
_email_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="email_sender")

_BODY_STYLE = (
    "font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; "
    "line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;"
)


def render_workflow_email_html(body: str) -> str:
    """Wrap a plain-text workflow message in the shared HTML layout.

    The body is escaped and newlines become line breaks.
    """
    paragraphs = "<br>".join(html.escape(line) for line in body.splitlines())
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="{_BODY_STYLE}">
    <p>{paragraphs}</p>
</body>
</html>"""


def send_workflow_email(
    to: list[str],
    subject: str,
    body: str,
    cc: list[str] | None = None,
    bcc: list[str] | None = None,
) -> bool:
    """Send a workflow email produced by an ``email`` step.

    Args:
        to: Recipient addresses
        subject: Subject line (placeholders already resolved)
        body: Plain-text body (placeholders already resolved)
        cc: Optional CC addresses
        bcc: Optional BCC addresses

    Returns:
        True if email was sent (or logged in dev mode), False on error
    """
    settings = get_settings()

    if not settings.resend_api_key:
        logger.warning(
            "RESEND_API_KEY not set - email not sent",
            to=to,
            subject=subject,
            email_type="workflow",
        )
        return True

    resend.api_key = settings.resend_api_key

    params: resend.Emails.SendParams = {
        "from": settings.email_from,
        "to": to,
        "subject": subject,
        "html": render_workflow_email_html(body),
        "text": body,
    }
    if cc:
        params["cc"] = cc
    if bcc:
        params["bcc"] = bcc

    def _send() -> None:
        resend.Emails.send(params)

    try:
        future = _email_executor.submit(_send)
        future.result(timeout=settings.email_send_timeout_seconds)
        logger.info("Workflow email sent", to=to, subject=subject)
        return True
    except FuturesTimeoutError:
        logger.error("Email send timed out", to=to, timeout=settings.email_send_timeout_seconds)
        return False
    except Exception as e:
        logger.error("Failed to send workflow email", to=to, error=str(e))
        return False
