import asyncio
import httpx
import logging
import resend
from typing import Any

from app.core.config import settings
from app.utils.phone import normalize_phone


logger = logging.getLogger("paynow.side_effects")

# -------------------------------------------------------------------
# Provider setup
# -------------------------------------------------------------------

resend.api_key = settings.RESEND_API_KEY


# -------------------------------------------------------------------
# SMS (bulk SMS HTTP API)
# -------------------------------------------------------------------

async def send_via_sms(phone: str, message: str) -> Any:
    """
    Send SMS via the bulk SMS API.
    Returns the provider response. Raises exception on ANY failure.
    """

    recipient = normalize_phone(phone)

    payload = {
        "apiKey": settings.SMS_API_KEY,
        "shortCode": settings.SMS_SHORT_CODE,
        "message": message,
        "recipient": recipient,
        "callbackURL": "",
        "enqueue": 1,
        "isScheduled": False,
    }

    logger.info(
        f"[SMS] Attempting send | phone={recipient} | msg_length={len(message)}"
    )

    try:
        async with httpx.AsyncClient(timeout=15.0) as client:
            response = await client.post(settings.SMS_API_URL, json=payload)
    except httpx.TimeoutException as e:
        logger.error(f"[SMS] Timeout error | phone={recipient} | error={e}")
        raise RuntimeError("SMS timeout")
    except httpx.RequestError as e:
        logger.error(f"[SMS] Request error | phone={recipient} | error={e}")
        raise RuntimeError(f"SMS request failed: {str(e)}")

    if response.status_code >= 400:
        logger.error(
            f"[SMS] HTTP error {response.status_code} | {response.text}"
        )
        raise RuntimeError(f"SMS HTTP failure: {response.status_code}")

    try:
        data = response.json()
    except ValueError:
        data = response.text

    logger.info(
        f"[SMS] ✅ Delivered successfully | phone={recipient} | response={data}"
    )
    return data


# -------------------------------------------------------------------
# Email (Resend)
# -------------------------------------------------------------------

async def send_via_email(email: str, subject: str, html: str) -> Any:
    """
    Send email via Resend.
    Returns the Resend result (contains the message id). Raises exception on ANY failure.
    """

    logger.info(
        f"[Email] Attempting send | to={email} | subject={subject}"
    )

    loop = asyncio.get_running_loop()

    try:
        result = await loop.run_in_executor(
            None,
            lambda: resend.Emails.send(
                {
                    "from": settings.EMAIL_FROM,
                    "to": email,
                    "subject": subject,
                    "html": html,
                }
            ),
        )
    except Exception as e:
        logger.error(
            f"[Email] ❌ Failed | to={email} | error={e}"
        )
        raise RuntimeError(f"Email send failed: {str(e)}")

    logger.info(
        f"[Email] ✅ Delivered successfully | to={email} | result={result}"
    )
    return result


class Notifier:
    """Notification sender handed to the dispatcher and the reminder scheduler."""

    async def send_sms(self, phone: str, message: str) -> Any:
        return await send_via_sms(phone, message)

    async def send_email(self, email: str, subject: str, html: str) -> Any:
        return await send_via_email(email, subject, html)
