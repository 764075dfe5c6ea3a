# ridernotify/transport/twilio_webhook.py
"""
Twilio webhook routes.

Two routes with separate contracts:
- /webhooks/twilio/sms     inbound rider replies {From, Body, MessageSid, To}
- /webhooks/twilio/status  delivery callbacks {MessageSid, MessageStatus, ErrorCode}

Both answer 200 with a TwiML document whatever happens inside, so Twilio
never retries.  Acknowledgements go out through the delivery adapter, so the
TwiML body itself stays empty.  Requests that fail signature validation are
refused with 403; those did not come from Twilio.
"""
import html
from typing import Optional

from fastapi import HTTPException, Request
from fastapi.responses import PlainTextResponse
from twilio.request_validator import RequestValidator

from ridernotify.core.domain import InboundPayload
from ridernotify.infra.logging_config import get_logger, mask_phone
from ridernotify.infra.metrics import NotifyMetrics

logger = get_logger(__name__)


async def get_validated_form(request: Request, *, webhook_url: Optional[str], route: str) -> dict[str, str]:
    """
    Read the form body, checking X-Twilio-Signature when validation is on.

    Raises:
        HTTPException(403) on a missing or invalid signature
        HTTPException(500) when validation is required but no auth token is set
    """
    settings = request.app.state.settings
    form = {k: str(v) for k, v in (await request.form()).items()}

    if not settings.require_webhook_validation:
        return form

    if not settings.twilio_auth_token:
        logger.error("TWILIO_AUTH_TOKEN not configured")
        NotifyMetrics.webhook_validation_failed(route)
        raise HTTPException(status_code=500, detail="Webhook validation not configured")

    signature = request.headers.get("X-Twilio-Signature", "")
    if not signature:
        logger.warning("Missing X-Twilio-Signature header")
        NotifyMetrics.webhook_validation_failed(route)
        raise HTTPException(status_code=403, detail="Missing signature")

    # Behind a proxy request.url is the internal URL; Twilio signed the public one
    if webhook_url:
        url = webhook_url
    else:
        proto = request.headers.get("X-Forwarded-Proto", "https")
        host = request.headers.get("X-Forwarded-Host") or request.headers.get("Host", "")
        url = f"{proto}://{host}{request.url.path}"

    validator = RequestValidator(settings.twilio_auth_token)
    if not validator.validate(url, form, signature):
        logger.error("Invalid Twilio signature", extra={"url": url})
        NotifyMetrics.webhook_validation_failed(route)
        raise HTTPException(status_code=403, detail="Invalid signature")

    return form


async def twilio_sms_handler(request: Request) -> PlainTextResponse:
    settings = request.app.state.settings
    form = await get_validated_form(request, webhook_url=settings.twilio_webhook_url, route="twilio_sms")

    payload = InboundPayload(
        from_address=form.get("From", ""),
        body=form.get("Body", ""),
        external_message_id=form.get("MessageSid") or None,
        to_address=form.get("To") or None,
    )
    logger.info(
        f"Inbound SMS from {mask_phone(payload.from_address)}",
        extra={"message_sid": payload.external_message_id},
    )

    ack = await request.app.state.services.inbound.handle_inbound(payload)
    logger.debug(
        f"Inbound handled: intent={ack.intent.value if ack.intent else 'duplicate'}, "
        f"auto_reply_sent={ack.auto_reply_sent}"
    )
    return twiml_response()


async def twilio_status_handler(request: Request) -> PlainTextResponse:
    settings = request.app.state.settings
    form = await get_validated_form(
        request, webhook_url=settings.twilio_status_callback_url, route="twilio_status"
    )

    sid = form.get("MessageSid") or form.get("SmsSid")
    status = form.get("MessageStatus") or form.get("SmsStatus")
    if not sid or not status:
        logger.warning("Status callback without MessageSid/MessageStatus ignored")
        return twiml_response()

    try:
        await request.app.state.services.tracking.record_delivery_status(
            sid, status, form.get("ErrorCode") or None
        )
    except Exception:
        logger.exception(f"Could not record delivery status {status} for {sid[:10]}***")
    return twiml_response()


def create_twiml_response(message: Optional[str] = None) -> str:
    """
    TwiML document: empty, or with a single <Message>.

    The message is XML-escaped to prevent parsing errors.
    """
    if message is None:
        return '<?xml version="1.0" encoding="UTF-8"?>\n<Response></Response>'
    escaped_message = html.escape(message, quote=True)
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Message>{escaped_message}</Message>
</Response>"""


def twiml_response(message: Optional[str] = None) -> PlainTextResponse:
    return PlainTextResponse(
        content=create_twiml_response(message),
        status_code=200,
        media_type="application/xml",
    )
