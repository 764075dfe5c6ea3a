# ridernotify/infra/sms_gateway.py
"""
SMS providers.

TwilioSmsGateway talks to the Twilio Messages REST API directly over the
shared aiohttp session (form POST, basic auth) so that the HTTP status of
every attempt is visible to the retry loop.  Errors are classified here:

- 2xx                      -> provider message sid
- 429 / 5xx / network fault -> TransientDeliveryError (retry)
- any other 4xx            -> PermanentDeliveryError (give up)
"""
from __future__ import annotations

import asyncio
import json
import uuid
from typing import Optional

import aiohttp

from ridernotify.core.errors import PermanentDeliveryError, TransientDeliveryError
from ridernotify.infra.http_client import get_sender_session
from ridernotify.infra.logging_config import get_logger, mask_phone
from ridernotify.infra.metrics import inc_counter

logger = get_logger(__name__)


class TwilioSmsGateway:
    def __init__(
            self,
            account_sid: str,
            auth_token: str,
            from_number: str,
            *,
            api_base_url: str = "https://api.twilio.com",
            status_callback_url: Optional[str] = None,
            timeout_seconds: float = 15.0,
            session: Optional[aiohttp.ClientSession] = None,
    ):
        self._account_sid = account_sid
        self._auth = aiohttp.BasicAuth(account_sid, auth_token)
        self._from_number = from_number
        self._url = f"{api_base_url.rstrip('/')}/2010-04-01/Accounts/{account_sid}/Messages.json"
        self._status_callback_url = status_callback_url
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session

    def _get_session(self) -> aiohttp.ClientSession:
        return self._session or get_sender_session()

    async def send_sms(self, to_e164: str, body: str) -> str:
        form = {"To": to_e164, "From": self._from_number, "Body": body}
        if self._status_callback_url:
            form["StatusCallback"] = self._status_callback_url

        try:
            async with self._get_session().post(
                    self._url,
                    data=form,
                    auth=self._auth,
                    timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                payload = _safe_json(text)

                if 200 <= resp.status < 300:
                    sid = (payload or {}).get("sid") or "unknown"
                    logger.info(f"Twilio SMS accepted: to={mask_phone(to_e164)}, sid={sid[:10]}***")
                    inc_counter("twilio_outbound_sent")
                    return sid

                error_msg = _error_message(payload, text, resp.status)

                if resp.status == 429 or resp.status >= 500:
                    logger.warning(
                        f"Twilio transient error: status={resp.status}, to={mask_phone(to_e164)}: {error_msg}"
                    )
                    inc_counter("twilio_outbound_transient", status=resp.status)
                    raise TransientDeliveryError(error_msg, provider_status=resp.status)

                logger.error(
                    f"Twilio rejected SMS: status={resp.status}, to={mask_phone(to_e164)}: {error_msg}"
                )
                inc_counter("twilio_outbound_rejected", status=resp.status)
                raise PermanentDeliveryError(error_msg, provider_status=resp.status)

        except asyncio.TimeoutError:
            logger.warning(f"Twilio request timed out: to={mask_phone(to_e164)}")
            inc_counter("twilio_outbound_timeout")
            raise TransientDeliveryError("Request to SMS provider timed out")
        except aiohttp.ClientError as exc:
            logger.warning(f"Twilio network error: {type(exc).__name__}: {exc}")
            inc_counter("twilio_outbound_network_error")
            raise TransientDeliveryError(f"Network error: {type(exc).__name__}")


def _safe_json(text: str) -> Optional[dict]:
    try:
        data = json.loads(text)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _error_message(payload: Optional[dict], text: str, status: int) -> str:
    """Provider ``message`` field, falling back to the raw body."""
    if payload and payload.get("message"):
        return str(payload["message"])
    if text and text.strip():
        return text.strip()[:500]
    return f"HTTP {status}"


class DevSmsGateway:
    """Log-only gateway for environments without Twilio credentials."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    async def send_sms(self, to_e164: str, body: str) -> str:
        sid = f"DEV{uuid.uuid4().hex[:16]}"
        self.sent.append((to_e164, body))
        logger.info(f"[dev] SMS to {mask_phone(to_e164)} ({len(body)} chars), sid={sid}")
        return sid
