"""
Twilio SMS gateway over the Twilio REST API.

``send`` never raises: it returns ``SmsResult`` with outcome delivered,
skipped (gateway not configured, no number) or error (invalid number,
HTTP failure after retries, Twilio rejection).
"""

from __future__ import annotations

import random
import time
from typing import Callable

import httpx

from permit_config.schema import SmsConfig
from permit_kernel.domain.protocols import SmsOutcome, SmsResult
from permit_kernel.exceptions import SmsDeliveryError
from permit_kernel.logging_config import get_logger

logger = get_logger("services.sms")

DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}


def to_e164(raw_number: str | None, default_country_code: str = "+91") -> str | None:
    """
    Normalize a phone number to E.164.

    10 digits get the default country code; 12 digits starting with 91 get
    a leading ``+``; anything else is assumed to already carry a country code.
    """
    if not raw_number:
        return None
    trimmed = str(raw_number).strip()
    if trimmed.startswith("+"):
        return trimmed
    digits = "".join(ch for ch in trimmed if ch.isdigit())
    if not digits:
        return None
    if len(digits) == 10:
        return f"{default_country_code}{digits}"
    if len(digits) == 12 and digits.startswith("91"):
        return f"+{digits}"
    return f"+{digits}"


def request_with_retries(
    request_fn: Callable[[], httpx.Response],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_statuses: set[int] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> httpx.Response:
    """Execute an HTTP request with exponential backoff retries."""
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES

    for attempt in range(max_attempts):
        try:
            response = request_fn()
        except httpx.RequestError as exc:
            if attempt >= max_attempts - 1:
                raise
            delay = min(max_delay, base_delay * (2**attempt))
            if delay:
                delay = delay + random.uniform(0, delay / 2)
            logger.warning("sms_http_retry", extra={"attempt": attempt + 1}, exc_info=exc)
            if delay:
                sleep(delay)
            continue

        if response.status_code in statuses and attempt < max_attempts - 1:
            delay = min(max_delay, base_delay * (2**attempt))
            if delay:
                delay = delay + random.uniform(0, delay / 2)
            logger.warning(
                "sms_http_retry",
                extra={"attempt": attempt + 1, "status_code": response.status_code},
            )
            if delay:
                sleep(delay)
            continue

        return response

    return response


class TwilioSmsGateway:
    """Sends SMS through ``POST /Accounts/{sid}/Messages.json``."""

    def __init__(
        self,
        config: SmsConfig,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._config = config
        self._sleep = sleep
        self._client = client
        if self._client is None and config.enabled:
            self._client = httpx.Client(
                base_url=config.api_base_url,
                timeout=config.timeout_seconds,
            )

    @property
    def enabled(self) -> bool:
        return self._config.enabled and self._client is not None

    def send(self, phone_number: str | None, text: str) -> SmsResult:
        if not self.enabled:
            logger.info("sms_skipped", extra={"reason": "gateway_not_configured"})
            return SmsResult(outcome=SmsOutcome.SKIPPED, reason="gateway not configured")

        if not phone_number:
            logger.info("sms_skipped", extra={"reason": "no_phone_number"})
            return SmsResult(outcome=SmsOutcome.SKIPPED, reason="no phone number")

        to_number = to_e164(phone_number, self._config.default_country_code)
        if to_number is None:
            logger.warning("sms_invalid_number", extra={"raw_number": phone_number})
            return SmsResult(outcome=SmsOutcome.ERROR, reason="invalid phone number")

        try:
            sid = self._post(to_number, (text or "")[: self._config.max_body_length])
        except SmsDeliveryError as exc:
            logger.warning(
                "sms_delivery_failed",
                extra={"to_number": to_number, "status_code": exc.status_code},
                exc_info=exc,
            )
            return SmsResult(outcome=SmsOutcome.ERROR, to_number=to_number, reason=exc.reason)

        logger.info("sms_sent", extra={"to_number": to_number, "message_sid": sid})
        return SmsResult(outcome=SmsOutcome.DELIVERED, to_number=to_number, message_sid=sid)

    def _post(self, to_number: str, body: str) -> str:
        form = {"To": to_number, "Body": body}
        if self._config.messaging_service_sid:
            form["MessagingServiceSid"] = self._config.messaging_service_sid
        else:
            form["From"] = self._config.from_number

        url = f"/Accounts/{self._config.account_sid}/Messages.json"
        auth = (self._config.account_sid, self._config.auth_token)

        try:
            response = request_with_retries(
                lambda: self._client.post(url, data=form, auth=auth),
                max_attempts=self._config.max_attempts,
                sleep=self._sleep,
            )
        except httpx.TimeoutException:
            raise SmsDeliveryError(to_number, "connection timeout") from None
        except httpx.RequestError as exc:
            raise SmsDeliveryError(to_number, f"request failed: {exc}") from None

        if 200 <= response.status_code < 300:
            return response.json().get("sid", "")

        try:
            message = response.json().get("message", "")
        except ValueError:
            message = response.text[:200]
        raise SmsDeliveryError(
            to_number,
            f"Twilio API error {response.status_code}: {message}",
            status_code=response.status_code,
        )

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
