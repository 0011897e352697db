import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx

from app.config.settings import settings
from app.utils.errors import PushGatewayError
from app.utils.logging import get_logger

logger = get_logger()

# Provider error codes meaning the token will never work again
PERMANENT_ERRORS = {"DeviceNotRegistered", "InvalidCredentials"}
# Per-message errors worth resending on the next attempt
RETRYABLE_MESSAGE_ERRORS = {"TooManyRequests", "MessageRateExceeded"}
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

PROVIDER_BATCH_LIMIT = 100


class PushDeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"


@dataclass
class PushMessage:
    to: str
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)
    sound: Optional[str] = "default"
    priority: str = "high"
    channel_id: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "to": self.to,
            "title": self.title,
            "body": self.body,
            "data": self.data,
            "priority": self.priority,
        }
        if self.sound:
            payload["sound"] = self.sound
        if self.channel_id:
            payload["channelId"] = self.channel_id
        return payload


@dataclass
class PushResult:
    token: str
    status: PushDeliveryStatus
    message_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.status == PushDeliveryStatus.DELIVERED

    @property
    def should_deactivate_token(self) -> bool:
        return self.status == PushDeliveryStatus.PERMANENT_FAILURE


class PushGateway:
    """
    Stateless client for the Expo push API.

    Splits messages into provider-sized batches and retries each batch with
    exponential backoff. Every input message gets exactly one ``PushResult``
    in input order; delivery failures are reported, never raised. Callers own
    ledger bookkeeping and token deactivation.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        api_url: Optional[str] = None,
        access_token: Optional[str] = None,
        batch_size: Optional[int] = None,
        max_attempts: Optional[int] = None,
        backoff_base_seconds: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._client = client
        self.api_url = api_url or settings.EXPO_PUSH_API_URL
        self.access_token = (
            access_token if access_token is not None else settings.EXPO_ACCESS_TOKEN
        )
        self.batch_size = min(batch_size or settings.PUSH_BATCH_SIZE, PROVIDER_BATCH_LIMIT)
        self.max_attempts = max(max_attempts or settings.PUSH_MAX_ATTEMPTS, 1)
        self.backoff_base_seconds = (
            backoff_base_seconds
            if backoff_base_seconds is not None
            else settings.PUSH_BACKOFF_BASE_SECONDS
        )
        self.timeout_seconds = timeout_seconds or settings.PUSH_REQUEST_TIMEOUT_SECONDS
        self._sleep = sleep

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def send(self, messages: Sequence[PushMessage]) -> List[PushResult]:
        """Send ``messages`` and return one result per message, in order."""
        if not messages:
            return []

        results: List[PushResult] = []
        if self._client is not None:
            for start in range(0, len(messages), self.batch_size):
                batch = list(messages[start : start + self.batch_size])
                results.extend(await self._send_batch(self._client, batch))
            return results

        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            for start in range(0, len(messages), self.batch_size):
                batch = list(messages[start : start + self.batch_size])
                results.extend(await self._send_batch(client, batch))
        return results

    async def _send_batch(
        self, client: httpx.AsyncClient, batch: List[PushMessage]
    ) -> List[PushResult]:
        results: List[Optional[PushResult]] = [None] * len(batch)
        pending = list(range(len(batch)))
        last_error = "Push delivery failed"

        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                delay = self.backoff_base_seconds * (2 ** (attempt - 2))
                logger.warning(
                    f"Retrying push batch of {len(pending)} in {delay:.1f}s "
                    f"(attempt {attempt}/{self.max_attempts}): {last_error}"
                )
                await self._sleep(delay)

            try:
                tickets = await self._post(client, [batch[i] for i in pending])
            except PushGatewayError as e:
                last_error = e.message
                if e.retryable:
                    continue
                logger.error(f"Push batch of {len(pending)} failed: {e.message}")
                break

            retry_next = []
            for index, ticket in zip(pending, tickets):
                result = self._classify(batch[index].to, ticket)
                if result is None:
                    retry_next.append(index)
                    last_error = self._ticket_error(ticket)
                else:
                    results[index] = result
            pending = retry_next
            if not pending:
                break

        for index in pending:
            results[index] = PushResult(
                token=batch[index].to,
                status=PushDeliveryStatus.TRANSIENT_FAILURE,
                error=last_error,
            )
        return results  # type: ignore[return-value]

    async def _post(
        self, client: httpx.AsyncClient, messages: List[PushMessage]
    ) -> List[Dict[str, Any]]:
        """One provider call; returns the ticket list aligned with ``messages``."""
        try:
            response = await client.post(
                self.api_url,
                json=[message.to_payload() for message in messages],
                headers=self._headers(),
                timeout=self.timeout_seconds,
            )
        except httpx.TimeoutException as e:
            raise PushGatewayError(
                f"Push request timed out: {str(e)}", "PUSH_TIMEOUT", retryable=True
            )
        except httpx.TransportError as e:
            raise PushGatewayError(
                f"Push transport error: {str(e)}", "PUSH_TRANSPORT_ERROR", retryable=True
            )

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise PushGatewayError(
                f"Push provider returned HTTP {response.status_code}",
                "PUSH_PROVIDER_UNAVAILABLE",
                retryable=True,
            )
        if response.status_code >= 400:
            raise PushGatewayError(
                f"Push provider rejected batch with HTTP {response.status_code}",
                "PUSH_REJECTED",
            )

        try:
            body = response.json()
        except ValueError:
            raise PushGatewayError("Push provider returned non-JSON body", "PUSH_MALFORMED")

        tickets = body.get("data") if isinstance(body, dict) else None
        if not isinstance(tickets, list) or len(tickets) != len(messages):
            raise PushGatewayError(
                "Push provider response does not match the submitted batch",
                "PUSH_MALFORMED",
            )
        for ticket in tickets:
            if not isinstance(ticket, dict) or ticket.get("status") not in ("ok", "error"):
                raise PushGatewayError(
                    "Push provider returned an unrecognized ticket", "PUSH_MALFORMED"
                )
        return tickets

    @staticmethod
    def _ticket_error(ticket: Dict[str, Any]) -> str:
        details = ticket.get("details")
        if isinstance(details, dict) and details.get("error"):
            return str(details["error"])
        return str(ticket.get("message") or "Unknown push error")

    def _classify(self, token: str, ticket: Dict[str, Any]) -> Optional[PushResult]:
        """Map a provider ticket to a result; None means resend on the next attempt"""
        if ticket.get("status") == "ok":
            message_id = ticket.get("id") or ticket.get("pushNotificationId")
            if not message_id:
                return PushResult(
                    token=token,
                    status=PushDeliveryStatus.TRANSIENT_FAILURE,
                    error="Push provider returned no ticket id",
                )
            return PushResult(
                token=token,
                status=PushDeliveryStatus.DELIVERED,
                message_id=str(message_id),
            )

        error = self._ticket_error(ticket)
        if error in PERMANENT_ERRORS:
            return PushResult(
                token=token, status=PushDeliveryStatus.PERMANENT_FAILURE, error=error
            )
        if error in RETRYABLE_MESSAGE_ERRORS:
            return None
        return PushResult(
            token=token, status=PushDeliveryStatus.TRANSIENT_FAILURE, error=error
        )


def get_push_gateway() -> PushGateway:
    """Dependency to get PushGateway instance"""
    return PushGateway()
