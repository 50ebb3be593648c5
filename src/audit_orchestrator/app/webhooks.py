"""Outbound webhook delivery: signed envelopes, retry with backoff, paced queue."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import deque
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any, get_args

from . import signing
from .http import HttpConnectionError, HttpStatusError, HttpTimeout, HttpTransport, UrllibTransport
from .models import DeliveryResult, EnvelopeMetadata, QueuedEvent, WebhookChannel, WebhookEnvelope

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
KNOWN_CHANNELS: tuple[str, ...] = get_args(WebhookChannel)
RECENT_DELIVERY_LIMIT = 50


def new_request_id() -> str:
    return f"WH-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class WebhookDelivery:
    """Delivers envelopes to per-channel URLs.

    `send` blocks the caller through retries; `queue_event` hands the payload to a
    single background drain that sends entries in FIFO order with fixed pacing.
    """

    def __init__(
        self,
        *,
        urls: Mapping[str, str] | None = None,
        secret: str = "",
        transport: HttpTransport | None = None,
        timeout_s: float = 10.0,
        max_retries: int = 3,
        pacing_s: float = 0.1,
        signature_header: str = "X-Signature",
        source: str = "audit-orchestrator",
        version: str = "2.0.0",
        sleep: Callable[[float], None] = time.sleep,
        auto_drain: bool = True,
    ) -> None:
        self.urls = {channel: url for channel, url in dict(urls or {}).items() if url}
        self.secret = secret
        self.transport = transport or UrllibTransport()
        self.timeout_s = timeout_s
        self.max_retries = max(0, max_retries)
        self.pacing_s = max(0.0, pacing_s)
        self.signature_header = signature_header
        self.source = source
        self.version = version
        self._sleep = sleep
        self._auto_drain = auto_drain

        self._lock = threading.Lock()
        self._queue: deque[tuple[QueuedEvent, dict[str, Any], str]] = deque()
        self._draining = False
        self._drain_thread: threading.Thread | None = None
        self._recent: deque[DeliveryResult] = deque(maxlen=RECENT_DELIVERY_LIMIT)
        self._stats: dict[str, Any] = {
            "webhooks_sent": 0,
            "webhooks_received": 0,
            "errors": 0,
            "last_activity": None,
        }

        unknown = sorted(set(self.urls) - set(KNOWN_CHANNELS))
        if unknown:
            logger.warning("webhook config event=unknown_channels channels=%s", ",".join(unknown))
        if not self.secret:
            logger.warning("webhook config event=unsigned reason=no secret configured; inbound verification is disabled")

    @property
    def security_enabled(self) -> bool:
        return bool(self.secret)

    def resolve_url(self, channel: str) -> str | None:
        return self.urls.get(channel) or self.urls.get("generic")

    def is_configured(self, channel: str | None = None) -> bool:
        if channel is None:
            return bool(self.urls)
        return self.resolve_url(channel) is not None

    def build_envelope(
        self,
        channel: str,
        data: dict[str, Any],
        *,
        request_id: str,
        priority: str = "normal",
        retry_count: int = 0,
    ) -> WebhookEnvelope:
        return WebhookEnvelope(
            event=channel,
            timestamp=datetime.now(UTC),
            source=self.source,
            version=self.version,
            data=dict(data),
            metadata=EnvelopeMetadata(request_id=request_id, priority=priority, retry_count=retry_count),
        )

    def send(
        self,
        channel: str,
        data: dict[str, Any],
        *,
        priority: str = "normal",
        request_id: str | None = None,
        timeout_s: float | None = None,
    ) -> DeliveryResult:
        request_id = request_id or new_request_id()
        url = self.resolve_url(channel)
        if url is None:
            logger.warning("webhook send event=skipped channel=%s reason=not_configured", channel)
            return DeliveryResult(
                success=False,
                channel=channel,
                request_id=request_id,
                skipped=True,
                error=f"No webhook URL configured for channel {channel}",
            )

        retry_count = 0
        while True:
            envelope = self.build_envelope(
                channel, data, request_id=request_id, priority=priority, retry_count=retry_count
            )
            body = envelope.model_dump(mode="json")
            raw = signing.canonical_json(body)
            headers = {
                "Content-Type": "application/json",
                "User-Agent": f"{self.source}/{self.version}",
            }
            if self.secret:
                headers[self.signature_header] = signing.sign(raw, self.secret)

            status_code: int | None = None
            retryable = False
            try:
                response = self.transport.request(
                    "POST", url, body=raw, headers=headers, timeout_s=timeout_s or self.timeout_s
                )
            except HttpStatusError as exc:
                status_code = exc.status
                retryable = exc.status in RETRYABLE_STATUS_CODES
                reason = str(exc)
            except HttpTimeout as exc:
                retryable = True
                reason = str(exc)
            except HttpConnectionError as exc:
                reason = str(exc)
            except Exception as exc:  # noqa: BLE001
                logger.exception("webhook send event=transport_crashed channel=%s request_id=%s", channel, request_id)
                reason = f"{type(exc).__name__}: {exc}"
            else:
                self._record(sent=True)
                logger.info(
                    "webhook send event=delivered channel=%s request_id=%s status=%d attempts=%d",
                    channel,
                    request_id,
                    response.status,
                    retry_count + 1,
                )
                return DeliveryResult(
                    success=True,
                    channel=channel,
                    request_id=request_id,
                    attempts=retry_count + 1,
                    status_code=response.status,
                )

            if retryable and retry_count < self.max_retries:
                delay_s = float(2**retry_count)
                logger.warning(
                    "webhook send event=retry channel=%s request_id=%s retry=%d/%d delay_s=%.0f reason=%s",
                    channel,
                    request_id,
                    retry_count + 1,
                    self.max_retries,
                    delay_s,
                    reason,
                )
                self._sleep(delay_s)
                retry_count += 1
                continue

            self._record(sent=False)
            logger.error(
                "webhook send event=failed channel=%s request_id=%s attempts=%d reason=%s",
                channel,
                request_id,
                retry_count + 1,
                reason,
            )
            return DeliveryResult(
                success=False,
                channel=channel,
                request_id=request_id,
                attempts=retry_count + 1,
                status_code=status_code,
                error=reason,
            )

    def queue_event(self, channel: str, data: dict[str, Any], *, priority: str = "normal") -> QueuedEvent:
        with self._lock:
            receipt = QueuedEvent(
                id=new_request_id(),
                channel=channel,
                queued_at=datetime.now(UTC),
                position=len(self._queue) + 1,
            )
            self._queue.append((receipt, dict(data), priority))
            start_drain = self._auto_drain and not self._draining
            if start_drain:
                self._draining = True
        if start_drain:
            thread = threading.Thread(target=self._drain_loop, name="webhook-drain", daemon=True)
            self._drain_thread = thread
            thread.start()
        return receipt

    def drain(self) -> list[DeliveryResult]:
        """Send every queued entry in FIFO order unless another drain already runs."""
        with self._lock:
            if self._draining:
                return []
            self._draining = True
        return self._drain_loop()

    def wait_for_drain(self, timeout_s: float | None = None) -> None:
        thread = self._drain_thread
        if thread is not None:
            thread.join(timeout_s)

    def _drain_loop(self) -> list[DeliveryResult]:
        results: list[DeliveryResult] = []
        try:
            while True:
                with self._lock:
                    if not self._queue:
                        self._draining = False
                        return results
                    receipt, data, priority = self._queue.popleft()
                try:
                    result = self.send(receipt.channel, data, priority=priority, request_id=receipt.id)
                except Exception as exc:  # noqa: BLE001
                    logger.exception("webhook queue event=send_crashed channel=%s", receipt.channel)
                    result = DeliveryResult(
                        success=False, channel=receipt.channel, request_id=receipt.id, error=str(exc)
                    )
                results.append(result)
                with self._lock:
                    self._recent.append(result)
                if self.pacing_s > 0:
                    self._sleep(self.pacing_s)
        finally:
            with self._lock:
                self._draining = False

    def queue_length(self) -> int:
        with self._lock:
            return len(self._queue)

    def recent_deliveries(self) -> list[DeliveryResult]:
        with self._lock:
            return [item.model_copy() for item in self._recent]

    def verify(self, payload: Any, signature: str | None) -> bool:
        return signing.verify(payload, signature, self.secret)

    def record_received(self) -> None:
        with self._lock:
            self._stats["webhooks_received"] += 1
            self._stats["last_activity"] = datetime.now(UTC)

    def _record(self, *, sent: bool) -> None:
        with self._lock:
            if sent:
                self._stats["webhooks_sent"] += 1
            else:
                self._stats["errors"] += 1
            self._stats["last_activity"] = datetime.now(UTC)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            snapshot = dict(self._stats)
            queue_length = len(self._queue)
            draining = self._draining
        snapshot.update(
            {
                "queue_length": queue_length,
                "draining": draining,
                "configured_channels": sorted(self.urls),
                "security_enabled": self.security_enabled,
            }
        )
        return snapshot

    def config(self) -> dict[str, Any]:
        return {
            "channels": {channel: channel in self.urls for channel in KNOWN_CHANNELS},
            "security_enabled": self.security_enabled,
            "signature_header": self.signature_header,
            "timeout_s": self.timeout_s,
            "max_retries": self.max_retries,
            "source": self.source,
            "version": self.version,
        }

    # Convenience senders used by the lifecycle and the agent.

    def trigger_alpha_flow(self, project: dict[str, Any]) -> DeliveryResult:
        return self.send("alpha_omega", {"workflow": "alpha", "action": "start_project", **project}, priority="high")

    def trigger_omega_flow(self, project: dict[str, Any]) -> DeliveryResult:
        return self.send(
            "alpha_omega", {"workflow": "omega", "action": "complete_project", **project}, priority="high"
        )

    def send_notification(self, message: str, *, recipients: list[str] | None = None, **extra: Any) -> DeliveryResult:
        data = {"message": message, "recipients": list(recipients or []), **extra}
        return self.send("notification", data, priority=str(extra.get("priority", "normal")))

    def send_escalation(
        self, reason: str, *, level: str = "high", request_id: str | None = None, **extra: Any
    ) -> DeliveryResult:
        data = {"reason": reason, "level": level, "requires_immediate_action": True, **extra}
        return self.send("escalation", data, priority="critical", request_id=request_id)

    def sync_agent_activity(self, activity: dict[str, Any]) -> DeliveryResult:
        return self.send("agent_activity", {"agent": "orchestrator", **activity})

    def sync_to_table(self, table: str, record: dict[str, Any], *, operation: str = "upsert") -> DeliveryResult:
        return self.send("table_update", {"table": table, "operation": operation, "record": record})

    def test_channel(self, channel: str) -> DeliveryResult:
        return self.send(channel, {"test": True, "message": f"Connectivity check for {channel}"})
