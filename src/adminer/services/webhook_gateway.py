"""
Webhook Gateway - signature verification and envelope parsing per event source
Supports the billing provider (Dodo) and the external worker platform
"""
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any
import hashlib
import hmac
import json
import logging

from .events import WebhookEnvelope, SOURCE_BILLING, SOURCE_WORKER

logger = logging.getLogger(__name__)


def _digest_equal(expected: str, received: str) -> bool:
    return hmac.compare_digest(expected.encode(), received.strip().encode("utf-8", "replace"))


class WebhookGateway(ABC):
    """Abstract base class for webhook sources"""

    source: str = ""
    signature_header: str = ""

    def __init__(self, webhook_secret: Optional[str]):
        self.webhook_secret = webhook_secret

    def _hmac_hex(self, payload: bytes) -> str:
        return hmac.new(self.webhook_secret.encode(), payload, hashlib.sha256).hexdigest()

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        """Verify webhook signature over the raw request body"""
        pass

    @abstractmethod
    def parse_webhook_event(self, payload: Dict[str, Any], query: Optional[Dict[str, str]] = None) -> WebhookEnvelope:
        """Normalize a decoded body into an {id, type, data} envelope"""
        pass

    def parse_body(self, body: bytes, query: Optional[Dict[str, str]] = None) -> Optional[WebhookEnvelope]:
        """
        Decode and normalize a raw webhook body

        Returns:
            WebhookEnvelope, or None when the body is malformed
        """
        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return None
        if not isinstance(payload, dict):
            return None
        try:
            return self.parse_webhook_event(payload, query or {})
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Malformed {self.source} webhook envelope: {e}")
            return None


class DodoWebhookGateway(WebhookGateway):
    """Billing provider: hex HMAC-SHA256 of the raw body in X-Dodo-Signature"""

    source = SOURCE_BILLING
    signature_header = "x-dodo-signature"

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        if not self.webhook_secret:
            logger.warning("DODO_WEBHOOK_SECRET not configured; rejecting billing webhook")
            return False
        if not signature:
            return False
        return _digest_equal(self._hmac_hex(payload), signature)

    def parse_webhook_event(self, payload: Dict[str, Any], query: Optional[Dict[str, str]] = None) -> WebhookEnvelope:
        return WebhookEnvelope(
            id=payload.get("id"),
            type=payload.get("type"),
            data=payload.get("data") or {},
            timestamp=payload.get("timestamp") or payload.get("created_at"),
        )


class WorkerWebhookGateway(WebhookGateway):
    """External worker platform: ``sha256=<hex>`` in X-Webhook-Signature"""

    source = SOURCE_WORKER
    signature_header = "x-webhook-signature"

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        if not self.webhook_secret:
            logger.warning("WORKER_WEBHOOK_SECRET not configured; rejecting worker webhook")
            return False
        if not signature:
            return False
        expected = f"sha256={self._hmac_hex(payload)}"
        return _digest_equal(expected, signature)

    def parse_webhook_event(self, payload: Dict[str, Any], query: Optional[Dict[str, str]] = None) -> WebhookEnvelope:
        """
        Accepts the generic envelope or the platform's native shape
        ({eventType, eventData, resource}); the job id may also travel as a
        ``jobId`` query parameter on the webhook URL.
        """
        query = query or {}
        data = dict(payload.get("data") or {})
        resource = payload.get("resource")
        if resource and "resource" not in data:
            data["resource"] = resource
        if "jobId" not in data and query.get("jobId"):
            data["jobId"] = query["jobId"]

        event_id = payload.get("id")
        if not event_id:
            # Native deliveries carry no envelope id; a run reaches one terminal state once
            run_id = (resource or {}).get("id") or (payload.get("eventData") or {}).get("actorRunId")
            event_type = payload.get("eventType")
            event_id = f"{run_id}:{event_type}" if run_id and event_type else None

        return WebhookEnvelope(
            id=event_id,
            type=payload.get("type") or payload.get("eventType"),
            data=data,
            timestamp=payload.get("createdAt"),
        )


def get_webhook_gateway(source: str, config) -> WebhookGateway:
    """
    Factory for webhook gateways

    Args:
        source: "billing" or "worker"
        config: Config instance

    Returns:
        WebhookGateway for the source
    """
    if source == SOURCE_BILLING:
        return DodoWebhookGateway(config.DODO_WEBHOOK_SECRET)
    if source == SOURCE_WORKER:
        return WorkerWebhookGateway(config.WORKER_WEBHOOK_SECRET)
    raise ValueError(f"Unsupported webhook source: {source}")
