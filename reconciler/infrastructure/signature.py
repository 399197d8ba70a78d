import base64
import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-square-hmacsha256-signature"


class WebhookSignatureVerifier:
    def __init__(self, signature_key: str | None, notification_url: str | None = None):
        self._signature_key = (signature_key or "").strip()
        self._notification_url = (notification_url or "").strip()

    @property
    def enabled(self) -> bool:
        return bool(self._signature_key)

    def expected_signature(self, body: bytes) -> str:
        digest = hmac.new(
            self._signature_key.encode("utf-8"),
            self._notification_url.encode("utf-8") + body,
            hashlib.sha256,
        ).digest()
        return base64.b64encode(digest).decode("ascii")

    def verify(self, body: bytes, signature: str | None) -> bool:
        if not self.enabled:
            logger.warning("Webhook signature key not configured, skipping verification")
            return True
        if not signature:
            return False

        return hmac.compare_digest(self.expected_signature(body), signature.strip())
