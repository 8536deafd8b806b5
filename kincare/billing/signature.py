"""Standard Webhooks signature check, as used by the payment provider."""

import json
from typing import Any, Mapping

from standardwebhooks.webhooks import Webhook
from standardwebhooks.webhooks import WebhookVerificationError as SignatureMismatch

from kincare.errors import ValidationError


class WebhookVerificationError(ValidationError):
    pass


class WebhookVerifier:
    """Checks `webhook-id` / `webhook-timestamp` / `webhook-signature` against a `whsec_` secret."""

    def __init__(self, secret: str):
        self._webhook = Webhook(secret)

    def verify(self, body: bytes, headers: Mapping[str, str]) -> Any:
        """Return the decoded JSON payload once the signature and timestamp check out."""
        try:
            return self._webhook.verify(body, dict(headers.items()))
        except json.JSONDecodeError:
            raise
        except (SignatureMismatch, ValueError) as e:
            # ValueError covers garbled signature entries the library does not wrap.
            raise WebhookVerificationError(str(e) or "Invalid signature") from e
