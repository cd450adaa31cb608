# identity_api/services/webhooks.py
"""
Signed lifecycle webhooks.

Body: compact JSON ``{"event": <name>, "payload": <user record>}`` signed with
the webhook private key; the base64 signature travels in the configured
signature header, the same scheme inbound internal requests use.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from identity_api.core import signatures
from identity_api.core.keys import KeyPair
from identity_api.services.side_effects import Scheduler


logger = logging.getLogger(__name__)

USER_CREATED = "user.created"
USER_UPDATED = "user.updated"
USER_DELETED = "user.deleted"


class WebhookSender:
    def __init__(
        self,
        events: Mapping[str, Sequence[str]],
        key_pair: KeyPair,
        header_name: str,
        http_client: httpx.Client | None = None,
        timeout: float = 10.0,
    ) -> None:
        if key_pair.private_key is None:
            raise ValueError("Webhook key pair must include a private key")
        self.events = {event: list(urls) for event, urls in events.items()}
        self._private_key = key_pair.private_key
        self.header_name = header_name
        self._client = http_client or httpx.Client(timeout=timeout)
        self.timeout = timeout

    def urls_for(self, event: str) -> list[str]:
        return self.events.get(event, [])

    def build_request(self, event: str, payload: dict[str, Any]) -> tuple[bytes, str]:
        body = signatures.canonical_json({"event": event, "payload": payload})
        return body, signatures.sign(body, self._private_key)

    def send(self, event: str, payload: dict[str, Any], scheduler: Scheduler) -> None:
        urls = self.urls_for(event)
        if not urls:
            logger.debug("No webhook subscribers for %s", event)
            return

        body, signature = self.build_request(event, payload)
        for url in urls:
            scheduler.schedule(f"webhook {event} -> {url}", self.deliver, url, body, signature)

    def deliver(self, url: str, body: bytes, signature: str) -> None:
        response = self._client.post(
            url,
            content=body,
            headers={"Content-Type": "application/json", self.header_name: signature},
            timeout=self.timeout,
        )
        response.raise_for_status()
        logger.info("Delivered webhook to %s (%s)", url, response.status_code)

    def close(self) -> None:
        self._client.close()
