"""
Inbound partner webhooks.

Each request is checked against the partner's HMAC-SHA256 secret before the
body is parsed:

  1. find the ACTIVE integration          (IntegrationNotFoundError)
  2. verify hex HMAC of the raw body      (AuthenticationError)
  3. parse JSON                           (ValidationError)
  4. hand the event to the partner client
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Mapping, Optional

from connectors.partners import PartnerClientFactory, build_partner_client
from signal_engine.config import EngineConfig
from signal_engine.errors import AuthenticationError, IntegrationNotFoundError, ValidationError
from signal_engine.models import PartnerType
from storage.signal_store import SignalStore

logger = logging.getLogger(__name__)


def verify_hmac_signature(secret: Optional[str], payload: str, signature: Optional[str]) -> bool:
    """Constant-time check of a hex HMAC-SHA256 signature. An empty secret never verifies."""
    if not secret or not signature:
        return False

    computed = hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()
    return hmac.compare_digest(computed, signature.strip())


class WebhookHandler:
    """
    Usage:
        handler = WebhookHandler(store, config)
        await handler.process_indeed_webhook(body, request.headers.get("x-indeed-signature"))
    """

    def __init__(
        self,
        store: SignalStore,
        config: EngineConfig,
        client_factory: PartnerClientFactory = build_partner_client,
    ):
        self.store = store
        self.config = config
        self.client_factory = client_factory

    def _fallback_secret(self, partner: PartnerType) -> str:
        if partner == PartnerType.LINKEDIN:
            return self.config.linkedin_webhook_secret
        if partner == PartnerType.INDEED:
            return self.config.indeed_webhook_secret
        return ""

    async def process_linkedin_webhook(
        self,
        payload: str,
        signature: Optional[str],
        headers: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, Any]:
        return await self._process(PartnerType.LINKEDIN, payload, signature)

    async def process_indeed_webhook(
        self,
        payload: str,
        signature: Optional[str],
        headers: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, Any]:
        return await self._process(PartnerType.INDEED, payload, signature)

    async def _process(self, partner: PartnerType, payload: str, signature: Optional[str]) -> Dict[str, Any]:
        integration = await self.store.get_active_integration(partner)
        if integration is None:
            raise IntegrationNotFoundError(f"No active {partner.value} integration")

        secret = integration.webhook_secret or self._fallback_secret(partner)
        if not verify_hmac_signature(secret, payload, signature):
            logger.warning(f"Rejected {partner.value} webhook: invalid signature")
            raise AuthenticationError("Invalid webhook signature")

        try:
            event = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid webhook payload: {e}") from e
        if not isinstance(event, dict):
            raise ValidationError("Webhook payload must be a JSON object")

        async with self.client_factory(integration, self.store, self.config) as client:
            await client.process_webhook(event)

        return {"success": True}

    def verify_webhook_challenge(self, partner: PartnerType, challenge: str) -> str:
        logger.info(f"Answering {partner.value} webhook challenge")
        return challenge
