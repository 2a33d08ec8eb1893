"""Webhook handler interface."""

from __future__ import annotations

from typing import Protocol

from fastapi import Request, Response

from practice_bots.services.fhir_client import FHIRClient

WebhookResult = dict | Response


class WebhookHandler(Protocol):
    async def handle(self, request: Request, client: FHIRClient, **kwargs) -> WebhookResult:
        """Handle a webhook request."""
