"""Structured logging helpers (PHI-safe)."""

from typing import Any
from urllib.parse import urlsplit


def build_log_context(
    *,
    bot: str | None = None,
    profile_id: str | None = None,
    org_id: str | None = None,
    event_id: str | None = None,
    event_type: str | None = None,
) -> dict[str, Any]:
    """Return a PHI-safe log context dict."""
    context: dict[str, Any] = {}
    if bot:
        context["bot"] = bot
    if profile_id:
        context["profile_id"] = profile_id
    if org_id:
        context["org_id"] = org_id
    if event_id:
        context["event_id"] = event_id
    if event_type:
        context["event_type"] = event_type
    return context


def mask_email(email: str | None) -> str:
    if not email:
        return ""
    local, _, domain = email.partition("@")
    prefix = local[:3] if local else ""
    return f"{prefix}...@{domain}" if domain else f"{prefix}..."


def safe_url(url: str | None) -> str:
    """Drop query strings and anything after the first path segment.

    Password-setup URLs carry secrets in the trailing path segments.
    """
    if not url:
        return ""
    parts = urlsplit(url)
    first_segment = parts.path.strip("/").split("/", 1)[0]
    path = f"/{first_segment}" if first_segment else ""
    return f"{parts.scheme}://{parts.netloc}{path}"
