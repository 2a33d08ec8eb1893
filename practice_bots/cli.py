"""CLI commands for operators."""

import asyncio
import json
from pathlib import Path

import click
from pydantic import ValidationError

from practice_bots.core.config import settings
from practice_bots.schemas.registration import RegistrationRequest
from practice_bots.services import billing_service, registration_service, welcome_service
from practice_bots.services.email_sender import select_sender
from practice_bots.services.fhir_client import FHIRClient, FHIRError
from practice_bots.services.webhooks.stripe import (
    SignedWebhookPayload,
    WebhookPayloadError,
    WebhookSignatureError,
    construct_event,
    parse_stripe_event,
)


@click.group()
def cli():
    """Practice bots CLI tools."""
    pass


@cli.command()
@click.option("--first-name", required=True, help="Admin first name")
@click.option("--last-name", required=True, help="Admin last name")
@click.option("--email", required=True, help="Admin email address")
@click.option("--organization", required=True, help="Organization name")
@click.password_option(help="Initial password for the admin")
def register_org(first_name: str, last_name: str, email: str, organization: str, password: str):
    """
    Create an organization and invite its first admin practitioner.

    Example:
        python -m practice_bots.cli register-org --first-name Ada --last-name Lovelace \\
            --email ada@example.com --organization "Lovelace Clinic"
    """
    try:
        request = RegistrationRequest(
            first_name=first_name,
            last_name=last_name,
            email=email,
            organization_name=organization,
            password=password,
        )
        result = asyncio.run(
            registration_service.register_organization(
                request, registration_service.RegistrationConfig.from_settings(settings)
            )
        )
    except ValidationError as e:
        click.echo(f"❌ Invalid input: {e.error_count()} error(s)")
        for error in e.errors():
            click.echo(f"  {'.'.join(str(p) for p in error['loc'])}: {error['msg']}")
        raise SystemExit(1)
    except registration_service.RegistrationConfigError as e:
        click.echo(f"❌ {e}")
        raise SystemExit(1)
    except FHIRError as e:
        click.echo(f"❌ Error: {e}")
        raise SystemExit(1)

    click.echo(f"✓ Created organization: {organization}")
    click.echo(f"  ID: {result.organization_id}")
    click.echo(f"✓ Invited practitioner: {result.practitioner_id}")
    click.echo(f"  User: {result.user_reference}")
    click.echo(f"  Security tokens stored: {result.security_tokens_stored}")


async def _send_welcome(practitioner_id: str):
    async with FHIRClient.from_settings(settings) as client:
        await client.ensure_login()
        practitioner = await client.read_resource("Practitioner", practitioner_id)
        selection = select_sender(settings, client)
        if not selection.sender:
            raise click.ClickException(selection.error or "No email sender configured")
        return await welcome_service.send_welcome_email(
            client,
            selection.sender,
            practitioner,
            welcome_service.WelcomeConfig.from_settings(settings),
        )


@cli.command()
@click.option("--practitioner-id", required=True, help="Practitioner resource id")
def send_welcome(practitioner_id: str):
    """
    Run the welcome notifier for one practitioner.

    Example:
        python -m practice_bots.cli send-welcome --practitioner-id 123
    """
    try:
        result = asyncio.run(_send_welcome(practitioner_id))
    except FHIRError as e:
        click.echo(f"❌ Error: {e}")
        raise SystemExit(1)

    marker = "✓" if result.sent else "❌"
    click.echo(f"{marker} {result.status.value}: {result.detail or ''}")
    if result.attempts:
        click.echo(f"  Token lookups: {result.attempts}")
    if not result.sent:
        raise SystemExit(1)


async def _reconcile(event):
    async with FHIRClient.from_settings(settings) as client:
        await client.ensure_login()
        return await billing_service.reconcile_event(
            client, event, billing_service.BillingConfig.from_settings(settings)
        )


@cli.command()
@click.argument("event_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--signature",
    default=None,
    help="Stripe-Signature header to verify against STRIPE_WEBHOOK_SECRET (timestamp age not checked)",
)
def replay_stripe_event(event_file: Path, signature: str | None):
    """
    Reconcile a saved Stripe event (e.g. exported from the dashboard).

    Example:
        python -m practice_bots.cli replay-stripe-event evt_123.json
    """
    body = event_file.read_bytes()
    try:
        if signature:
            if not settings.STRIPE_WEBHOOK_SECRET:
                raise click.ClickException("STRIPE_WEBHOOK_SECRET not configured")
            event = construct_event(
                SignedWebhookPayload(body=body, signature=signature),
                settings.STRIPE_WEBHOOK_SECRET,
                tolerance=0,
            )
        else:
            event = parse_stripe_event(body)
    except (WebhookSignatureError, WebhookPayloadError) as e:
        click.echo(f"❌ {e}")
        raise SystemExit(1)

    try:
        result = asyncio.run(_reconcile(event))
    except FHIRError as e:
        click.echo(f"❌ Error: {e}")
        raise SystemExit(1)

    click.echo(json.dumps(result.model_dump(exclude_none=True), indent=2))
    if result.handled:
        click.echo(f"✓ {event.type} → {result.action}")
    else:
        click.echo(f"→ {event.type} not handled ({result.action})")


if __name__ == "__main__":
    cli()
