"""Helpers for working with FHIR resources as plain dicts."""

from __future__ import annotations

from practice_bots.types import FhirResource, JsonObject


def make_reference(resource_type: str, resource_id: str) -> str:
    return f"{resource_type}/{resource_id}"


def reference_to(resource: FhirResource) -> JsonObject:
    """Build a FHIR Reference object pointing at ``resource``."""
    return {"reference": make_reference(str(resource["resourceType"]), str(resource["id"]))}


def parse_reference(reference: str | None) -> tuple[str, str] | None:
    """Split ``"Practitioner/123"`` into ``("Practitioner", "123")``.

    Absolute URLs and history references keep only the type/id pair.
    """
    if not reference:
        return None
    parts = [p for p in reference.split("/") if p]
    if "_history" in parts:
        parts = parts[: parts.index("_history")]
    if len(parts) < 2:
        return None
    return parts[-2], parts[-1]


def reference_id(reference: str | None) -> str | None:
    parsed = parse_reference(reference)
    return parsed[1] if parsed else None


def get_email(resource: FhirResource) -> str | None:
    """Return the first email ContactPoint value on a Patient/Practitioner."""
    for contact in resource.get("telecom") or []:
        if isinstance(contact, dict) and contact.get("system") == "email":
            value = (contact.get("value") or "").strip()
            if value:
                return value
    return None


def first_given_name(resource: FhirResource) -> str | None:
    for name in resource.get("name") or []:
        if not isinstance(name, dict):
            continue
        given = name.get("given") or []
        if given and given[0]:
            return str(given[0])
    return None


def operation_outcome(text: str, *, code: str = "processing", severity: str = "error") -> JsonObject:
    return {
        "resourceType": "OperationOutcome",
        "issue": [
            {
                "severity": severity,
                "code": code,
                "details": {"text": text},
            }
        ],
    }


def outcome_message(body: object) -> str | None:
    """Extract the first human-readable issue text from an OperationOutcome."""
    if not isinstance(body, dict) or body.get("resourceType") != "OperationOutcome":
        return None
    for issue in body.get("issue") or []:
        if not isinstance(issue, dict):
            continue
        details = issue.get("details") or {}
        text = details.get("text") if isinstance(details, dict) else None
        if text:
            return str(text)
        if issue.get("diagnostics"):
            return str(issue["diagnostics"])
    return None
