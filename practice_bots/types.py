"""Shared type aliases for FHIR/JSON payloads."""

from __future__ import annotations

from typing import TypeAlias

JsonValue: TypeAlias = object
JsonObject: TypeAlias = dict[str, JsonValue]

# A FHIR resource as exchanged on the wire ({"resourceType": ..., "id": ...}).
FhirResource: TypeAlias = dict[str, object]
