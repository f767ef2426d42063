"""Mapping from merged outbox payloads to FHIR Patient resources.

The merged payload is an open mapping of flat column-style fields written
by the upstream triggers (name_family, address_city, ...). Fields that are
absent or empty are left out of the resource.
"""

from __future__ import annotations

from typing import Any

ADDRESS_FIELDS = {
    "address_city": "city",
    "address_state": "state",
    "address_postal_code": "postalCode",
    "address_country": "country",
}


def build_patient_resource(payload: dict[str, Any]) -> dict[str, Any]:
    """Build a FHIR Patient resource from a merged payload.

    Args:
        payload: The merged record of one outbox group

    Returns:
        A Patient resource; the primary identifier (if any) comes first
    """
    resource: dict[str, Any] = {"resourceType": "Patient"}

    identifiers = _identifiers(payload)
    if identifiers:
        resource["identifier"] = identifiers

    name = _name(payload)
    if name:
        resource["name"] = [name]

    if payload.get("birth_date"):
        resource["birthDate"] = payload["birth_date"]
    if payload.get("gender"):
        resource["gender"] = payload["gender"]

    telecom = []
    if payload.get("phone_number"):
        telecom.append({"system": "phone", "value": payload["phone_number"]})
    if payload.get("email"):
        telecom.append({"system": "email", "value": payload["email"]})
    if telecom:
        resource["telecom"] = telecom

    address = _address(payload)
    if address:
        resource["address"] = [address]

    return resource


def _identifiers(payload: dict[str, Any]) -> list[dict[str, str]]:
    identifiers = []
    if payload.get("identifier_system") and payload.get("identifier_value"):
        identifiers.append(
            {
                "system": payload["identifier_system"],
                "value": payload["identifier_value"],
            }
        )

    others = payload.get("other_identifiers")
    if isinstance(others, list):
        for item in others:
            if not isinstance(item, dict):
                continue
            if item.get("identifier_system") and item.get("identifier_value"):
                identifiers.append(
                    {
                        "system": item["identifier_system"],
                        "value": item["identifier_value"],
                    }
                )
    return identifiers


def _name(payload: dict[str, Any]) -> dict[str, Any]:
    family = payload.get("name_family")
    given = payload.get("name_given")
    text = payload.get("name_text")
    if not (family or given or text):
        return {}

    name: dict[str, Any] = {}
    if family:
        name["family"] = family
    if given:
        name["given"] = given if isinstance(given, list) else [given]

    if text:
        name["text"] = text
    else:
        given_text = " ".join(given) if isinstance(given, list) else (given or "")
        name["text"] = f"{given_text} {family or ''}".strip()
    return name


def _address(payload: dict[str, Any]) -> dict[str, Any]:
    address: dict[str, Any] = {}
    line = payload.get("address_line")
    if line:
        address["line"] = line if isinstance(line, list) else [line]
    for source, target in ADDRESS_FIELDS.items():
        if payload.get(source):
            address[target] = payload[source]
    return address
