"""HTTP client for the downstream FHIR server.

Writes Patient resources with PUT, either as a conditional update keyed by
an identifier or as a direct update of a known resource id. Both are
idempotent on the server side, so a repeated delivery of the same group
leaves the server in the same state.
"""

from __future__ import annotations

import time
from typing import Any
from urllib.parse import quote

import httpx

from fhir.observability import DefaultFhirClientProbe, FhirClientProbe
from infrastructure.settings import FhirSettings
from shared_kernel.outbox import DeliveryFailed, DeliveryResult

FHIR_JSON = "application/fhir+json"


class FhirClient:
    """Delivery gateway backed by httpx.AsyncClient.

    Failed writes are raised as DeliveryFailed carrying the HTTP status, or
    no status for transport errors and timeouts.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 15.0,
        probe: FhirClientProbe | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the FHIR client.

        Args:
            base_url: FHIR server base URL, ending with a slash
            timeout_seconds: Per-request timeout
            probe: Optional domain probe for observability
            client: Optional pre-built httpx client (tests use a MockTransport)
        """
        self._base_url = base_url
        self._probe = probe or DefaultFhirClientProbe()
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_seconds,
            headers={"Content-Type": FHIR_JSON, "Accept": FHIR_JSON},
        )

    @classmethod
    def from_settings(
        cls, settings: FhirSettings, probe: FhirClientProbe | None = None
    ) -> FhirClient:
        """Create a client from FHIR settings."""
        return cls(
            base_url=settings.base_url,
            timeout_seconds=settings.timeout_seconds,
            probe=probe,
        )

    async def deliver_conditional(
        self,
        identifier_system: str,
        identifier_value: str,
        resource: dict[str, Any],
    ) -> DeliveryResult:
        """Create or update the Patient matching an identifier.

        Args:
            identifier_system: Identifier namespace
            identifier_value: Identifier value within the namespace
            resource: The Patient resource

        Returns:
            The server-assigned resource id and version

        Raises:
            DeliveryFailed: If the server rejects the write or is unreachable
        """
        return await self._put(
            "Patient",
            resource,
            params={"identifier": f"{identifier_system}|{identifier_value}"},
        )

    async def deliver_by_id(
        self,
        resource_id: str,
        resource: dict[str, Any],
        if_match: str | None = None,
    ) -> DeliveryResult:
        """Update the Patient with a known id.

        Args:
            resource_id: Server-side resource id
            resource: The Patient resource
            if_match: Optional version for an If-Match precondition

        Returns:
            The resource id and new version

        Raises:
            DeliveryFailed: If the server rejects the write or is unreachable
        """
        body = {**resource, "id": resource_id}
        headers = {"If-Match": f'W/"{if_match}"'} if if_match else None
        return await self._put(
            f"Patient/{quote(resource_id, safe='')}",
            body,
            headers=headers,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _put(
        self,
        path: str,
        body: dict[str, Any],
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> DeliveryResult:
        url = f"{self._base_url}{path}"
        start = time.perf_counter()
        try:
            response = await self._client.put(
                path, json=body, params=params, headers=headers
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = e.response.text or f"HTTP {status}"
            self._probe.call_failed(url, time.perf_counter() - start, detail, status)
            raise DeliveryFailed(detail, status=status) from e
        except httpx.HTTPError as e:
            detail = str(e) or type(e).__name__
            self._probe.call_failed(url, time.perf_counter() - start, detail)
            raise DeliveryFailed(detail) from e

        self._probe.call_succeeded(url, time.perf_counter() - start)
        return _parse_result(response)


def _parse_result(response: httpx.Response) -> DeliveryResult:
    """Read the resource id and version from a write response.

    The version comes from meta.versionId, falling back to a weak ETag
    (W/"<version>") when the body carries none.
    """
    try:
        data = response.json() if response.content else {}
    except ValueError:
        data = {}
    if not isinstance(data, dict):
        data = {}

    resource_id = data.get("id")
    meta = data.get("meta") or {}
    version = meta.get("versionId") if isinstance(meta, dict) else None
    if version is None:
        version = _version_from_etag(response.headers.get("ETag"))

    return DeliveryResult(
        resource_id=str(resource_id) if resource_id is not None else None,
        resource_version=str(version) if version is not None else None,
    )


def _version_from_etag(etag: str | None) -> str | None:
    if not etag:
        return None
    value = etag.removeprefix("W/").strip('"')
    return value or None
