"""
HTTP client for the allergen store and the scanning service.

Both live behind the same base URL:
    GET    /allergens          list records
    POST   /allergens          create
    PUT    /allergens/{id}     update
    DELETE /allergens/{id}     remove
    POST   /scan               multipart scan request

Transport failures become ConnectivityError; non-success responses from
write/scan endpoints become ServiceRejection with the service's `detail`.
"""

import json
import logging
import mimetypes
from collections.abc import Iterable

import httpx
from pydantic import ValidationError as PydanticValidationError

from .config import get_settings
from .errors import ConnectivityError, ServiceRejection
from .models import (
    AllergenDraft,
    AllergenRecord,
    InputPayload,
    ScanResponse,
    TextPayload,
)

logger = logging.getLogger(__name__)


def _error_detail(response: httpx.Response, fallback: str) -> str:
    """Pull a human-readable `detail` out of an error body."""
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return fallback
    if not isinstance(body, dict):
        return fallback
    detail = body.get("detail")
    if isinstance(detail, str) and detail.strip():
        return detail
    # FastAPI-style 422: [{"loc": [...], "msg": "...", ...}]
    if isinstance(detail, list):
        messages = [d.get("msg") for d in detail if isinstance(d, dict) and d.get("msg")]
        if messages:
            return "; ".join(messages)
    return fallback


def _record_or_none(response: httpx.Response) -> AllergenRecord | None:
    try:
        return AllergenRecord.model_validate(response.json())
    except (json.JSONDecodeError, UnicodeDecodeError, PydanticValidationError):
        return None


class AllergyApiClient:
    """Async client for the allergy backend."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            base_url: Backend root, e.g. "http://localhost:8000".
                Defaults to ALLERGY_API_URL.
            timeout: Request timeout in seconds.
            transport: Custom transport (tests pass httpx.MockTransport).
        """
        settings = get_settings()
        self.base_url = (base_url or settings.allergy_api_url).rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else settings.allergy_request_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "AllergyApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"{method} {path} timed out: {e}")
            raise ConnectivityError("The allergy service took too long to respond") from e
        except httpx.TransportError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise ConnectivityError(f"Cannot reach the allergy service at {self.base_url}") from e

    # ── Allergen store ──

    async def list_allergens(self) -> list[AllergenRecord]:
        """Fetch all allergen records in store order. Duplicate ids keep the first."""
        response = await self._request("GET", "/allergens")
        if not response.is_success:
            raise ConnectivityError(
                f"Allergen store returned HTTP {response.status_code}"
            )
        try:
            rows = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ConnectivityError("Allergen store sent an unreadable response") from e
        if not isinstance(rows, list):
            raise ConnectivityError("Allergen store sent an unexpected response")

        records: list[AllergenRecord] = []
        seen: set[str] = set()
        for row in rows:
            try:
                record = AllergenRecord.model_validate(row)
            except PydanticValidationError as e:
                logger.warning(f"Skipping malformed allergen record: {e.error_count()} errors")
                continue
            if record.id in seen:
                logger.warning(f"Duplicate allergen id {record.id!r} ignored")
                continue
            seen.add(record.id)
            records.append(record)
        return records

    async def create_allergen(self, draft: AllergenDraft) -> AllergenRecord | None:
        response = await self._request("POST", "/allergens", json=draft.to_wire())
        if not response.is_success:
            raise ServiceRejection(_error_detail(response, "Save failed"), response.status_code)
        return _record_or_none(response)

    async def update_allergen(
        self, allergen_id: str, draft: AllergenDraft
    ) -> AllergenRecord | None:
        response = await self._request(
            "PUT", f"/allergens/{allergen_id}", json=draft.to_wire()
        )
        if not response.is_success:
            raise ServiceRejection(_error_detail(response, "Save failed"), response.status_code)
        return _record_or_none(response)

    async def delete_allergen(self, allergen_id: str) -> None:
        response = await self._request("DELETE", f"/allergens/{allergen_id}")
        if not response.is_success:
            raise ServiceRejection(_error_detail(response, "Delete failed"), response.status_code)

    # ── Scanning service ──

    async def scan(
        self, selected_allergen_ids: Iterable[str], payload: InputPayload
    ) -> ScanResponse:
        """POST /scan as multipart form data.

        Args:
            selected_allergen_ids: Sent as repeated `selected_allergen_ids` fields.
            payload: Text goes in the `text` field, photos/documents in `file`.
        """
        data = {"selected_allergen_ids": list(selected_allergen_ids)}
        if isinstance(payload, TextPayload):
            # (None, content) keeps it a plain form field inside the multipart body
            files = {"text": (None, payload.text.encode("utf-8"))}
        else:
            filename = payload.filename or "upload"
            content_type = (
                payload.content_type
                or mimetypes.guess_type(filename)[0]
                or "application/octet-stream"
            )
            files = {"file": (filename, payload.content, content_type)}

        response = await self._request("POST", "/scan", data=data, files=files)
        if not response.is_success:
            detail = _error_detail(response, "Scan failed")
            logger.info(f"Scan rejected (HTTP {response.status_code}): {detail}")
            raise ServiceRejection(detail, response.status_code)

        try:
            return ScanResponse.model_validate(response.json())
        except (json.JSONDecodeError, UnicodeDecodeError, PydanticValidationError) as e:
            raise ServiceRejection(
                "Scan service returned an unreadable response", response.status_code
            ) from e
