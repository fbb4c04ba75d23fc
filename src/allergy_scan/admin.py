"""
Admin console - CRUD over the allergen store.

Shares the connected/checking/disconnected status model with the catalog.
Writes are refused while the backend is not known to be connected.
"""

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .client import AllergyApiClient
from .errors import ConnectivityError, ValidationError
from .models import AllergenDraft, AllergenRecord, BackendStatus

logger = logging.getLogger(__name__)


def build_draft(values: AllergenDraft | dict[str, Any]) -> AllergenDraft:
    """Validate form values into a draft (keywords may be comma separated)."""
    if isinstance(values, AllergenDraft):
        return values
    try:
        return AllergenDraft.model_validate(values)
    except PydanticValidationError as e:
        messages = []
        for err in e.errors():
            field = ".".join(str(p) for p in err["loc"]) or "form"
            msg = err["msg"].removeprefix("Value error, ")
            messages.append(f"{field}: {msg}")
        raise ValidationError("; ".join(messages)) from e


class AdminConsole:
    """Allergen management surface."""

    def __init__(self, client: AllergyApiClient):
        self._client = client
        self._records: tuple[AllergenRecord, ...] = ()
        self.status: BackendStatus = BackendStatus.CHECKING

    def records(self) -> tuple[AllergenRecord, ...]:
        return self._records

    async def check_status(self) -> bool:
        """Probe the store. Returns True when it answers."""
        self.status = BackendStatus.CHECKING
        try:
            await self._client.list_allergens()
        except ConnectivityError as e:
            logger.warning(f"Backend not reachable: {e}")
            self.status = BackendStatus.DISCONNECTED
            return False
        self.status = BackendStatus.CONNECTED
        return True

    async def refresh(self) -> bool:
        """Reload records. Transport failures flip the status, never raise."""
        try:
            records = await self._client.list_allergens()
        except ConnectivityError as e:
            logger.error(f"Backend not reachable: {e}")
            self.status = BackendStatus.DISCONNECTED
            return False
        self._records = tuple(records)
        self.status = BackendStatus.CONNECTED
        return True

    async def open(self) -> bool:
        """Check the backend, then load records if it is up."""
        return await self.check_status() and await self.refresh()

    def _require_connected(self) -> None:
        if self.status is not BackendStatus.CONNECTED:
            raise ConnectivityError("Backend offline")

    async def save(
        self,
        values: AllergenDraft | dict[str, Any],
        allergen_id: str | None = None,
    ) -> AllergenRecord | None:
        """Create (no id) or update (with id) an allergen, then refresh."""
        self._require_connected()
        draft = build_draft(values)
        try:
            if allergen_id:
                record = await self._client.update_allergen(allergen_id, draft)
                logger.info(f"Updated allergen {allergen_id} ({draft.name})")
            else:
                record = await self._client.create_allergen(draft)
                logger.info(f"Added allergen {draft.name}")
        except ConnectivityError:
            self.status = BackendStatus.DISCONNECTED
            raise
        await self.refresh()
        return record

    async def delete(self, allergen_id: str) -> None:
        self._require_connected()
        try:
            await self._client.delete_allergen(allergen_id)
        except ConnectivityError:
            self.status = BackendStatus.DISCONNECTED
            raise
        logger.info(f"Deleted allergen {allergen_id}")
        await self.refresh()
