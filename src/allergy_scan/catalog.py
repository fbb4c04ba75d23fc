"""
Allergen catalog - read-mostly view of the allergen store plus the user's selection.

The snapshot and the selection are immutable values. `load()` and `toggle()`
swap in new ones instead of editing in place, so a renderer holding the old
tuple never sees a half-updated list.
"""

import logging

from .client import AllergyApiClient
from .errors import ConnectivityError, UnknownAllergenError
from .models import AllergenRecord, BackendStatus

logger = logging.getLogger(__name__)


class AllergenCatalog:
    """Snapshot of allergen records with selection toggling."""

    def __init__(self, client: AllergyApiClient):
        self._client = client
        self._records: tuple[AllergenRecord, ...] = ()
        self._by_id: dict[str, AllergenRecord] = {}
        self._selection: frozenset[str] = frozenset()
        self.status: BackendStatus = BackendStatus.CHECKING
        self.loading: bool = False
        self.loaded: bool = False
        self.error: str | None = None

    async def load(self) -> bool:
        """
        Fetch a fresh snapshot from the store.

        On a transport failure the status becomes DISCONNECTED and the previous
        snapshot (if any) stays in place. Returns True on success.
        """
        self.loading = True
        self.status = BackendStatus.CHECKING
        self.error = None
        try:
            records = await self._client.list_allergens()
        except ConnectivityError as e:
            logger.error(f"Failed to fetch allergens: {e}")
            self.status = BackendStatus.DISCONNECTED
            self.error = str(e)
            return False
        finally:
            self.loading = False

        self._records = tuple(records)
        self._by_id = {r.id: r for r in self._records}
        # Ids removed from the store since the last load can't be scanned for
        self._selection = frozenset(i for i in self._selection if i in self._by_id)
        self.status = BackendStatus.CONNECTED
        self.loaded = True
        logger.info(f"Loaded {len(self._records)} allergens")
        return True

    def snapshot(self) -> tuple[AllergenRecord, ...]:
        """Records in store order."""
        return self._records

    def get(self, allergen_id: str) -> AllergenRecord | None:
        return self._by_id.get(allergen_id)

    @property
    def selection(self) -> frozenset[str]:
        return self._selection

    def selected_records(self) -> tuple[AllergenRecord, ...]:
        return tuple(r for r in self._records if r.id in self._selection)

    def toggle(self, allergen_id: str) -> frozenset[str]:
        """Add the id to the selection if absent, remove it if present."""
        if allergen_id not in self._by_id:
            raise UnknownAllergenError(f"Unknown allergen: {allergen_id}")
        if allergen_id in self._selection:
            self._selection = self._selection - {allergen_id}
        else:
            self._selection = self._selection | {allergen_id}
        return self._selection

    def clear_selection(self) -> None:
        self._selection = frozenset()

    @property
    def is_ready(self) -> bool:
        """Loaded without error and the store is reachable."""
        return (
            self.loaded
            and not self.loading
            and self.error is None
            and self.status is BackendStatus.CONNECTED
        )
