"""
Scan wizard - the four-stage step gate.

    SELECT -> INPUT -> PROCESSING -> REPORT
      ^        |                        |
      +--------+ retreat()              |
      +---------------------------------+ reset()

Forward moves only happen through advance(), which checks the preconditions
of the current stage first. Each reset() or close() bumps a generation counter;
a scan that completes under an older generation is dropped instead of being
applied to the new session.
"""

import asyncio
import logging
from pathlib import Path

from .catalog import AllergenCatalog
from .client import AllergyApiClient
from .config import ScanSettings
from .errors import (
    AllergyScanError,
    ConnectivityError,
    StateViolation,
    ValidationError,
)
from .highlight import render
from .models import BackendStatus, InputMode, InputPayload, ScanReport, WizardStage
from .report import summarize
from .session import ScanSession

logger = logging.getLogger(__name__)


class WizardStateMachine:
    """Drives one user through select -> input -> processing -> report."""

    def __init__(self, catalog: AllergenCatalog, session: ScanSession):
        self.catalog = catalog
        self.session = session
        self.stage: WizardStage = WizardStage.SELECT
        self.last_error: AllergyScanError | None = None
        self.backend_status: BackendStatus = BackendStatus.CHECKING
        self._generation = 0
        self._closed = False

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def report(self) -> ScanReport | None:
        return self.session.report

    @property
    def progress(self) -> int:
        return self.session.progress

    def _set_stage(self, stage: WizardStage) -> None:
        if stage is not self.stage:
            logger.debug(f"Wizard {self.stage.value} -> {stage.value}")
        self.stage = stage

    def _require(self, *stages: WizardStage) -> None:
        if self._closed:
            raise StateViolation("Wizard has been closed.")
        if self.stage not in stages:
            allowed = ", ".join(s.value for s in stages)
            raise StateViolation(
                f"Not allowed in stage {self.stage.value} (only in {allowed})."
            )

    def _fail(self, error: AllergyScanError) -> AllergyScanError:
        self.last_error = error
        return error

    # =========================================================================
    # Catalog
    # =========================================================================

    async def start(self) -> bool:
        """Initial catalog load."""
        return await self._load_catalog()

    async def _load_catalog(self) -> bool:
        self.backend_status = BackendStatus.CHECKING
        ok = await self.catalog.load()
        self.backend_status = self.catalog.status
        if not ok:
            self.last_error = ConnectivityError(
                self.catalog.error or "Failed to connect to the allergen database."
            )
        return ok

    async def retry(self) -> bool:
        """Retry the catalog load after a connectivity failure."""
        self._require(WizardStage.SELECT)
        self.last_error = None
        return await self._load_catalog()

    def toggle(self, allergen_id: str) -> frozenset[str]:
        self._require(WizardStage.SELECT)
        try:
            return self.catalog.toggle(allergen_id)
        except ValidationError as e:
            raise self._fail(e)

    # =========================================================================
    # Input
    # =========================================================================

    def set_input_mode(self, mode: InputMode | str | None) -> None:
        self._require(WizardStage.INPUT)
        try:
            self.session.set_input_mode(mode)
        except ValidationError as e:
            raise self._fail(e)

    def set_payload(self, value) -> InputPayload:
        self._require(WizardStage.INPUT)
        try:
            return self.session.set_payload(value)
        except ValidationError as e:
            raise self._fail(e)

    def set_file(self, path: str | Path) -> InputPayload:
        self._require(WizardStage.INPUT)
        try:
            return self.session.set_file(path)
        except ValidationError as e:
            raise self._fail(e)

    # =========================================================================
    # Transitions
    # =========================================================================

    async def advance(self) -> WizardStage:
        """
        Move forward one stage if the current stage's preconditions hold.

        SELECT -> INPUT needs a non-empty selection and a healthy catalog.
        INPUT -> PROCESSING needs a valid payload, then runs the scan and lands
        on REPORT (success) or back on INPUT (failure, error re-raised).
        """
        self._require(WizardStage.SELECT, WizardStage.INPUT)
        if self.stage is WizardStage.SELECT:
            self._check_select_ready()
            self.last_error = None
            self._set_stage(WizardStage.INPUT)
            return self.stage
        return await self._run_scan()

    def _check_select_ready(self) -> None:
        if not self.catalog.selection:
            raise self._fail(
                ValidationError("Please select at least one allergy to scan for.")
            )
        if self.catalog.loading:
            raise self._fail(ValidationError("Allergy data is still loading. Please wait."))
        if not self.catalog.is_ready:
            raise self._fail(
                ValidationError("Cannot proceed. Database connection failed.")
            )

    async def _run_scan(self) -> WizardStage:
        selection = [r.id for r in self.catalog.selected_records()]
        try:
            payload = self.session.validate(selection)
        except ValidationError as e:
            raise self._fail(e)

        generation = self._generation
        self.last_error = None
        self._set_stage(WizardStage.PROCESSING)
        try:
            report = await self.session.submit(selection, payload)
        except asyncio.CancelledError:
            if generation == self._generation:
                self._set_stage(WizardStage.INPUT)
            raise
        except Exception as e:
            if generation != self._generation:
                logger.info(f"Dropping scan failure from a previous session: {e}")
                return self.stage
            self._set_stage(WizardStage.INPUT)
            if isinstance(e, ConnectivityError):
                self.backend_status = BackendStatus.DISCONNECTED
            if isinstance(e, AllergyScanError):
                self.last_error = e
            logger.warning(f"Scan failed: {e}")
            raise

        if generation != self._generation or report is None:
            logger.info("Dropping scan result from a previous session")
            return self.stage

        self.backend_status = BackendStatus.CONNECTED
        self._set_stage(WizardStage.REPORT)
        return self.stage

    def retreat(self) -> WizardStage:
        """INPUT -> SELECT. Not allowed anywhere else (including PROCESSING)."""
        self._require(WizardStage.INPUT)
        self.last_error = None
        self._set_stage(WizardStage.SELECT)
        return self.stage

    async def reset(self) -> WizardStage:
        """Start over: clear everything, back to SELECT, reload the catalog."""
        if self._closed:
            raise StateViolation("Wizard has been closed.")
        self._generation += 1
        self.catalog.clear_selection()
        self.session.reset()
        self.last_error = None
        self._set_stage(WizardStage.SELECT)
        await self._load_catalog()
        return self.stage

    def close(self) -> None:
        """Host teardown. Any scan still outstanding will be discarded."""
        self._generation += 1
        self._closed = True
        self.session.reset()

    # =========================================================================
    # Report
    # =========================================================================

    def highlighted_text(self) -> str | None:
        """Scanned text with matches wrapped, or None if there is no text report."""
        report = self.session.report
        if report is None or self.session.source_text is None:
            return None
        return render(self.session.source_text, report.matches)

    def summary(self) -> str | None:
        report = self.session.report
        return summarize(report) if report is not None else None


def build_wizard(
    client: AllergyApiClient, settings: ScanSettings | None = None
) -> WizardStateMachine:
    """Wire a catalog and a session around one API client."""
    return WizardStateMachine(
        catalog=AllergenCatalog(client),
        session=ScanSession(client, settings=settings),
    )
