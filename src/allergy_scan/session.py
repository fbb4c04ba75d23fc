"""
Scan session - one scan from input to report.

Holds the chosen input mode and payload, validates local preconditions,
submits to the scanning service and keeps the resulting report.

While the request is in flight a cosmetic progress value is paced up to 100%.
The report is only exposed once both the request and the pacing are done, but
a failed request is raised immediately without waiting for the pacing.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from pathlib import Path

from .client import AllergyApiClient
from .config import ScanSettings, get_settings
from .errors import EmptyInputError, InvalidModeError, StateViolation, ValidationError
from .models import (
    PAYLOAD_TYPES,
    DocumentPayload,
    InputMode,
    InputPayload,
    PhotoPayload,
    ScanReport,
    TextPayload,
)

logger = logging.getLogger(__name__)

ProgressListener = Callable[[int], None]

PHOTO_EXTENSIONS = {".jpg", ".jpeg", ".png"}
DOCUMENT_EXTENSIONS = {".pdf", ".doc", ".docx"}

MISSING_INPUT_MESSAGES = {
    InputMode.TEXT: "Please enter text content.",
    InputMode.PHOTO: "Please upload a photo.",
    InputMode.DOCUMENT: "Please upload a document.",
}


def _megabytes(n: int) -> str:
    return f"{n / (1024 * 1024):g} MB"


class ProgressPacer:
    """Steps a progress value through fixed percentages on a timer."""

    def __init__(
        self,
        steps: Iterable[int] = (25, 50, 75, 100),
        interval: float = 0.4,
        settle: float = 0.5,
    ):
        self.steps = tuple(steps)
        self.interval = interval
        self.settle = settle

    @classmethod
    def from_settings(cls, settings: ScanSettings) -> "ProgressPacer":
        return cls(
            steps=settings.allergy_progress_steps,
            interval=settings.allergy_progress_interval,
            settle=settings.allergy_report_settle,
        )

    async def run(self, emit: ProgressListener) -> None:
        for step in self.steps:
            await asyncio.sleep(self.interval)
            emit(step)
        if self.settle:
            await asyncio.sleep(self.settle)


class ScanSession:
    """
    State for a single scan.

    At most one payload is held at a time: switching the input mode discards
    whatever was attached for the previous mode.
    """

    def __init__(
        self,
        client: AllergyApiClient,
        settings: ScanSettings | None = None,
        pacer: ProgressPacer | None = None,
    ):
        self._client = client
        self._settings = settings or get_settings()
        self._pacer = pacer or ProgressPacer.from_settings(self._settings)
        self._listeners: list[ProgressListener] = []

        self.input_mode: InputMode | None = InputMode.TEXT
        self.payload: InputPayload | None = None
        self.report: ScanReport | None = None
        self.source_text: str | None = None
        self.progress: int = 0
        self.generation: int = 0
        self._in_flight = False
        self._tasks: tuple[asyncio.Future, ...] = ()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    # ── Input ──

    def set_input_mode(self, mode: InputMode | str | None) -> None:
        """Switch the active input mode, dropping any payload of another mode."""
        try:
            new_mode = InputMode(mode) if mode is not None else None
        except ValueError as e:
            raise InvalidModeError(f"Unknown input type: {mode!r}.") from e
        if new_mode is not self.input_mode:
            if self.payload is not None:
                logger.debug(f"Input mode {self.input_mode} -> {new_mode}, discarding payload")
            self.payload = None
        self.input_mode = new_mode

    def set_payload(self, value) -> InputPayload:
        """
        Attach content to the active mode.

        Accepts a str (text mode), a (filename, bytes) tuple (photo/document
        mode) or a ready payload object of the matching type.
        """
        mode = self.input_mode
        if mode is None:
            raise InvalidModeError("Choose an input type first.")

        if isinstance(value, (TextPayload, PhotoPayload, DocumentPayload)):
            if value.mode is not mode:
                raise InvalidModeError(
                    f"A {value.mode.value} payload cannot be used in {mode.value} mode."
                )
            payload = value
        elif mode is InputMode.TEXT:
            if not isinstance(value, str):
                raise InvalidModeError("Text mode expects a string.")
            payload = TextPayload(text=value)
        else:
            if isinstance(value, tuple) and len(value) == 2:
                filename, content = value
            elif isinstance(value, (bytes, bytearray)):
                filename, content = "", value
            else:
                raise InvalidModeError(f"{mode.value.title()} mode expects file content.")
            payload = PAYLOAD_TYPES[mode](filename=filename, content=bytes(content))

        self.payload = payload
        return payload

    def set_file(self, path: str | Path) -> InputPayload:
        """Read a file from disk into the active photo/document mode."""
        path = Path(path)
        return self.set_payload((path.name, path.read_bytes()))

    # ── Validation ──

    def validate(
        self, selection: Iterable[str], payload: InputPayload | None = None
    ) -> InputPayload:
        """Check local preconditions. Nothing here touches the network."""
        if not list(selection):
            raise EmptyInputError("Please select at least one allergy to scan for.")
        return self.validate_payload(payload)

    def validate_payload(self, payload: InputPayload | None = None) -> InputPayload:
        mode = self.input_mode
        if mode is None:
            raise InvalidModeError("Choose an input type first.")
        payload = payload if payload is not None else self.payload
        if payload is None or payload.is_empty():
            raise EmptyInputError(MISSING_INPUT_MESSAGES[mode])
        if payload.mode is not mode:
            raise InvalidModeError(
                f"A {payload.mode.value} payload cannot be used in {mode.value} mode."
            )

        s = self._settings
        if isinstance(payload, TextPayload):
            if len(payload.text) > s.allergy_max_text_length:
                raise ValidationError(
                    f"Text is limited to {s.allergy_max_text_length} characters."
                )
        elif isinstance(payload, PhotoPayload):
            self._check_file(payload, "Photo", PHOTO_EXTENSIONS, s.allergy_max_photo_bytes)
        else:
            self._check_file(
                payload, "Document", DOCUMENT_EXTENSIONS, s.allergy_max_document_bytes
            )
        return payload

    @staticmethod
    def _check_file(payload, label: str, extensions: set[str], max_bytes: int) -> None:
        suffix = Path(payload.filename).suffix.lower()
        if payload.filename and suffix not in extensions:
            allowed = ", ".join(sorted(e.lstrip(".").upper() for e in extensions))
            raise ValidationError(f"{label} must be one of: {allowed}.")
        if payload.size > max_bytes:
            raise ValidationError(f"{label} exceeds the {_megabytes(max_bytes)} limit.")

    # ── Progress ──

    def add_progress_listener(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def _advance_progress(self, value: int) -> None:
        if value <= self.progress:
            return
        self.progress = value
        for listener in self._listeners:
            listener(value)

    # ── Submission ──

    async def submit(
        self, selection: Iterable[str], payload: InputPayload | None = None
    ) -> ScanReport | None:
        """
        Send the selection and payload to the scanning service.

        Returns the report once the service has answered and the progress
        pacing has finished. If the session was reset while the request was
        outstanding, the result is discarded and None is returned.

        Raises:
            StateViolation: another submission is still outstanding.
            EmptyInputError / ValidationError: local precondition failed.
            ConnectivityError: service unreachable.
            ServiceRejection: service refused the request.
        """
        if self._in_flight:
            raise StateViolation("A scan is already in progress.")
        ids = list(dict.fromkeys(selection))
        payload = self.validate(ids, payload)

        generation = self.generation
        self._in_flight = True
        self.report = None
        self.progress = 0
        self.source_text = payload.text if isinstance(payload, TextPayload) else None
        logger.info(f"Submitting {payload.mode.value} scan for {len(ids)} allergens")

        request = asyncio.ensure_future(self._client.scan(ids, payload))
        pacing = asyncio.ensure_future(self._pacer.run(self._advance_progress))
        self._tasks = (request, pacing)
        try:
            try:
                response = await request
            except BaseException:
                pacing.cancel()
                raise
            await pacing
        except asyncio.CancelledError:
            request.cancel()
            pacing.cancel()
            # reset() cancels our tasks, not us
            if generation != self.generation and not asyncio.current_task().cancelling():
                logger.info("Scan from a previous session was cancelled")
                return None
            raise
        except Exception:
            if generation != self.generation:
                logger.info("Discarding failure of a scan from a previous session")
                return None
            raise
        finally:
            if generation == self.generation:
                self._in_flight = False
                self._tasks = ()

        if generation != self.generation:
            logger.info("Discarding result of a scan from a previous session")
            return None

        self.report = response.to_report(total_allergens_selected=len(ids))
        logger.info(
            f"Scan complete: safe={self.report.safe}, {self.report.detected_count} matches"
        )
        return self.report

    def reset(self) -> None:
        """Clear mode, payload, report and progress. An outstanding scan is cancelled."""
        self.generation += 1
        for task in self._tasks:
            task.cancel()
        self._tasks = ()
        self._in_flight = False
        self.input_mode = InputMode.TEXT
        self.payload = None
        self.report = None
        self.source_text = None
        self.progress = 0
