"""State-machine orchestration of one record, translate and persist cycle."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .errors import KreyolError, PermissionDenied
from .history import HistoryStore
from .models import (
    PROCESSING_TEXT,
    TRANSCRIPTION_PLACEHOLDER,
    TRANSLATION_PLACEHOLDER,
    WAITING_TEXT,
    Direction,
    PipelineState,
    TranslationEntry,
    TranslationResult,
)
from .providers import TranslationProvider, select_provider
from .recorder import AudioRecorder, RecorderError

ProviderFactory = Callable[[], TranslationProvider]


@dataclass(frozen=True)
class PipelineEvent:
    """Snapshot of everything the presentation layer shows."""

    state: PipelineState
    source_text: str
    translated_text: str
    status_message: str
    error_message: Optional[str]
    provider_label: Optional[str]


@dataclass(frozen=True)
class PipelineOutcome:
    result: Optional[TranslationResult] = None
    error: Optional[KreyolError] = None
    entry: Optional[TranslationEntry] = None

    @property
    def succeeded(self) -> bool:
        return self.result is not None


EventCallback = Callable[[PipelineEvent], None]


class TranslationPipeline:
    def __init__(
        self,
        history: HistoryStore,
        provider_factory: ProviderFactory = select_provider,
        recorder: Optional[AudioRecorder] = None,
        direction: Direction = Direction.CREOLE_TO_ENGLISH,
        on_event: Optional[EventCallback] = None,
    ) -> None:
        self._history = history
        self._provider_factory = provider_factory
        self._recorder = recorder
        self.direction = direction
        self._on_event = on_event
        self._lock = threading.Lock()

        self.state = PipelineState.IDLE
        self.source_text = TRANSCRIPTION_PLACEHOLDER
        self.translated_text = TRANSLATION_PLACEHOLDER
        self.status_message = ""
        self.error_message: Optional[str] = None
        self.provider_label: Optional[str] = None

    def start_recording(self) -> bool:
        if self.state != PipelineState.IDLE:
            logging.debug("Ignoring start request while %s", self.state.value)
            return False
        recorder = self._require_recorder()

        if not recorder.request_permission():
            self.error_message = str(PermissionDenied())
            self.status_message = ""
            self._notify()
            return False

        recorder.start()
        self.error_message = None
        self.status_message = "🔴 Recording..."
        self._transition(PipelineState.RECORDING)
        return True

    def stop_recording(self) -> PipelineOutcome:
        if self.state != PipelineState.RECORDING:
            logging.debug("Ignoring stop request while %s", self.state.value)
            return PipelineOutcome()
        try:
            audio_path = self._require_recorder().stop()
        except RecorderError as exc:
            logging.warning("Recording could not be finished: %s", exc)
            self.error_message = f"Failed to stop recording: {exc}"
            self.status_message = ""
            self._transition(PipelineState.IDLE)
            return PipelineOutcome()
        if audio_path is None:
            self.error_message = "Failed to stop recording"
            self.status_message = ""
            self._transition(PipelineState.IDLE)
            return PipelineOutcome()
        return self.process_recording(audio_path)

    def process_recording(self, audio_path: Path) -> PipelineOutcome:
        """Translate ``audio_path`` and delete it once the run is over.

        The file belongs to the pipeline from here on, whatever the outcome.
        """

        if not self._lock.acquire(blocking=False):
            raise RuntimeError("A translation is already in progress.")
        try:
            return self._run(audio_path)
        finally:
            self._discard_audio(audio_path)
            if self.state != PipelineState.IDLE:
                self._transition(PipelineState.IDLE)
            self._lock.release()

    def _run(self, audio_path: Path) -> PipelineOutcome:
        direction = self.direction
        self.error_message = None
        self.provider_label = None
        self.source_text = PROCESSING_TEXT
        self.translated_text = WAITING_TEXT
        self.status_message = "⏳ Processing..."
        self._transition(PipelineState.PROCESSING)

        try:
            provider = self._provider_factory()
            result = provider.process_audio(audio_path, direction)
        except KreyolError as exc:
            logging.info("Translation failed: %s", exc)
            self.source_text = TRANSCRIPTION_PLACEHOLDER
            self.translated_text = TRANSLATION_PLACEHOLDER
            self.error_message = f"Error: {exc}"
            self.status_message = ""
            self._transition(PipelineState.FAILED)
            return PipelineOutcome(error=exc)

        entry = self._history.add_entry(result.source_text, result.translated_text, direction)
        self.source_text = result.source_text
        self.translated_text = result.translated_text
        self.provider_label = result.provider_label
        self.status_message = f"✅ Completed using {result.provider_label}"
        self._transition(PipelineState.SUCCESS)
        return PipelineOutcome(result=result, entry=entry)

    def _require_recorder(self) -> AudioRecorder:
        if self._recorder is None:
            raise RuntimeError("This pipeline was created without a recorder.")
        return self._recorder

    def _discard_audio(self, audio_path: Path) -> None:
        try:
            audio_path.unlink(missing_ok=True)
        except OSError as exc:
            logging.warning("Could not delete recording %s: %s", audio_path, exc)

    def _transition(self, to_state: PipelineState) -> None:
        logging.debug("Pipeline %s -> %s", self.state.value, to_state.value)
        self.state = to_state
        self._notify()

    def _notify(self) -> None:
        if self._on_event:
            self._on_event(
                PipelineEvent(
                    state=self.state,
                    source_text=self.source_text,
                    translated_text=self.translated_text,
                    status_message=self.status_message,
                    error_message=self.error_message,
                    provider_label=self.provider_label,
                )
            )
