"""Microphone recording to uniquely named temporary files."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, List, Optional

import numpy as np

from .config import APP_DIR

RECORDINGS_DIR = APP_DIR / "recordings"


class RecorderError(RuntimeError):
    """Raised when the microphone cannot be opened or a recording cannot be saved."""


AudioCallback = Callable[[Any, int, Any, Any], None]
StreamFactory = Callable[[int, int, AudioCallback], Any]


def _sounddevice():
    try:
        import sounddevice as sd  # type: ignore
    except Exception as exc:  # pragma: no cover - optional dependency
        raise RecorderError(
            "The `sounddevice` package is required for recording. Install kreyol[recording]."
        ) from exc
    return sd


def _default_stream_factory(samplerate: int, channels: int, callback: AudioCallback) -> Any:
    sd = _sounddevice()
    return sd.InputStream(
        samplerate=samplerate,
        channels=channels,
        dtype="float32",
        callback=callback,
    )


def _default_permission_check() -> bool:
    sd = _sounddevice()
    try:
        sd.query_devices(kind="input")
    except Exception as exc:
        logging.debug("No usable input device: %s", exc)
        return False
    return True


def _write_audio(path: Path, audio: np.ndarray, samplerate: int) -> None:
    try:
        import soundfile as sf  # type: ignore
    except Exception as exc:  # pragma: no cover - optional dependency
        raise RecorderError(
            "The `soundfile` package is required to write audio files. Install kreyol[recording]."
        ) from exc
    sf.write(path, audio, samplerate)


def recording_path(directory: Path) -> Path:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    return directory / f"recording-{stamp}-{uuid.uuid4().hex[:8]}.wav"


class AudioRecorder:
    """Stream audio from the default microphone into a WAV file.

    Only one recording exists at a time. Starting a new one discards whatever
    was being captured before.
    """

    def __init__(
        self,
        directory: Optional[Path] = None,
        samplerate: int = 44100,
        channels: int = 1,
        stream_factory: Optional[StreamFactory] = None,
        permission_check: Optional[Callable[[], bool]] = None,
    ) -> None:
        self._directory = directory or RECORDINGS_DIR
        self._samplerate = samplerate
        self._channels = channels
        self._stream_factory = stream_factory or _default_stream_factory
        self._permission_check = permission_check or _default_permission_check
        self._stream: Any = None
        self._frames: List[np.ndarray] = []
        self._path: Optional[Path] = None

    @property
    def is_recording(self) -> bool:
        return self._stream is not None

    def request_permission(self) -> bool:
        try:
            return bool(self._permission_check())
        except RuntimeError as exc:
            logging.warning("Microphone unavailable: %s", exc)
            return False

    def start(self) -> Path:
        if self._stream is not None:
            logging.debug("Discarding active recording before starting a new one")
            self.interrupt()

        self._directory.mkdir(parents=True, exist_ok=True)
        self._frames = []
        self._path = recording_path(self._directory)
        try:
            stream = self._stream_factory(self._samplerate, self._channels, self._callback)
            stream.start()
        except RecorderError:
            self._path = None
            raise
        except Exception as exc:
            self._path = None
            raise RecorderError(f"Could not open the microphone: {exc}") from exc
        self._stream = stream
        logging.debug("Recording to %s", self._path)
        return self._path

    def stop(self) -> Optional[Path]:
        """Finish the recording and return its file, or ``None`` if nothing was captured."""

        if self._stream is None or self._path is None:
            return None

        self._close_stream()
        path, self._path = self._path, None
        frames, self._frames = self._frames, []
        if not frames:
            logging.warning("No audio was captured")
            return None

        audio = np.concatenate(frames, axis=0)
        try:
            _write_audio(path, audio, self._samplerate)
        except RecorderError:
            path.unlink(missing_ok=True)
            raise
        except Exception as exc:
            path.unlink(missing_ok=True)
            raise RecorderError(f"Could not save the recording: {exc}") from exc
        return path

    def interrupt(self) -> None:
        """Abort the current recording, e.g. when the audio session is interrupted."""

        if self._stream is not None:
            self._close_stream()
        if self._path is not None:
            self._path.unlink(missing_ok=True)
        self._path = None
        self._frames = []

    def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        stream.stop()
        stream.close()

    def _callback(self, indata, frames, time, status) -> None:  # type: ignore[override]
        if status:
            logging.debug("Recorder status: %s", status)
        self._frames.append(np.array(indata, copy=True))
