"""Text-to-speech playback through the platform speech command."""

from __future__ import annotations

import logging
import shutil
import subprocess
from typing import List, Optional

from .history import is_placeholder
from .models import PROCESSING_TEXT, WAITING_TEXT

# Closest built-in macOS voice per language; French stands in for Creole.
SAY_VOICES = {"en": "Samantha", "fr": "Thomas", "ht": "Thomas"}


class Speaker:
    """Speak translations aloud, one utterance at a time."""

    def __init__(self, rate: int = 175) -> None:
        self._rate = rate
        self._process: Optional[subprocess.Popen] = None

    @property
    def is_speaking(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def speak(self, text: str, language: str = "en-US") -> bool:
        """Start speaking ``text``; return False when there is nothing to say."""

        self.stop()
        text = text.strip()
        if not text or text in (PROCESSING_TEXT, WAITING_TEXT) or is_placeholder(text):
            return False

        command = self._command(text, language)
        if command is None:
            raise RuntimeError("No speech synthesiser found. Install `espeak` or run on macOS.")
        logging.debug("Speaking %d characters with %s", len(text), command[0])
        self._process = subprocess.Popen(command)
        return True

    def wait(self) -> None:
        if self._process is not None:
            self._process.wait()
            self._process = None

    def stop(self) -> None:
        if self.is_speaking:
            self._process.terminate()  # type: ignore[union-attr]
            self._process.wait()  # type: ignore[union-attr]
        self._process = None

    def _command(self, text: str, language: str) -> Optional[List[str]]:
        base = language.split("-")[0].lower()
        say = shutil.which("say")
        espeak = shutil.which("espeak-ng") or shutil.which("espeak")
        # macOS has no Haitian Creole voice, espeak-ng does.
        if say and not (base == "ht" and espeak):
            command = [say]
            voice = SAY_VOICES.get(base)
            if voice:
                command += ["-v", voice]
            return command + ["-r", str(self._rate), text]
        if espeak:
            return [espeak, "-s", str(self._rate), "-v", language.lower(), text]
        return None
