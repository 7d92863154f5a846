"""Dataclasses describing the objects that flow through kreyol."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


TRANSCRIPTION_PLACEHOLDER = "Your transcription will appear here..."
TRANSLATION_PLACEHOLDER = "Your translation will appear here..."
PROCESSING_TEXT = "Processing..."
WAITING_TEXT = "Waiting..."


class Direction(str, Enum):
    """Which way a recording is translated."""

    CREOLE_TO_ENGLISH = "creole_to_english"
    ENGLISH_TO_CREOLE = "english_to_creole"

    @property
    def source_language(self) -> str:
        return "ht" if self is Direction.CREOLE_TO_ENGLISH else "en"

    @property
    def speech_language(self) -> str:
        """Voice language for reading the translation aloud."""
        return "en-US" if self is Direction.CREOLE_TO_ENGLISH else "ht"

    @property
    def source_label(self) -> str:
        return "Haitian Creole" if self is Direction.CREOLE_TO_ENGLISH else "English"

    @property
    def target_label(self) -> str:
        return "English" if self is Direction.CREOLE_TO_ENGLISH else "Haitian Creole"

    @property
    def system_prompt(self) -> str:
        return (
            "You are a professional translator. "
            f"Translate the following {self.source_label} text to {self.target_label}. "
            f"Only respond with the {self.target_label} translation, nothing else."
        )


class PipelineState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class TranslationResult:
    """Output of a single provider round trip."""

    source_text: str
    translated_text: str
    provider_label: str


@dataclass(frozen=True, slots=True)
class TranslationEntry:
    """Represents a stored history entry."""

    source_text: str
    translated_text: str
    direction: Direction = Direction.CREOLE_TO_ENGLISH
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def short_id(self) -> str:
        return str(self.id)[:8]


@dataclass(slots=True)
class Config:
    """User configuration stored on disk."""

    direction: str = Direction.CREOLE_TO_ENGLISH.value
    groq_transcription_model: str = "whisper-large-v3"
    groq_chat_model: str = "llama-3.3-70b-versatile"
    openai_transcription_model: str = "whisper-1"
    generation_response_format: str = "auto"
    history_limit: int = 50
    api_timeout: float = 60.0
    groq_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    llama_api_key: Optional[str] = None
    llama_endpoint_url: Optional[str] = None
