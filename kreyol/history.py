"""SQLite backed persistence for the translation history.

The whole history is kept as one JSON document under a fixed key of a small
key-value table, newest entry first.
"""

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from .config import APP_DIR
from .models import (
    Direction,
    TranslationEntry,
    TRANSCRIPTION_PLACEHOLDER,
    TRANSLATION_PLACEHOLDER,
)

DB_PATH = APP_DIR / "history.db"
HISTORY_KEY = "translationHistory"
MAX_ENTRIES = 50

# Older clients stored timestamps as seconds since this reference date.
LEGACY_EPOCH = datetime(2001, 1, 1, tzinfo=timezone.utc)
_DIRECTION_ALIASES = {
    "creoleToEnglish": Direction.CREOLE_TO_ENGLISH.value,
    "englishToCreole": Direction.ENGLISH_TO_CREOLE.value,
}

_PLACEHOLDER_MARKERS = (
    TRANSCRIPTION_PLACEHOLDER.split(" will")[0],
    TRANSLATION_PLACEHOLDER.split(" will")[0],
)


class HistoryError(RuntimeError):
    """Raised when a history entry cannot be found."""


def is_placeholder(text: str) -> bool:
    return any(marker in text for marker in _PLACEHOLDER_MARKERS)


class HistoryStore:
    """Bounded, most-recent-first list of past translations.

    Nothing is cached between calls. Every read loads the stored document and
    every write re-reads it inside an immediate transaction, so several stores
    (the CLI and a running API server, say) can share one database file.
    """

    def __init__(self, db_path: Optional[Path] = None, max_entries: int = MAX_ENTRIES) -> None:
        self.db_path = db_path or DB_PATH
        self.max_entries = max_entries
        self._ensure_initialised()

    @property
    def entries(self) -> List[TranslationEntry]:
        with contextlib.closing(sqlite3.connect(self.db_path)) as conn:
            return self._load(conn)

    def _ensure_initialised(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with contextlib.closing(sqlite3.connect(self.db_path)) as conn, conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, isolation_level=None, timeout=10)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def add_entry(
        self,
        source_text: str,
        translated_text: str,
        direction: Direction = Direction.CREOLE_TO_ENGLISH,
    ) -> Optional[TranslationEntry]:
        """Insert a new entry at the head; return ``None`` when nothing was stored."""

        source_text = source_text.strip()
        translated_text = translated_text.strip()
        if not source_text or not translated_text:
            logging.debug("Not saving empty translation to history")
            return None
        if is_placeholder(source_text) or is_placeholder(translated_text):
            logging.debug("Not saving placeholder text to history")
            return None

        entry = TranslationEntry(
            source_text=source_text,
            translated_text=translated_text,
            direction=direction,
        )
        with self._transaction() as conn:
            entries = self._load(conn)
            entries.insert(0, entry)
            self._save(conn, entries[: self.max_entries])
        return entry

    def get_entry(self, entry_id: Union[str, uuid.UUID]) -> TranslationEntry:
        """Look an entry up by its id or by an unambiguous id prefix."""

        needle = str(entry_id).lower()
        matches = [entry for entry in self.entries if str(entry.id).startswith(needle)]
        if not needle or not matches:
            raise HistoryError(f"History entry {entry_id} not found")
        exact = [entry for entry in matches if str(entry.id) == needle]
        if exact:
            return exact[0]
        if len(matches) > 1:
            raise HistoryError(f"History entry id {entry_id} is ambiguous")
        return matches[0]

    def delete_entry(self, entry_id: Union[str, uuid.UUID]) -> bool:
        target = str(entry_id).lower()
        with self._transaction() as conn:
            entries = self._load(conn)
            remaining = [entry for entry in entries if str(entry.id) != target]
            if len(remaining) == len(entries):
                return False
            self._save(conn, remaining)
        return True

    def clear_all(self) -> None:
        with self._transaction() as conn:
            self._save(conn, [])

    def _save(self, conn: sqlite3.Connection, entries: List[TranslationEntry]) -> None:
        document = json.dumps([_entry_to_payload(entry) for entry in entries])
        conn.execute(
            "INSERT OR REPLACE INTO kv_store(key, value) VALUES(?, ?)",
            (HISTORY_KEY, document),
        )

    def _load(self, conn: sqlite3.Connection) -> List[TranslationEntry]:
        row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (HISTORY_KEY,)).fetchone()
        if row is None:
            return []
        try:
            payload = json.loads(row[0])
        except json.JSONDecodeError as exc:
            logging.warning("Discarding unreadable translation history: %s", exc)
            return []
        if not isinstance(payload, list):
            logging.warning("Discarding translation history that is not a list")
            return []

        entries = []
        for item in payload:
            try:
                entries.append(_payload_to_entry(item))
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                logging.warning("Skipping unreadable history entry: %s", exc)
        return entries[: self.max_entries]


def _entry_to_payload(entry: TranslationEntry) -> Dict[str, Any]:
    return {
        "id": str(entry.id),
        "timestamp": entry.timestamp.isoformat(),
        "source_text": entry.source_text,
        "translated_text": entry.translated_text,
        "direction": entry.direction.value,
    }


def _decode_timestamp(value: Any) -> datetime:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return LEGACY_EPOCH + timedelta(seconds=value)
    text = str(value)
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _payload_to_entry(item: Mapping[str, Any]) -> TranslationEntry:
    """Decode a stored record, migrating older layouts on the way."""

    raw_direction = item.get("direction") or Direction.CREOLE_TO_ENGLISH.value
    direction = Direction(_DIRECTION_ALIASES.get(raw_direction, raw_direction))

    if "source_text" in item:
        source_text, translated_text = item["source_text"], item["translated_text"]
    elif "sourceText" in item:
        source_text, translated_text = item["sourceText"], item["translatedText"]
    else:
        creole, english = item["creoleText"], item["englishText"]
        if direction is Direction.CREOLE_TO_ENGLISH:
            source_text, translated_text = creole, english
        else:
            source_text, translated_text = english, creole

    return TranslationEntry(
        id=uuid.UUID(str(item["id"])),
        timestamp=_decode_timestamp(item["timestamp"]),
        source_text=str(source_text),
        translated_text=str(translated_text),
        direction=direction,
    )
