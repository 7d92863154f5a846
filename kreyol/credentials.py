"""Look up API credentials and endpoints from the places a user may keep them.

Sources are consulted in a fixed order and the first non-empty value wins:

1. the process environment,
2. the gitignored dotenv file ``~/.kreyol/secrets.env``,
3. application metadata, i.e. the persisted :class:`~kreyol.models.Config`.
"""

from __future__ import annotations

import os
from dataclasses import asdict
from functools import cached_property
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from dotenv import dotenv_values, set_key

from .config import APP_DIR, load_config

SECRETS_PATH = APP_DIR / "secrets.env"

GROQ_API_KEY = "GROQ_API_KEY"
OPENAI_API_KEY = "OPENAI_API_KEY"
LLAMA_API_KEY = "LLAMA_API_KEY"
LLAMA_ENDPOINT_URL = "LLAMA_ENDPOINT_URL"

KNOWN_KEYS = (GROQ_API_KEY, OPENAI_API_KEY, LLAMA_API_KEY, LLAMA_ENDPOINT_URL)

SOURCE_ENVIRONMENT = "environment"
SOURCE_FILE = "secrets file"
SOURCE_METADATA = "config"


def _clean(value: Optional[object]) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class SecretResolver:
    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        secrets_path: Optional[Path] = None,
        metadata: Optional[Mapping[str, object]] = None,
    ) -> None:
        self._environ = os.environ if environ is None else environ
        self.secrets_path = secrets_path or SECRETS_PATH
        self._metadata_override = metadata

    @cached_property
    def _file_values(self) -> Dict[str, Optional[str]]:
        if not self.secrets_path.exists():
            return {}
        return dict(dotenv_values(self.secrets_path))

    @cached_property
    def _metadata(self) -> Mapping[str, object]:
        if self._metadata_override is not None:
            return self._metadata_override
        return asdict(load_config())

    def _lookups(self, key: str) -> List[tuple[str, Optional[str]]]:
        return [
            (SOURCE_ENVIRONMENT, _clean(self._environ.get(key))),
            (SOURCE_FILE, _clean(self._file_values.get(key))),
            (SOURCE_METADATA, _clean(self._metadata.get(key.lower()))),
        ]

    def resolve(self, key: str) -> Optional[str]:
        """Return the first non-empty value for ``key`` or ``None``."""

        for _source, value in self._lookups(key):
            if value is not None:
                return value
        return None

    def sources(self, key: str) -> List[str]:
        """Names of every source that holds a value for ``key``, in priority order."""

        return [source for source, value in self._lookups(key) if value is not None]

    def store(self, key: str, value: str) -> None:
        """Persist ``value`` in the secrets file."""

        self.secrets_path.parent.mkdir(parents=True, exist_ok=True)
        self.secrets_path.touch(mode=0o600, exist_ok=True)
        set_key(str(self.secrets_path), key, value)
        self.__dict__.pop("_file_values", None)
