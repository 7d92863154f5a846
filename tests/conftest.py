from pathlib import Path

import pytest

from kreyol import config, credentials, history, recorder
from kreyol.errors import ProviderError
from kreyol.models import Direction, TranslationResult


class FakeProvider:
    label = "Fake (Test)"

    def __init__(self, result=None, error=None):
        self.result = result or TranslationResult("Bonjou", "Good morning", self.label)
        self.error = error
        self.calls = []

    def process_audio(self, audio_path: Path, direction=Direction.CREOLE_TO_ENGLISH):
        self.calls.append((audio_path, direction, audio_path.exists()))
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    home = tmp_path / "home"
    monkeypatch.setattr(config, "CONFIG_PATH", home / "config.json")
    monkeypatch.setattr(credentials, "SECRETS_PATH", home / "secrets.env")
    monkeypatch.setattr(history, "DB_PATH", home / "history.db")
    monkeypatch.setattr(recorder, "RECORDINGS_DIR", home / "recordings")
    for key in credentials.KNOWN_KEYS:
        monkeypatch.delenv(key, raising=False)
    return home


@pytest.fixture
def audio_file(tmp_path):
    path = tmp_path / "clip.m4a"
    path.write_bytes(b"\x00\x00\x00\x18ftypM4A fake audio")
    return path


@pytest.fixture
def fake_provider():
    return FakeProvider


@pytest.fixture
def provider_error():
    return ProviderError
