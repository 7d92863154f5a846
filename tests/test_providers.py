import json

import httpx
import pytest

from kreyol.errors import (
    ConfigurationMissing,
    InvalidCredential,
    InvalidResponse,
    NetworkFailure,
    TranscriptionFailed,
    TranslationFailed,
)
from kreyol.credentials import SecretResolver
from kreyol.models import Config, Direction
from kreyol.providers import (
    GroqProvider,
    WhisperLlamaProvider,
    build_llama_prompt,
    parse_generation_response,
    select_provider,
)

CHAT_OK = {"choices": [{"message": {"role": "assistant", "content": "Good morning"}}]}
LLAMA_URL = "https://llama.example.com/generate"


class Recorder:
    """Route mocked requests by path and remember what was sent."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        handler = self.routes[request.url.path]
        return handler(request) if callable(handler) else handler

    def paths(self):
        return [request.url.path for request in self.requests]


def _groq(routes):
    recorder = Recorder(routes)
    client = httpx.Client(transport=httpx.MockTransport(recorder))
    return GroqProvider("gsk_test", client=client), recorder


def _whisper_llama(routes, llama_api_key=None):
    recorder = Recorder(routes)
    client = httpx.Client(transport=httpx.MockTransport(recorder))
    return WhisperLlamaProvider("sk-test", LLAMA_URL, llama_api_key, http_client=client), recorder


GROQ_TRANSCRIBE = "/openai/v1/audio/transcriptions"
GROQ_CHAT = "/openai/v1/chat/completions"
OPENAI_TRANSCRIBE = "/v1/audio/transcriptions"


def test_groq_transcribes_then_translates(audio_file):
    provider, recorder = _groq(
        {
            GROQ_TRANSCRIBE: httpx.Response(200, json={"text": "Bonjou"}),
            GROQ_CHAT: httpx.Response(200, json=CHAT_OK),
        }
    )

    result = provider.process_audio(audio_file)

    assert result.source_text == "Bonjou"
    assert result.translated_text == "Good morning"
    assert result.provider_label == "Groq (Whisper + LLAMA)"
    assert recorder.paths() == [GROQ_TRANSCRIBE, GROQ_CHAT]


def test_groq_transcription_request_shape(audio_file):
    provider, recorder = _groq(
        {
            GROQ_TRANSCRIBE: httpx.Response(200, json={"text": "Bonjou"}),
            GROQ_CHAT: httpx.Response(200, json=CHAT_OK),
        }
    )

    provider.process_audio(audio_file)

    upload, chat = recorder.requests
    assert upload.headers["Authorization"] == "Bearer gsk_test"
    assert upload.headers["Content-Type"].startswith("multipart/form-data")
    body = upload.content
    assert b'name="file"; filename="recording.m4a"' in body
    assert b"Content-Type: audio/m4a" in body
    assert b"whisper-large-v3" in body
    assert b'name="language"' in body and b"ht" in body
    assert b'name="response_format"' in body

    payload = json.loads(chat.content)
    assert payload["model"] == "llama-3.3-70b-versatile"
    assert payload["temperature"] == 0.3
    assert payload["max_tokens"] == 1024
    assert payload["messages"][0]["role"] == "system"
    assert "Haitian Creole text to English" in payload["messages"][0]["content"]
    assert payload["messages"][1] == {"role": "user", "content": "Bonjou"}


def test_groq_english_to_creole_uses_english_hint(audio_file):
    provider, recorder = _groq(
        {
            GROQ_TRANSCRIBE: httpx.Response(200, json={"text": "Good morning"}),
            GROQ_CHAT: httpx.Response(
                200, json={"choices": [{"message": {"role": "assistant", "content": "Bonjou"}}]}
            ),
        }
    )

    result = provider.process_audio(audio_file, Direction.ENGLISH_TO_CREOLE)

    assert result.translated_text == "Bonjou"
    prompt = json.loads(recorder.requests[1].content)["messages"][0]["content"]
    assert "English text to Haitian Creole" in prompt


def test_groq_unauthorised_transcription_skips_chat(audio_file):
    provider, recorder = _groq(
        {
            GROQ_TRANSCRIBE: httpx.Response(401, json={"error": "invalid key"}),
            GROQ_CHAT: httpx.Response(200, json=CHAT_OK),
        }
    )

    with pytest.raises(InvalidCredential):
        provider.process_audio(audio_file)
    assert recorder.paths() == [GROQ_TRANSCRIBE]


def test_groq_transcription_error_carries_body(audio_file):
    provider, recorder = _groq({GROQ_TRANSCRIBE: httpx.Response(500, text="model overloaded")})

    with pytest.raises(TranscriptionFailed) as excinfo:
        provider.process_audio(audio_file)
    assert excinfo.value.detail == "model overloaded"
    assert recorder.paths() == [GROQ_TRANSCRIBE]


def test_groq_translation_error(audio_file):
    provider, _ = _groq(
        {
            GROQ_TRANSCRIBE: httpx.Response(200, json={"text": "Bonjou"}),
            GROQ_CHAT: httpx.Response(429, text="rate limited"),
        }
    )

    with pytest.raises(TranslationFailed):
        provider.process_audio(audio_file)


def test_groq_network_failure(audio_file):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    provider, _ = _groq({GROQ_TRANSCRIBE: refuse})

    with pytest.raises(NetworkFailure):
        provider.process_audio(audio_file)


@pytest.mark.parametrize(
    "body",
    [
        {"choices": []},
        {"unexpected": True},
        {"choices": [{"message": {"role": "assistant"}}]},
    ],
)
def test_groq_malformed_chat_response(audio_file, body):
    provider, _ = _groq(
        {
            GROQ_TRANSCRIBE: httpx.Response(200, json={"text": "Bonjou"}),
            GROQ_CHAT: httpx.Response(200, json=body),
        }
    )

    with pytest.raises(InvalidResponse):
        provider.process_audio(audio_file)


def test_groq_transcription_without_json(audio_file):
    provider, recorder = _groq({GROQ_TRANSCRIBE: httpx.Response(200, text="<html>oops</html>")})

    with pytest.raises(InvalidResponse):
        provider.process_audio(audio_file)
    assert recorder.paths() == [GROQ_TRANSCRIBE]


def test_groq_missing_audio_file(tmp_path):
    provider, recorder = _groq({})

    with pytest.raises(TranscriptionFailed):
        provider.process_audio(tmp_path / "gone.m4a")
    assert recorder.requests == []


def test_groq_requires_key():
    with pytest.raises(ConfigurationMissing):
        GroqProvider("")


def test_whisper_llama_object_response(audio_file):
    provider, recorder = _whisper_llama(
        {
            OPENAI_TRANSCRIBE: httpx.Response(200, json={"text": "Bonjou"}),
            "/generate": httpx.Response(200, json={"generated_text": "Good morning"}),
        }
    )

    result = provider.process_audio(audio_file)

    assert result.source_text == "Bonjou"
    assert result.translated_text == "Good morning"
    assert result.provider_label == "OpenAI Whisper + Meta Llama"
    upload, generation = recorder.requests
    assert upload.url.host == "api.openai.com"
    assert b"whisper-1" in upload.content
    assert "Authorization" not in generation.headers
    payload = json.loads(generation.content)
    assert payload["inputs"] == build_llama_prompt("Bonjou", Direction.CREOLE_TO_ENGLISH)
    assert payload["parameters"] == {"temperature": 0.3, "max_new_tokens": 1024}


def test_whisper_llama_array_response_with_bearer(audio_file):
    provider, recorder = _whisper_llama(
        {
            OPENAI_TRANSCRIBE: httpx.Response(200, json={"text": "Bonjou"}),
            "/generate": httpx.Response(200, json=[{"generated_text": "Good morning"}, {"generated_text": "x"}]),
        },
        llama_api_key="hf_token",
    )

    assert provider.process_audio(audio_file).translated_text == "Good morning"
    assert recorder.requests[1].headers["Authorization"] == "Bearer hf_token"


def test_whisper_llama_strips_echoed_prompt(audio_file):
    prompt = build_llama_prompt("Bonjou", Direction.CREOLE_TO_ENGLISH)
    provider, _ = _whisper_llama(
        {
            OPENAI_TRANSCRIBE: httpx.Response(200, json={"text": "Bonjou"}),
            "/generate": httpx.Response(201, json={"generated_text": prompt + "Good morning"}),
        }
    )

    assert provider.process_audio(audio_file).translated_text == "Good morning"


def test_whisper_llama_unauthorised_transcription_skips_generation(audio_file):
    provider, recorder = _whisper_llama(
        {
            OPENAI_TRANSCRIBE: httpx.Response(
                401, json={"error": {"message": "Incorrect API key", "type": "invalid_request_error"}}
            ),
            "/generate": httpx.Response(200, json={"generated_text": "never"}),
        }
    )

    with pytest.raises(InvalidCredential):
        provider.process_audio(audio_file)
    assert recorder.paths() == [OPENAI_TRANSCRIBE]


def test_whisper_llama_transcription_server_error(audio_file):
    provider, _ = _whisper_llama(
        {OPENAI_TRANSCRIBE: httpx.Response(400, json={"error": {"message": "bad audio"}})}
    )

    with pytest.raises(TranscriptionFailed):
        provider.process_audio(audio_file)


def test_whisper_llama_generation_failure(audio_file):
    provider, _ = _whisper_llama(
        {
            OPENAI_TRANSCRIBE: httpx.Response(200, json={"text": "Bonjou"}),
            "/generate": httpx.Response(503, text="warming up"),
        }
    )

    with pytest.raises(TranslationFailed) as excinfo:
        provider.process_audio(audio_file)
    assert excinfo.value.detail == "warming up"


def test_whisper_llama_rejects_unknown_response_format():
    with pytest.raises(ConfigurationMissing):
        WhisperLlamaProvider("sk-test", LLAMA_URL, response_format="xml")


def _response(**kwargs):
    return httpx.Response(200, **kwargs)


def test_parse_generation_auto_falls_back_to_raw_text():
    assert parse_generation_response(_response(text="  Good morning\n")) == "Good morning"
    assert parse_generation_response(_response(json={"generated_text": "A"})) == "A"
    assert parse_generation_response(_response(json=[{"generated_text": "B"}])) == "B"


def test_parse_generation_strict_strategies():
    assert parse_generation_response(_response(json=[{"generated_text": "B"}]), "array") == "B"
    with pytest.raises(InvalidResponse):
        parse_generation_response(_response(json=[{"generated_text": "B"}]), "object")
    with pytest.raises(InvalidResponse):
        parse_generation_response(_response(text="plain"), "array")
    with pytest.raises(InvalidResponse):
        parse_generation_response(_response(text="   "), "raw")


def test_select_provider_prefers_groq():
    resolver = SecretResolver(
        environ={"GROQ_API_KEY": "gsk", "OPENAI_API_KEY": "sk", "LLAMA_ENDPOINT_URL": LLAMA_URL},
        metadata={},
    )

    assert isinstance(select_provider(resolver, Config()), GroqProvider)


def test_select_provider_falls_back_to_whisper_llama():
    resolver = SecretResolver(environ={"OPENAI_API_KEY": "sk", "LLAMA_ENDPOINT_URL": LLAMA_URL}, metadata={})

    assert isinstance(select_provider(resolver, Config()), WhisperLlamaProvider)


def test_select_provider_requires_endpoint_with_openai_key():
    resolver = SecretResolver(environ={"OPENAI_API_KEY": "sk"}, metadata={})

    with pytest.raises(ConfigurationMissing):
        select_provider(resolver, Config())
