"""Translation providers.

A provider turns one audio file into a transcription and its translation with
two sequential remote calls: speech-to-text, then text generation. The second
call is only made once the first one succeeded, and nothing is retried.
"""

from __future__ import annotations

import contextlib
import logging
import mimetypes
from dataclasses import asdict
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional, Protocol, Tuple

import httpx
import openai
from openai import OpenAI

from .credentials import (
    GROQ_API_KEY,
    LLAMA_API_KEY,
    LLAMA_ENDPOINT_URL,
    OPENAI_API_KEY,
    SecretResolver,
)
from .config import load_config
from .errors import (
    ConfigurationMissing,
    InvalidCredential,
    InvalidResponse,
    NetworkFailure,
    TranscriptionFailed,
    TranslationFailed,
)
from .models import Config, Direction, TranslationResult

GROQ_TRANSCRIPTION_URL = "https://api.groq.com/openai/v1/audio/transcriptions"
GROQ_CHAT_URL = "https://api.groq.com/openai/v1/chat/completions"

TEMPERATURE = 0.3
MAX_TOKENS = 1024

LLAMA_PROMPT_TEMPLATE = (
    "<|begin_of_text|><|start_header_id|>system<|end_header_id|>\n\n{system}<|eot_id|>"
    "<|start_header_id|>user<|end_header_id|>\n\n{text}<|eot_id|>"
    "<|start_header_id|>assistant<|end_header_id|>\n\n"
)


class TranslationProvider(Protocol):
    """Common interface for translation providers."""

    label: str

    def process_audio(
        self, audio_path: Path, direction: Direction = Direction.CREOLE_TO_ENGLISH
    ) -> TranslationResult:
        """Transcribe ``audio_path`` and translate the transcription."""


def _upload_name(audio_path: Path) -> Tuple[str, str]:
    suffix = audio_path.suffix.lower() or ".m4a"
    if suffix == ".m4a":
        return "recording.m4a", "audio/m4a"
    content_type = mimetypes.guess_type(f"recording{suffix}")[0] or "application/octet-stream"
    return f"recording{suffix}", content_type


def _read_audio(audio_path: Path) -> bytes:
    try:
        return audio_path.read_bytes()
    except OSError as exc:
        raise TranscriptionFailed(f"could not read {audio_path.name}: {exc}") from exc


def _error_detail(response: httpx.Response) -> str:
    return response.text.strip() or f"HTTP {response.status_code}"


def _json_or_none(response: httpx.Response) -> object:
    try:
        return response.json()
    except ValueError:
        return None


def _json_body(response: httpx.Response) -> object:
    try:
        return response.json()
    except ValueError as exc:
        raise InvalidResponse("body is not valid JSON") from exc


@contextlib.contextmanager
def _http_client(client: Optional[httpx.Client], timeout: float) -> Iterator[httpx.Client]:
    if client is not None:
        yield client
        return
    with httpx.Client(timeout=timeout) as owned:
        yield owned


def _post(client: httpx.Client, url: str, *, step: str, **kwargs: object) -> httpx.Response:
    logging.debug("Sending %s request to %s", step, url)
    try:
        response = client.post(url, **kwargs)  # type: ignore[arg-type]
    except httpx.HTTPError as exc:
        raise NetworkFailure(str(exc) or exc.__class__.__name__) from exc
    logging.debug("%s request returned HTTP %s", step.capitalize(), response.status_code)
    if response.status_code == 401:
        raise InvalidCredential()
    return response


class GroqProvider:
    """Groq hosted Whisper transcription followed by a Llama chat completion."""

    label = "Groq (Whisper + LLAMA)"

    def __init__(
        self,
        api_key: str,
        *,
        transcription_model: str = "whisper-large-v3",
        chat_model: str = "llama-3.3-70b-versatile",
        timeout: float = 60.0,
        client: Optional[httpx.Client] = None,
        transcription_url: str = GROQ_TRANSCRIPTION_URL,
        chat_url: str = GROQ_CHAT_URL,
    ) -> None:
        if not api_key:
            raise ConfigurationMissing()
        self._api_key = api_key
        self._transcription_model = transcription_model
        self._chat_model = chat_model
        self._timeout = timeout
        self._client = client
        self._transcription_url = transcription_url
        self._chat_url = chat_url

    def process_audio(
        self, audio_path: Path, direction: Direction = Direction.CREOLE_TO_ENGLISH
    ) -> TranslationResult:
        with _http_client(self._client, self._timeout) as client:
            transcription = self._transcribe(client, audio_path, direction)
            translation = self._translate(client, transcription, direction)
        return TranslationResult(
            source_text=transcription,
            translated_text=translation,
            provider_label=self.label,
        )

    @property
    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    def _transcribe(self, client: httpx.Client, audio_path: Path, direction: Direction) -> str:
        filename, content_type = _upload_name(audio_path)
        audio = _read_audio(audio_path)
        data = {"model": self._transcription_model, "response_format": "json"}
        if direction.source_language:
            data["language"] = direction.source_language

        response = _post(
            client,
            self._transcription_url,
            step="transcription",
            headers=self._auth_headers,
            data=data,
            files={"file": (filename, audio, content_type)},
        )
        if response.status_code != 200:
            raise TranscriptionFailed(_error_detail(response))

        payload = _json_body(response)
        text = payload.get("text") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise InvalidResponse("transcription has no text field")
        return text.strip()

    def _translate(self, client: httpx.Client, text: str, direction: Direction) -> str:
        payload = {
            "model": self._chat_model,
            "messages": [
                {"role": "system", "content": direction.system_prompt},
                {"role": "user", "content": text},
            ],
            "temperature": TEMPERATURE,
            "max_tokens": MAX_TOKENS,
        }
        response = _post(
            client,
            self._chat_url,
            step="chat completion",
            headers=self._auth_headers,
            json=payload,
        )
        if response.status_code != 200:
            raise TranslationFailed(_error_detail(response))

        body = _json_body(response)
        try:
            content = body["choices"][0]["message"]["content"]  # type: ignore[index]
        except (KeyError, IndexError, TypeError) as exc:
            raise InvalidResponse("chat completion has no message content") from exc
        if not isinstance(content, str):
            raise InvalidResponse("chat completion content is not text")
        return content.strip()


# Generation endpoints do not agree on a response shape, so the parsing
# strategy is configurable. Each parser returns None when the shape does not match.


def _parse_object(response: httpx.Response) -> Optional[str]:
    payload = _json_or_none(response)
    if isinstance(payload, dict) and isinstance(payload.get("generated_text"), str):
        return payload["generated_text"]
    return None


def _parse_array(response: httpx.Response) -> Optional[str]:
    payload = _json_or_none(response)
    if isinstance(payload, list) and payload:
        first = payload[0]
        if isinstance(first, dict) and isinstance(first.get("generated_text"), str):
            return first["generated_text"]
    return None


def _parse_raw(response: httpx.Response) -> Optional[str]:
    return response.text


RESPONSE_PARSERS: Dict[str, Callable[[httpx.Response], Optional[str]]] = {
    "object": _parse_object,
    "array": _parse_array,
    "raw": _parse_raw,
}
AUTO_ORDER = ("object", "array", "raw")
RESPONSE_FORMATS = ("auto",) + tuple(RESPONSE_PARSERS)


def parse_generation_response(response: httpx.Response, strategy: str = "auto") -> str:
    """Extract generated text from ``response`` using ``strategy``."""

    if strategy == "auto":
        order: Tuple[str, ...] = AUTO_ORDER
    elif strategy in RESPONSE_PARSERS:
        order = (strategy,)
    else:
        raise ValueError(f"Unknown response format '{strategy}'.")

    for name in order:
        text = RESPONSE_PARSERS[name](response)
        if text is None:
            continue
        text = text.strip()
        if not text:
            raise InvalidResponse("generation endpoint returned no text")
        return text
    raise InvalidResponse(f"generation response does not match the '{strategy}' format")


def build_llama_prompt(text: str, direction: Direction) -> str:
    return LLAMA_PROMPT_TEMPLATE.format(system=direction.system_prompt, text=text)


def _strip_prompt_echo(generated: str, prompt: str) -> str:
    echoed = prompt.strip()
    if generated.startswith(echoed):
        generated = generated[len(echoed):].strip()
        if not generated:
            raise InvalidResponse("generation endpoint only echoed the prompt")
    return generated


class WhisperLlamaProvider:
    """OpenAI Whisper transcription followed by a self-hosted Llama endpoint."""

    label = "OpenAI Whisper + Meta Llama"

    def __init__(
        self,
        openai_api_key: str,
        endpoint_url: str,
        llama_api_key: Optional[str] = None,
        *,
        transcription_model: str = "whisper-1",
        response_format: str = "auto",
        timeout: float = 60.0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        if not openai_api_key or not endpoint_url:
            raise ConfigurationMissing()
        if response_format not in RESPONSE_FORMATS:
            raise ConfigurationMissing(
                f"Unknown generation response format '{response_format}'. "
                f"Use one of: {', '.join(RESPONSE_FORMATS)}."
            )
        self._endpoint_url = endpoint_url
        self._llama_api_key = llama_api_key
        self._transcription_model = transcription_model
        self._response_format = response_format
        self._timeout = timeout
        self._http_client = http_client
        self._openai = OpenAI(
            api_key=openai_api_key,
            max_retries=0,
            timeout=timeout,
            http_client=http_client,
        )

    def process_audio(
        self, audio_path: Path, direction: Direction = Direction.CREOLE_TO_ENGLISH
    ) -> TranslationResult:
        transcription = self._transcribe(audio_path, direction)
        translation = self._translate(transcription, direction)
        return TranslationResult(
            source_text=transcription,
            translated_text=translation,
            provider_label=self.label,
        )

    def _transcribe(self, audio_path: Path, direction: Direction) -> str:
        filename, content_type = _upload_name(audio_path)
        audio = _read_audio(audio_path)
        options: Dict[str, str] = {}
        if direction.source_language:
            options["language"] = direction.source_language

        logging.debug("Sending transcription request to OpenAI")
        try:
            response = self._openai.audio.transcriptions.create(
                model=self._transcription_model,
                file=(filename, audio, content_type),
                response_format="json",
                **options,
            )
        except openai.AuthenticationError as exc:
            raise InvalidCredential() from exc
        except openai.APIConnectionError as exc:
            raise NetworkFailure(str(exc)) from exc
        except openai.APIStatusError as exc:
            raise TranscriptionFailed(exc.response.text.strip() or str(exc)) from exc
        except (openai.APIResponseValidationError, ValueError) as exc:
            raise InvalidResponse(str(exc)) from exc

        text = getattr(response, "text", None)
        if not isinstance(text, str):
            raise InvalidResponse("transcription has no text field")
        return text.strip()

    def _translate(self, text: str, direction: Direction) -> str:
        prompt = build_llama_prompt(text, direction)
        headers: Dict[str, str] = {}
        if self._llama_api_key:
            headers["Authorization"] = f"Bearer {self._llama_api_key}"
        payload = {
            "inputs": prompt,
            "parameters": {"temperature": TEMPERATURE, "max_new_tokens": MAX_TOKENS},
        }

        with _http_client(self._http_client, self._timeout) as client:
            response = _post(client, self._endpoint_url, step="generation", headers=headers, json=payload)
        if not response.is_success:
            raise TranslationFailed(_error_detail(response))

        generated = parse_generation_response(response, self._response_format)
        return _strip_prompt_echo(generated, prompt)


def select_provider(
    resolver: Optional[SecretResolver] = None,
    config: Optional[Config] = None,
) -> TranslationProvider:
    """Return the provider matching the credentials that are configured.

    Groq wins when its key is present. Otherwise the OpenAI key plus a Llama
    endpoint select the split provider. Anything else is a configuration error,
    raised before a single request is made.
    """

    config = config or load_config()
    resolver = resolver or SecretResolver(metadata=asdict(config))

    groq_key = resolver.resolve(GROQ_API_KEY)
    if groq_key:
        logging.debug("Selected provider: %s", GroqProvider.label)
        return GroqProvider(
            groq_key,
            transcription_model=config.groq_transcription_model,
            chat_model=config.groq_chat_model,
            timeout=config.api_timeout,
        )

    openai_key = resolver.resolve(OPENAI_API_KEY)
    endpoint = resolver.resolve(LLAMA_ENDPOINT_URL)
    if openai_key and endpoint:
        logging.debug("Selected provider: %s", WhisperLlamaProvider.label)
        return WhisperLlamaProvider(
            openai_key,
            endpoint,
            resolver.resolve(LLAMA_API_KEY),
            transcription_model=config.openai_transcription_model,
            response_format=config.generation_response_format,
            timeout=config.api_timeout,
        )

    raise ConfigurationMissing()
