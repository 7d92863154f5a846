"""Command line interface for the kreyol translator."""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from dataclasses import asdict
from pathlib import Path
from typing import Dict, Optional

import typer

from . import __version__
from . import config as config_mod
from .config import ConfigError
from .credentials import KNOWN_KEYS, SecretResolver
from .errors import ConfigurationMissing
from .history import HistoryError, HistoryStore
from .models import Config, Direction, PipelineState
from .pipeline import PipelineEvent, PipelineOutcome, TranslationPipeline
from .providers import RESPONSE_FORMATS, select_provider

app = typer.Typer(add_completion=False, help="Translate spoken Haitian Creole and English.")
history_app = typer.Typer(add_completion=False, help="Browse and manage past translations.")
app.add_typer(history_app, name="history")


def _fail(message: str) -> typer.Exit:
    typer.secho(message, fg=typer.colors.RED, err=True)
    return typer.Exit(code=1)


def _load_config() -> Config:
    try:
        return config_mod.load_config()
    except ConfigError as exc:
        raise _fail(str(exc)) from exc


def _history(cfg: Config) -> HistoryStore:
    return HistoryStore(max_entries=cfg.history_limit)


def _resolve_direction(cfg: Config, direction: Optional[Direction]) -> Direction:
    return direction if direction is not None else Direction(cfg.direction)


def _echo_status(event: PipelineEvent) -> None:
    if event.state in (PipelineState.RECORDING, PipelineState.PROCESSING) and event.status_message:
        typer.secho(event.status_message, fg=typer.colors.YELLOW)


def _build_pipeline(cfg: Config, direction: Direction, recorder=None) -> TranslationPipeline:
    return TranslationPipeline(
        history=_history(cfg),
        provider_factory=lambda: select_provider(config=cfg),
        recorder=recorder,
        direction=direction,
        on_event=_echo_status,
    )


def _report_outcome(outcome: PipelineOutcome, direction: Direction) -> None:
    if outcome.error is not None:
        raise _fail(str(outcome.error))
    if outcome.result is None:
        raise _fail("Nothing was recorded.")

    result = outcome.result
    typer.secho(f"{direction.source_label}:", fg=typer.colors.BLUE)
    typer.echo(result.source_text)
    typer.secho(f"\n{direction.target_label}:", fg=typer.colors.GREEN)
    typer.echo(result.translated_text)
    typer.echo(f"\nCompleted using {result.provider_label}.")
    if outcome.entry is not None:
        typer.secho(f"Saved to history as {outcome.entry.short_id}.", fg=typer.colors.BLUE)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Log pipeline activity to stderr."),
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
) -> None:
    if version:
        typer.echo(f"kreyol v{__version__}")
        raise typer.Exit()

    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command()
def translate(
    audio: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Path to the audio file."),
    direction: Optional[Direction] = typer.Option(None, "--direction", "-d", help="Translation direction."),
) -> None:
    """Transcribe and translate an audio file."""

    cfg = _load_config()
    chosen = _resolve_direction(cfg, direction)

    # The pipeline deletes the file it processes, so hand it a copy.
    fd, filename = tempfile.mkstemp(suffix=audio.suffix, prefix="kreyol-")
    os.close(fd)
    working_copy = Path(filename)
    shutil.copyfile(audio, working_copy)

    outcome = _build_pipeline(cfg, chosen).process_recording(working_copy)
    _report_outcome(outcome, chosen)


@app.command()
def record(
    direction: Optional[Direction] = typer.Option(None, "--direction", "-d", help="Translation direction."),
    speak: bool = typer.Option(False, "--speak", help="Read the translation aloud."),
) -> None:  # pragma: no cover - interactive
    """Record from the microphone, then translate what was said."""

    from .recorder import AudioRecorder

    cfg = _load_config()
    chosen = _resolve_direction(cfg, direction)
    recorder = AudioRecorder()
    pipeline = _build_pipeline(cfg, chosen, recorder=recorder)

    try:
        started = pipeline.start_recording()
    except RuntimeError as exc:
        raise _fail(str(exc)) from exc
    if not started:
        raise _fail(pipeline.error_message or "Could not start recording.")

    try:
        typer.prompt("Press Enter to stop", default="", show_default=False)
    except typer.Abort as exc:
        recorder.interrupt()
        raise _fail("Recording discarded.") from exc

    outcome = pipeline.stop_recording()
    if outcome.result is None and outcome.error is None and pipeline.error_message:
        raise _fail(pipeline.error_message)
    _report_outcome(outcome, chosen)

    if speak and outcome.result is not None:
        from .speech import Speaker

        speaker = Speaker()
        try:
            speaker.speak(outcome.result.translated_text, chosen.speech_language)
        except RuntimeError as exc:
            raise _fail(str(exc)) from exc
        speaker.wait()


@history_app.command("list")
def history_list() -> None:
    """List stored translations, newest first."""

    entries = _history(_load_config()).entries
    if not entries:
        typer.echo("No translations yet. Use `kreyol translate` or `kreyol record` to create one.")
        return

    header = f"{'ID':<8}  {'Created':<16}  {'Direction':<18}  {'Text':<40}"
    typer.echo(header)
    typer.echo("-" * len(header))
    for entry in entries:
        created = entry.timestamp.astimezone().strftime("%Y-%m-%d %H:%M")
        text = entry.source_text if len(entry.source_text) <= 40 else entry.source_text[:37] + "..."
        typer.echo(f"{entry.short_id:<8}  {created:<16}  {entry.direction.value:<18}  {text:<40}")


@history_app.command("show")
def history_show(
    entry_id: str = typer.Argument(..., help="Identifier (or prefix) of the entry."),
) -> None:
    """Show a stored translation."""

    try:
        entry = _history(_load_config()).get_entry(entry_id)
    except HistoryError as exc:
        raise _fail(str(exc)) from exc

    typer.secho(f"Id: {entry.id}", fg=typer.colors.BLUE)
    typer.echo(f"Created: {entry.timestamp.astimezone():%Y-%m-%d %H:%M}")
    typer.secho(f"\n{entry.direction.source_label}:", fg=typer.colors.BLUE)
    typer.echo(entry.source_text)
    typer.secho(f"\n{entry.direction.target_label}:", fg=typer.colors.GREEN)
    typer.echo(entry.translated_text)


@history_app.command("delete")
def history_delete(
    entry_id: str = typer.Argument(..., help="Identifier (or prefix) of the entry."),
) -> None:
    """Delete a stored translation."""

    store = _history(_load_config())
    try:
        entry = store.get_entry(entry_id)
    except HistoryError as exc:
        raise _fail(str(exc)) from exc
    store.delete_entry(entry.id)
    typer.secho(f"Entry {entry.short_id} deleted.", fg=typer.colors.BLUE)


@history_app.command("clear")
def history_clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete every stored translation."""

    if not yes:
        typer.confirm("Delete the whole translation history?", abort=True)
    _history(_load_config()).clear_all()
    typer.secho("History cleared.", fg=typer.colors.BLUE)


@app.command()
def config(
    direction: Optional[Direction] = typer.Option(None, help="Default translation direction."),
    groq_transcription_model: Optional[str] = typer.Option(None, help="Groq Whisper model id."),
    groq_chat_model: Optional[str] = typer.Option(None, help="Groq chat model id."),
    openai_transcription_model: Optional[str] = typer.Option(None, help="OpenAI transcription model id."),
    generation_response_format: Optional[str] = typer.Option(
        None, help="How to read the Llama endpoint response (auto, object, array, raw)."
    ),
    history_limit: Optional[int] = typer.Option(None, min=1, help="Number of translations kept in history."),
    api_timeout: Optional[float] = typer.Option(None, help="HTTP client timeout (seconds) for API calls."),
    llama_endpoint_url: Optional[str] = typer.Option(None, help="URL of the self-hosted Llama endpoint."),
    show: bool = typer.Option(False, "--show", help="Display the active configuration."),
) -> None:
    """Update or inspect configuration settings."""

    updates: Dict[str, object] = {
        key: value
        for key, value in {
            "direction": direction.value if direction else None,
            "groq_transcription_model": groq_transcription_model,
            "groq_chat_model": groq_chat_model,
            "openai_transcription_model": openai_transcription_model,
            "generation_response_format": generation_response_format,
            "history_limit": history_limit,
            "api_timeout": api_timeout,
            "llama_endpoint_url": llama_endpoint_url,
        }.items()
        if value is not None
    }

    if show or not updates:
        cfg = _load_config()
        data = asdict(cfg)
        for key in ("groq_api_key", "openai_api_key", "llama_api_key"):
            if data.get(key):
                data[key] = "********"
        typer.echo(json.dumps(data, indent=2, default=str))
        return

    if generation_response_format and generation_response_format not in RESPONSE_FORMATS:
        raise _fail(f"Response format must be one of: {', '.join(RESPONSE_FORMATS)}.")

    try:
        config_mod.update_config(**updates)
    except ConfigError as exc:
        raise _fail(str(exc)) from exc
    typer.secho("Configuration updated.", fg=typer.colors.BLUE)


@app.command()
def providers() -> None:
    """Show where credentials were found and which provider will be used."""

    cfg = _load_config()
    resolver = SecretResolver(metadata=asdict(cfg))
    for key in KNOWN_KEYS:
        found = resolver.sources(key)
        typer.echo(f"{key:<20} {', '.join(found) if found else 'not set'}")

    try:
        provider = select_provider(resolver, cfg)
    except ConfigurationMissing as exc:
        raise _fail(f"\n{exc}") from exc
    typer.secho(f"\nActive provider: {provider.label}", fg=typer.colors.GREEN)


@app.command()
def speak(
    text: Optional[str] = typer.Argument(None, help="Text to read aloud."),
    entry_id: Optional[str] = typer.Option(None, "--entry", help="Read the translation of a history entry."),
    language: str = typer.Option("en-US", help="Voice language when speaking free text."),
) -> None:  # pragma: no cover - audio output
    """Read a translation aloud."""

    from .speech import Speaker

    if entry_id:
        try:
            entry = _history(_load_config()).get_entry(entry_id)
        except HistoryError as exc:
            raise _fail(str(exc)) from exc
        text = entry.translated_text
        language = entry.direction.speech_language
    if not text:
        raise _fail("Nothing to say. Pass some text or --entry.")

    speaker = Speaker()
    try:
        spoken = speaker.speak(text, language)
    except RuntimeError as exc:
        raise _fail(str(exc)) from exc
    if spoken:
        speaker.wait()


@app.command()
def setup() -> None:
    """Run the interactive credential setup wizard."""

    from .onboarding import run_onboarding

    try:
        run_onboarding()
    except (ConfigError, OSError) as exc:
        typer.secho(f"Setup failed: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


if __name__ == "__main__":  # pragma: no cover
    app()
