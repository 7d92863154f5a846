from __future__ import annotations

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.text import Text

from .config import CONFIG_PATH, load_config, save_config
from .credentials import (
    GROQ_API_KEY,
    LLAMA_API_KEY,
    LLAMA_ENDPOINT_URL,
    OPENAI_API_KEY,
    SecretResolver,
)
from .models import Config, Direction


def _mask(value: Optional[str]) -> str:
    if not value:
        return "-"
    return value[:4] + "…" if len(value) > 4 else "****"


def run_onboarding(resolver: Optional[SecretResolver] = None, console: Optional[Console] = None) -> Config:
    console = console or Console()
    resolver = resolver or SecretResolver()

    console.clear()

    welcome_text = Text()
    welcome_text.append("🎤 Welcome to kreyol!\n\n", style="bold cyan")
    welcome_text.append("Speak Haitian Creole or English, read the translation.\n", style="dim")

    console.print(Panel(welcome_text, border_style="cyan", expand=False))
    console.print()

    config = load_config()
    secrets: dict[str, str] = {}

    console.print("[bold]Translation Provider[/bold]")
    console.print()
    console.print("Choose how audio is transcribed and translated:")
    console.print("  1. Groq (Whisper + Llama, one API key)")
    console.print("  2. OpenAI Whisper + your own Llama endpoint")
    console.print()

    provider_choice = Prompt.ask("Select option", choices=["1", "2"], default="1")

    console.print()
    if provider_choice == "1":
        console.print("Enter your Groq API key:")
        console.print("(Get one at https://console.groq.com/keys)")
        api_key = Prompt.ask("API Key", password=True)
        if api_key:
            secrets[GROQ_API_KEY] = api_key
    else:
        console.print("Enter your OpenAI API key:")
        console.print("(Get one at https://platform.openai.com/api-keys)")
        api_key = Prompt.ask("API Key", password=True)
        if api_key:
            secrets[OPENAI_API_KEY] = api_key
        console.print()
        endpoint = Prompt.ask("Llama generation endpoint URL")
        if endpoint:
            secrets[LLAMA_ENDPOINT_URL] = endpoint
        llama_key = Prompt.ask("Endpoint bearer token (leave empty if none)", password=True, default="")
        if llama_key:
            secrets[LLAMA_API_KEY] = llama_key

    console.print()
    console.print("[bold]Default Direction[/bold]")
    console.print()
    console.print("  1. Haitian Creole → English")
    console.print("  2. English → Haitian Creole")
    console.print()

    direction_choice = Prompt.ask("Select option", choices=["1", "2"], default="1")
    if direction_choice == "2":
        config.direction = Direction.ENGLISH_TO_CREOLE.value
    else:
        config.direction = Direction.CREOLE_TO_ENGLISH.value

    console.print()
    console.print("[bold green]✓ Setup Complete![/bold green]")
    console.print()

    summary = Table(show_header=False, box=None, padding=(0, 2))
    summary.add_column(style="cyan")
    summary.add_column()

    summary.add_row("Direction:", config.direction)
    for key, value in secrets.items():
        summary.add_row(f"{key}:", _mask(value))

    console.print(Panel(summary, title="Your Configuration", border_style="green"))
    console.print()

    if Confirm.ask("Save this configuration?", default=True):
        save_config(config)
        for key, value in secrets.items():
            resolver.store(key, value)
        console.print("[green]Configuration saved to[/green]", CONFIG_PATH)
        console.print("[green]Credentials saved to[/green]", resolver.secrets_path)
        console.print()
        console.print("[bold]To translate from the microphone, run:[/bold]")
        console.print("  [cyan]kreyol record[/cyan]")
        console.print()
        console.print("[bold]To translate a file, run:[/bold]")
        console.print("  [cyan]kreyol translate <audio-file>[/cyan]")
        console.print()
    else:
        console.print("[yellow]Configuration not saved. Run 'kreyol setup' to try again.[/yellow]")
    return config
