"""Command line entry points."""

from __future__ import annotations

import asyncio
import contextlib
import itertools
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.markdown import Markdown

from chatter.app import AppRuntime, build_runtime
from chatter.config import get_settings
from chatter.core.assistant import Reply
from chatter.errors import ConfigurationError
from chatter.interfaces import MessageRef
from chatter.logging_utils import configure_logging

app = typer.Typer(name="chatter", help="Conversational assistant with validated, budgeted dialogues.", add_completion=False)

EXIT_COMMANDS = frozenset({"quit", "exit", "q"})


class ConsoleTransport:
    """ChatTransport printing to a rich console; edits print the new version."""

    def __init__(self, console: Console) -> None:
        self._console = console
        self._ids = itertools.count(1)

    async def send(self, user_id: int, text: str) -> MessageRef:
        self._console.print(Markdown(text))
        return MessageRef(chat_id=user_id, message_id=next(self._ids))

    async def edit(self, ref: MessageRef, text: str) -> None:
        self._console.rule(f"update #{ref.message_id}")
        self._console.print(Markdown(text))


def _load_runtime(home: Path | None, model: str | None) -> AppRuntime:
    settings = get_settings(home=home, model=model)
    try:
        return build_runtime(settings)
    except ConfigurationError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from exc


def _print_reply(console: Console, reply: Reply) -> None:
    if reply.final:
        console.rule("Specification ready")
    meta = reply.meta_line()
    if meta:
        console.print(meta, style="dim", markup=False)
    console.print(Markdown(reply.render()))
    for followup in reply.followups:
        console.rule()
        console.print(Markdown(followup))


async def _dispatch(runtime: AppRuntime, transport: ConsoleTransport, user_id: int, line: str) -> Reply | None:
    command, _, argument = line.partition(" ")
    assistant = runtime.assistant
    if command == "/tz":
        if not argument.strip():
            return Reply("Usage: /tz <topic>")
        return await assistant.start_elicitation(user_id, argument)
    if command == "/summary":
        return await assistant.summarize(user_id)
    if command == "/reset":
        await assistant.reset_context(user_id)
        return Reply("Context cleared.")
    if command == "/digest":
        if not argument.strip():
            return Reply("Usage: /digest <request>")
        task = await runtime.summary.start(user_id, argument, transport)
        await task
        return None
    return await assistant.handle_message(user_id, line)


async def _chat_loop(runtime: AppRuntime, user_id: int) -> None:
    console = Console()
    transport = ConsoleTransport(console)
    console.print(f"chatter on [bold]{runtime.settings.model}[/bold]. Commands: /tz, /summary, /reset, /digest, quit")
    while True:
        try:
            line = (await asyncio.to_thread(console.input, "[bold cyan]> [/bold cyan]")).strip()
        except (EOFError, KeyboardInterrupt):
            console.print("\nGoodbye!")
            return
        if not line:
            continue
        if line.lower() in EXIT_COMMANDS:
            return
        with console.status("thinking..."):
            reply = await _dispatch(runtime, transport, user_id, line)
        if reply is not None:
            _print_reply(console, reply)


@app.command()
def chat(
    home: Path | None = typer.Option(None, "--home", help="State directory"),  # noqa: B008
    model: str | None = typer.Option(None, "--model", help="Primary model, provider:model"),
    user_id: int = typer.Option(0, "--user-id", help="Local user id"),
) -> None:
    """Start an interactive chat in the terminal."""

    configure_logging(profile="chat")
    runtime = _load_runtime(home, model)
    asyncio.run(_chat_loop(runtime, user_id))


@app.command()
def telegram(
    home: Path | None = typer.Option(None, "--home", help="State directory"),  # noqa: B008
    model: str | None = typer.Option(None, "--model", help="Primary model, provider:model"),
) -> None:
    """Serve the assistant through a Telegram bot."""

    from chatter.channels.telegram import TelegramChannel, TelegramConfig

    configure_logging(profile="default")
    runtime = _load_runtime(home, model)
    settings = runtime.settings
    if not settings.telegram_token:
        typer.secho("Telegram token not configured. Set CHATTER_TELEGRAM_TOKEN.", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    channel = TelegramChannel(
        runtime.assistant,
        TelegramConfig(token=settings.telegram_token, allow_from=settings.telegram_allow_from),
        summary=runtime.summary,
    )

    async def _serve() -> None:
        try:
            await channel.start()
        finally:
            await channel.stop()

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(_serve())
    logger.info("telegram.stopped")


if __name__ == "__main__":
    app()
