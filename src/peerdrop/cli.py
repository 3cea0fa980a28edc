#!/usr/bin/env python3
"""PeerDrop CLI - share text and files with a peer over a manually negotiated channel"""

import asyncio
import logging
import os
import shlex
import threading
from pathlib import Path
from typing import Optional, Set

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from .config import SessionConfig, load_config
from .errors import ConfigError
from .files import PathFileSource
from .messages import FileMessage, Message, Sender, TextMessage
from .session import ConnectionState, PeerSession
from .utils.formatting import format_bytes, format_timestamp

logger = logging.getLogger(__name__)
console = Console()

app = typer.Typer(
    name="peerdrop",
    help="Share text and files directly between two machines",
    add_completion=False,
    no_args_is_help=True,
)

HELP_TEXT = (
    "Type a message and press Enter to send it.\n"
    "/send PATH   send a file\n"
    "/status      show the session state\n"
    "/quit        disconnect"
)


def _setup_logging(verbose: bool) -> None:
    if verbose:
        level = logging.DEBUG
    else:
        level = getattr(logging, os.getenv("LOG_LEVEL", "WARNING").upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _load_config(download_dir: Optional[Path]) -> SessionConfig:
    try:
        config = load_config()
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {escape(e.message)}")
        raise typer.Exit(code=2)
    if download_dir is not None:
        config.download_dir = download_dir
    return config


async def _prompt(label: str) -> str:
    """
    Read one line without blocking the event loop.

    The read runs in a daemon thread so an abandoned prompt never holds up
    interpreter shutdown. EOF (Ctrl-D) raises EOFError in the caller.
    """
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def deliver(setter, value):
        if not future.done():
            setter(value)

    def read():
        try:
            line = console.input(label)
        except EOFError as e:
            callback = (deliver, future.set_exception, e)
        else:
            callback = (deliver, future.set_result, line)
        try:
            loop.call_soon_threadsafe(*callback)
        except RuntimeError:
            # Loop already closed
            pass

    threading.Thread(target=read, name="peerdrop-prompt", daemon=True).start()
    return await future


async def _next_line(session: PeerSession) -> Optional[str]:
    """Next input line, or None once the session leaves CONNECTED"""
    prompt = asyncio.ensure_future(_prompt("> "))
    ended = asyncio.ensure_future(
        session.wait_for_state(ConnectionState.DISCONNECTED, ConnectionState.FAILED)
    )
    try:
        await asyncio.wait({prompt, ended}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        ended.cancel()
    if session.state is not ConnectionState.CONNECTED or not prompt.done():
        prompt.cancel()
        return None
    return prompt.result()


_pending_saves: Set[asyncio.Task] = set()


async def _save_received(message: FileMessage, config: SessionConfig) -> None:
    info = message.file_info
    try:
        path = await asyncio.to_thread(message.payload.save, config.download_dir, info.name)
    except OSError as e:
        console.print(f"[red]Could not save {escape(info.name)}: {escape(str(e))}[/red]")
        return
    when = format_timestamp(message.timestamp)
    console.print(
        f"[dim]{when}[/dim] [bold magenta]peer[/bold magenta] sent [bold]{escape(info.name)}[/bold] "
        f"({format_bytes(info.size)}) -> {escape(str(path))}"
    )


async def _flush_saves() -> None:
    if _pending_saves:
        await asyncio.gather(*list(_pending_saves), return_exceptions=True)


def _render_message(message: Message, config: SessionConfig) -> None:
    when = format_timestamp(message.timestamp)
    who = "[bold cyan]you[/bold cyan]" if message.sender is Sender.LOCAL else "[bold magenta]peer[/bold magenta]"

    if isinstance(message, TextMessage):
        if message.sender is Sender.REMOTE:
            console.print(f"[dim]{when}[/dim] {who}: {escape(message.content)}")
        return

    info = message.file_info
    size = format_bytes(info.size)
    if message.sender is Sender.LOCAL:
        console.print(f"[dim]{when}[/dim] {who} sent [bold]{escape(info.name)}[/bold] ({size})")
        return

    # Written off the event loop; reported once saved
    task = asyncio.ensure_future(_save_received(message, config))
    _pending_saves.add(task)
    task.add_done_callback(_pending_saves.discard)


def _print_blob(title: str, blob: str) -> None:
    # No panel borders: the blob must survive copy and paste intact
    console.rule(f"[cyan]{title}[/cyan]")
    console.print(blob, soft_wrap=True, markup=False, highlight=False)
    console.rule(style="cyan")
    console.print("[dim]Copy the whole block above and send it to your peer.[/dim]\n")


async def _wait_connected(session: PeerSession, timeout: float) -> bool:
    try:
        state = await session.wait_for_state(
            ConnectionState.CONNECTED, ConnectionState.FAILED, ConnectionState.DISCONNECTED,
            timeout=timeout
        )
    except asyncio.TimeoutError:
        console.print(f"[red]Timed out after {timeout:.0f}s waiting for the peer.[/red]")
        return False
    if state is not ConnectionState.CONNECTED:
        console.print(f"[red]{session.last_error or 'Connection closed.'}[/red]")
        return False
    return True


async def _share_loop(session: PeerSession) -> bool:
    """Interactive loop; returns False if the session ended FAILED"""
    console.print(Panel(HELP_TEXT, title="Connected", border_style="green"))
    transfers = []

    while session.state is ConnectionState.CONNECTED:
        try:
            line = await _next_line(session)
        except EOFError:
            break
        if line is None:
            break
        line = line.strip()
        if not line:
            continue

        if line == "/quit":
            break
        if line == "/status":
            console.print(session.snapshot())
            continue
        if line.startswith("/send"):
            args = shlex.split(line[len("/send"):])
            if len(args) != 1:
                console.print("[yellow]Usage: /send PATH[/yellow]")
                continue
            try:
                source = PathFileSource(args[0])
            except FileNotFoundError as e:
                console.print(f"[red]{escape(str(e))}[/red]")
                continue
            task = session.send_file(source)
            if task is not None:
                transfers.append(task)
            continue

        session.send_text(line)

    pending = [t for t in transfers if not t.done()]
    if pending and session.state is ConnectionState.CONNECTED:
        console.print(f"[dim]Waiting for {len(pending)} transfer(s) to finish...[/dim]")
        await asyncio.gather(*pending, return_exceptions=True)

    await _flush_saves()

    if session.state is ConnectionState.FAILED:
        console.print(f"[red]{escape(session.last_error or 'Session failed.')}[/red]")
        return False
    console.print("[dim]Disconnected.[/dim]")
    return True


async def _run_create(config: SessionConfig, timeout: float) -> int:
    async with PeerSession(config) as session:
        session.messages.subscribe(lambda m: _render_message(m, config))
        console.print("[bold cyan]Creating session offer...[/bold cyan]")
        await session.create_offer()
        if session.state is ConnectionState.FAILED or session.offer is None:
            console.print(f"[red]{session.last_error or 'Could not create an offer.'}[/red]")
            return 1

        _print_blob("Session Offer", session.offer)
        answer = await _prompt("Paste the peer's answer: ")
        await session.set_remote_answer(answer)
        if session.state is ConnectionState.FAILED:
            console.print(f"[red]{session.last_error}[/red]")
            return 1

        if not await _wait_connected(session, timeout):
            return 1
        if not await _share_loop(session):
            return 1
        return 0


async def _run_join(config: SessionConfig, timeout: float) -> int:
    async with PeerSession(config) as session:
        session.messages.subscribe(lambda m: _render_message(m, config))
        offer = await _prompt("Paste the peer's offer: ")
        await session.create_answer(offer)
        if session.state is ConnectionState.FAILED or session.answer is None:
            console.print(f"[red]{session.last_error or 'Could not create an answer.'}[/red]")
            return 1

        _print_blob("Session Answer", session.answer)
        if not await _wait_connected(session, timeout):
            return 1
        if not await _share_loop(session):
            return 1
        return 0


@app.command()
def create(
    timeout: float = typer.Option(300.0, "--timeout", "-t", help="Seconds to wait for the peer"),
    download_dir: Optional[Path] = typer.Option(None, "--download-dir", "-d", help="Where received files are saved"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Create a session and print an offer for the peer"""
    _setup_logging(verbose)
    config = _load_config(download_dir)
    code = asyncio.run(_run_create(config, timeout))
    raise typer.Exit(code=code)


@app.command()
def join(
    timeout: float = typer.Option(300.0, "--timeout", "-t", help="Seconds to wait for the peer"),
    download_dir: Optional[Path] = typer.Option(None, "--download-dir", "-d", help="Where received files are saved"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Join a session from the peer's offer and print an answer"""
    _setup_logging(verbose)
    config = _load_config(download_dir)
    code = asyncio.run(_run_join(config, timeout))
    raise typer.Exit(code=code)


def main():
    app()


if __name__ == "__main__":
    main()
