"""
Typed terminal commands, turned into GameController calls.

Moves are entered as UCI ("e2e4", "e7e8q") or as two squares ("e2 e4").
"""

from __future__ import annotations

import asyncio
import logging
import sys
import threading

from rich.table import Table

from chesslink.board import parse_move_token
from chesslink.cli.display import console
from chesslink.client.base import ClientError
from chesslink.controller import GameController, NoActiveGameError

logger = logging.getLogger(__name__)

_HELP = [
    ("e2e4 | e2 e4", "play a move (UCI, promotion letter optional)"),
    ("promote <q|r|b|n>", "finish a pending promotion"),
    ("cancel", "cancel a pending promotion"),
    ("puzzle", "load a new puzzle"),
    ("leave", "leave the current puzzle"),
    ("play <game id>", "follow a live game"),
    ("ai [level]", "challenge the computer (level 1-8)"),
    ("accept <id> | decline <id>", "answer a challenge"),
    ("resign | draw | nodraw", "live game actions"),
    ("logout", "stop streams and forget the account"),
    ("quit", "exit"),
]


def print_help() -> None:
    table = Table(show_header=False, border_style="dim", show_lines=False)
    table.add_column("Command", style="bold", min_width=24)
    table.add_column("Does")
    for command, does in _HELP:
        table.add_row(command, does)
    console.print(table)


async def run_command(controller: GameController, line: str) -> bool:
    """Execute one command line. Returns False when the user asked to quit."""
    words = line.strip().split()
    if not words:
        return True
    head, args = words[0].lower(), words[1:]
    try:
        match head:
            case "quit" | "q":
                return False
            case "help" | "?":
                print_help()
            case "puzzle":
                await controller.start_puzzle()
            case "leave":
                controller.exit_puzzle()
            case "play" if args:
                controller.stream_game(args[0])
            case "ai":
                level = int(args[0]) if args and args[0].isdigit() else 3
                await controller.challenge_ai(level)
            case "accept" if args:
                await controller.accept_challenge(args[0])
            case "decline" if args:
                await controller.decline_challenge(args[0])
            case "resign":
                await controller.resign()
            case "draw":
                await controller.offer_draw()
            case "nodraw":
                await controller.decline_draw()
            case "promote" if args:
                controller.confirm_promotion(args[0].lower()[:1])
            case "cancel":
                controller.cancel_promotion()
            case "logout":
                controller.logout()
            case _:
                _move(controller, words)
    except NoActiveGameError as exc:
        console.print(f"[yellow]{exc}[/]")
    except ClientError as exc:
        logger.warning("Command %r failed: %s", head, exc)
        console.print(f"[red]Error:[/] {exc}")
    return True


def _move(controller: GameController, words: list[str]) -> None:
    token = "".join(words).lower()
    spec = parse_move_token(token)
    if spec is None:
        console.print(f"[dim]Unknown command {' '.join(words)!r}; type 'help'.[/]")
        return
    if spec.promotion:
        controller.attempt_move(spec.from_square, spec.to_square)
        if controller.gate.pending_promotion is not None:
            controller.confirm_promotion(spec.promotion)
        return
    controller.attempt_move(spec.from_square, spec.to_square)


def _start_stdin_reader(loop: asyncio.AbstractEventLoop, lines: asyncio.Queue[str | None]) -> None:
    """Feed stdin lines into the loop from a daemon thread, so quitting never waits on input."""

    def _read() -> None:
        try:
            for line in sys.stdin:
                loop.call_soon_threadsafe(lines.put_nowait, line)
            loop.call_soon_threadsafe(lines.put_nowait, None)
        except RuntimeError:
            return  # loop already closed

    threading.Thread(target=_read, name="stdin-reader", daemon=True).start()


async def command_loop(controller: GameController, stop_event: asyncio.Event) -> None:
    """Read commands until quit, EOF, or stop_event."""
    lines: asyncio.Queue[str | None] = asyncio.Queue()
    _start_stdin_reader(asyncio.get_running_loop(), lines)
    print_help()
    while not stop_event.is_set():
        line = await lines.get()
        if line is None or not await run_command(controller, line):
            break
    stop_event.set()
