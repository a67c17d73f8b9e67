"""
Rich-based CLI event consumer.

This is the ONLY place where terminal output happens.
It translates ClientEvent objects into formatted Rich output.
"""

from __future__ import annotations

import chess
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from chesslink.events import (
    BoardChangedEvent,
    ChallengeEvent,
    ChatMessageEvent,
    ClientEvent,
    ClockEvent,
    ConnectionStatusEvent,
    DrawStatusEvent,
    GameResultEvent,
    GameSummaryEvent,
    InvalidMoveEvent,
    MoveAnimatedEvent,
    MoveHistoryEvent,
    PlayersEvent,
    PromotionRequestEvent,
    PuzzleRatingEvent,
    PuzzleSolutionEvent,
    PuzzleStatusEvent,
)

console = Console(legacy_windows=False)


def display_event(event: ClientEvent) -> None:
    """Dispatch a ClientEvent to the appropriate display function."""
    match event:
        case BoardChangedEvent():
            _board(event)
        case MoveHistoryEvent():
            if event.moves_san:
                console.print(f"[dim]History:[/] {' '.join(event.moves_san)}")
        case MoveAnimatedEvent():
            console.print(f"  [green]✓[/] [bold]{event.move_san}[/]  [dim]({event.move_uci})[/]")
        case ClockEvent():
            _remember_clock(event)  # ticks often; shown with the next board
        case PlayersEvent():
            _players(event)
        case ConnectionStatusEvent():
            console.print(f"[dim]Stream:[/] {event.status}")
        case DrawStatusEvent():
            if event.status:
                console.print(f"[yellow]{event.status}[/]")
        case ChallengeEvent():
            _challenge(event)
        case ChatMessageEvent():
            console.print(f"[cyan]{event.author}[/] [dim]({event.room})[/]: {escape(event.text)}")
        case GameResultEvent():
            console.print(f"[bold]{event.result_text}[/]")
        case GameSummaryEvent():
            _summary(event)
        case PuzzleStatusEvent():
            console.print(f"[magenta]Puzzle:[/] {event.status}")
        case PuzzleRatingEvent():
            if event.rating != "--":
                console.print(f"[magenta]Puzzle rating:[/] {event.rating}")
        case PuzzleSolutionEvent():
            pass
        case InvalidMoveEvent():
            console.print(f"  [red]✗[/] {event.from_square or '?'}{event.to_square or '?'} rejected ({event.reason})")
        case PromotionRequestEvent():
            console.print(
                f"  Promote on {event.to_square}: choose one of "
                f"[bold]{', '.join(event.options)}[/] (type 'promote <piece>')"
            )


# --------------------------------------------------------------------------- #
# Display functions                                                            #
# --------------------------------------------------------------------------- #

_last_clock = ClockEvent("--:--", "--:--")


def _remember_clock(event: ClockEvent) -> None:
    global _last_clock
    _last_clock = event


def _board(event: BoardChangedEvent) -> None:
    symbol = "♔" if event.turn == "white" else "♚"
    console.print()
    console.print(
        Panel(
            f"[green]{chess.Board(event.fen).unicode(empty_square='·')}[/]",
            title=f"[dim]ply {event.ply}[/]  {symbol} to move",
            subtitle=f"[dim]White {_last_clock.white}  Black {_last_clock.black}[/]",
            border_style="dim",
            padding=(0, 1),
            expand=False,
        )
    )


def _players(event: PlayersEvent) -> None:
    side = f"  [dim](you: {event.player_color})[/]" if event.player_color else ""
    console.print(f"[bold white]{event.white}[/]  vs  [bold bright_black]{event.black}[/]{side}")


def _challenge(event: ChallengeEvent) -> None:
    rated = "rated" if event.rated else "casual"
    console.print(
        Panel(
            f"[bold]{event.challenger}[/] challenges you\n"
            f"{event.time_control}  {event.variant}  [dim]{rated}[/]\n"
            f"[dim]accept {event.challenge_id}  /  decline {event.challenge_id}[/]",
            title="[bold yellow] Challenge [/]",
            border_style="yellow",
            expand=False,
        )
    )


def _diff(value: int | None) -> str:
    if value is None:
        return "[dim]?[/]"
    style = "green" if value > 0 else "red" if value < 0 else "dim"
    return f"[{style}]{value:+d}[/]"


def _summary(event: GameSummaryEvent) -> None:
    console.print(
        Panel(
            f"{event.white} {_diff(event.white_rating_diff)}  vs  "
            f"{event.black} {_diff(event.black_rating_diff)}\n"
            f"[bold]{event.result_text}[/]\n"
            f"[dim]{event.timestamp.strftime('%Y-%m-%d %H:%M:%S')}[/]",
            title="[bold]Game Over[/]",
            border_style="green",
            expand=False,
        )
    )
