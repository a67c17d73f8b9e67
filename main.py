"""
chesslink — terminal entry point.

Wires together:  config → logging → client → controller → (event channel → CLI display, commands)
"""

from __future__ import annotations

import asyncio
import logging
import logging.handlers
import signal
import sys
from pathlib import Path

from chesslink.cli.commands import command_loop
from chesslink.cli.display import console, display_event
from chesslink.client import create_client
from chesslink.config import ClientConfig, load_config
from chesslink.controller import GameController


def _configure_logging(config: ClientConfig) -> Path:
    log_file = config.log_dir_path / "chesslink.log"
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=config.logging.level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        handlers=[
            logging.handlers.RotatingFileHandler(
                log_file, maxBytes=2 * 1024 * 1024, backupCount=3,  # 2 MB × 3 files
                encoding="utf-8",
            ),
        ],
    )
    # Console only for warnings; the terminal belongs to the board.
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING)
    logging.getLogger().addHandler(console_handler)
    return log_file


async def _show_events(controller: GameController) -> None:
    async for event in controller.channel.stream():
        display_event(event)


async def _main(stop_event: asyncio.Event) -> None:
    config_path = Path("config.yaml")
    try:
        config = load_config(config_path)
    except FileNotFoundError as exc:
        console.print(f"[red]Error:[/] {exc}")
        sys.exit(1)
    except ValueError as exc:
        console.print(f"[red]Config error:[/] {exc}")
        sys.exit(1)

    log_file = _configure_logging(config)
    console.print(f"[dim]Logs: {log_file}[/]\n")

    client = create_client(config)
    controller = GameController(config, client)
    display_task = asyncio.get_running_loop().create_task(_show_events(controller))
    await asyncio.sleep(0)  # let the display subscribe before the first events

    controller.publish_initial_state()
    if controller.is_logged_in():
        await controller.start_auth_streams()
    else:
        console.print("[yellow]No token configured:[/] daily puzzle only (set LICHESS_TOKEN).")

    input_task = asyncio.get_running_loop().create_task(command_loop(controller, stop_event))
    await stop_event.wait()

    input_task.cancel()
    await controller.close()
    await display_task


def main() -> None:
    async def _run() -> None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()

        original_sigint = signal.getsignal(signal.SIGINT)

        def _on_sigint(sig: int, frame: object) -> None:
            # Schedule the event set on the event loop thread (safe on Windows)
            loop.call_soon_threadsafe(stop_event.set)
            # Restore the original handler so a second Ctrl+C force-quits
            signal.signal(signal.SIGINT, original_sigint)

        signal.signal(signal.SIGINT, _on_sigint)
        await _main(stop_event)

    asyncio.run(_run())


if __name__ == "__main__":
    main()
