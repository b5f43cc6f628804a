"""Terminal board UI for London Trainer.

Renders a Rich-based chess board. By default it watches
data/current_game.json (written by the MCP server) via watchdog and
redraws at ~4Hz. ``--replay GAME_ID`` plays back a recorded game with
the review annotations; ``--list`` prints the stored games.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time
from datetime import datetime
from pathlib import Path

import chess
from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from trainer.config import configure_logging, load_settings
from trainer.replay import ReplayController, replay_view
from trainer.storage import GameStore, JsonStore

# Unicode piece symbols
_PIECE_SYMBOLS = {
    "K": "♔", "Q": "♕", "R": "♖", "B": "♗",
    "N": "♘", "P": "♙",
    "k": "♚", "q": "♛", "r": "♜", "b": "♝",
    "n": "♞", "p": "♟",
}

_LIGHT_SQ = "grey85"
_DARK_SQ = "grey50"
_HIGHLIGHT = "yellow"
_SELECTED = "cyan"
_TARGET = "light_sky_blue1"
_PLAYED_ARROW = "red3"
_BEST_ARROW = "green3"

_QUALITY_STYLES = {
    "excellent": "bold green",
    "good": "green",
    "inaccuracy": "yellow",
    "mistake": "dark_orange",
    "blunder": "bold red",
}


def _load_game_state(path: Path) -> dict | None:
    """Load a GameState dict from a JSON file.

    Returns:
        Parsed dict or None if file missing/corrupt.
    """
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(data, dict):
            return data
        return None
    except (json.JSONDecodeError, OSError):
        return None


def _square_set(*names: str | None) -> set[int]:
    squares: set[int] = set()
    for name in names:
        if not name:
            continue
        try:
            squares.add(chess.parse_square(name))
        except ValueError:
            pass
    return squares


def _highlight_map(state: dict) -> dict[int, str]:
    """Background colour overrides per square, lowest priority first."""
    highlights: dict[int, str] = {}
    last_move = state.get("last_move") or ""
    if len(last_move) >= 4:
        for sq in _square_set(last_move[0:2], last_move[2:4]):
            highlights[sq] = _HIGHLIGHT
    for sq in _square_set(*state.get("legal_targets", [])):
        highlights[sq] = _TARGET
    for sq in _square_set(state.get("selected_square")):
        highlights[sq] = _SELECTED
    for kind, colour in (("played", _PLAYED_ARROW), ("best", _BEST_ARROW)):
        for arrow in state.get("arrows", []):
            if arrow.get("kind") == kind:
                for sq in _square_set(arrow.get("from_square"), arrow.get("to_square")):
                    highlights[sq] = colour
    return highlights


def render_board(state: dict) -> Layout:
    """Render the full board layout from a state dict.

    Args:
        state: GameState-like dict with fen, move_list, last_move and
            optional arrows, quality and replay keys.

    Returns:
        Rich Layout with board and sidebar.
    """
    layout = Layout()
    layout.split_row(
        Layout(name="board", ratio=2),
        Layout(name="sidebar", ratio=1),
    )
    layout["board"].update(_render_board_panel(state))
    layout["sidebar"].update(_render_sidebar(state))
    return layout


def _render_board_panel(state: dict) -> Panel:
    board = chess.Board(state.get("fen", chess.STARTING_FEN))
    highlights = _highlight_map(state)

    table = Table(show_header=False, show_edge=False, pad_edge=False,
                  box=None, padding=(0, 1))
    table.add_column(width=2, justify="right")
    for _ in range(8):
        table.add_column(width=3, justify="center")

    for rank in range(7, -1, -1):
        row: list[Text] = [Text(str(rank + 1), style="bold")]
        for file in range(8):
            sq = chess.square(file, rank)
            piece = board.piece_at(sq)
            bg = highlights.get(sq, _LIGHT_SQ if (rank + file) % 2 == 1 else _DARK_SQ)
            if piece is not None:
                symbol = _PIECE_SYMBOLS.get(piece.symbol(), "?")
                row.append(Text(f" {symbol} ", style=f"on {bg}"))
            else:
                row.append(Text("   ", style=f"on {bg}"))
        table.add_row(*row)

    file_labels = [Text("  ")]
    for f in range(8):
        file_labels.append(Text(f" {chr(ord('a') + f)} ", style="bold"))
    table.add_row(*file_labels)

    title = "London Trainer"
    replay = state.get("replay")
    if replay:
        title = f"Replay: move {replay['index']} of {replay['total']}"
    elif state.get("is_game_over"):
        result = state.get("result") or {}
        title = f"Game Over: {result.get('type', '?')}"

    return Panel(table, title=title, border_style="blue")


def _render_sidebar(state: dict) -> Panel:
    parts: list[str] = []

    move_list = state.get("move_list", [])
    if move_list:
        parts.append("[bold]Moves:[/bold]")
        for i in range(0, len(move_list), 2):
            move_num = i // 2 + 1
            white_move = move_list[i]
            black_move = move_list[i + 1] if i + 1 < len(move_list) else ""
            parts.append(f"  {move_num}. {white_move} {black_move}")
        parts.append("")

    quality = state.get("quality")
    if quality:
        style = _QUALITY_STYLES.get(quality["classification"], "white")
        parts.append(f"[bold]Move {quality['move_number']}:[/bold] {quality['move']}")
        parts.append(f"  [{style}]{quality['classification']}[/{style}] "
                     f"(-{quality['eval_drop']:.0f} cp)")
        if quality.get("best_move") and quality["classification"] not in ("excellent", "good"):
            parts.append(f"  Better was: {quality['best_move']}")
        parts.append("")

    replay = state.get("replay")
    if replay:
        total = replay["total"]
        bar_len = 20
        filled = int(replay["index"] / total * bar_len) if total else 0
        bar = "█" * filled + "░" * (bar_len - filled)
        parts.append(f"[bold]Replay:[/bold] {replay['phase']} at {replay['speed']}x")
        parts.append(f"  [{bar}]")
        parts.append("")

    side = state.get("side_to_move")
    if side and not replay:
        parts.append(f"To move: {side}")

    return Panel("\n".join(parts), title="Info", border_style="green")


def _render_waiting() -> Panel:
    return Panel(
        Text("Waiting for game...\n\nStart a game via the MCP server to see the board.",
             justify="center"),
        title="London Trainer",
        border_style="dim",
    )


def _watch_loop(console: Console, data_dir: Path) -> None:
    """Watch current_game.json and auto-update display at ~4Hz."""
    from watchdog.events import FileSystemEventHandler
    from watchdog.observers import Observer

    current_game = data_dir / "current_game.json"
    last_state: dict | None = None
    state_changed = True

    class _Handler(FileSystemEventHandler):
        def on_modified(self, event):
            nonlocal state_changed
            if str(event.src_path).endswith("current_game.json"):
                state_changed = True

    observer = Observer()
    data_dir.mkdir(parents=True, exist_ok=True)
    observer.schedule(_Handler(), str(data_dir), recursive=False)
    observer.start()

    try:
        with Live(console=console, refresh_per_second=4) as live:
            while True:
                if state_changed:
                    state = _load_game_state(current_game)
                    if state is not None:
                        last_state = state
                        live.update(render_board(state))
                    elif last_state is None:
                        live.update(_render_waiting())
                    state_changed = False
                time.sleep(0.25)
    except KeyboardInterrupt:
        pass
    finally:
        observer.stop()
        observer.join()


async def _replay_loop(console: Console, controller: ReplayController) -> None:
    with Live(render_board(replay_view(controller)), console=console,
              refresh_per_second=4) as live:
        controller.on_change = lambda _state: live.update(render_board(replay_view(controller)))
        controller.toggle_play()
        await controller.wait_stopped()


def _print_games(console: Console, store: GameStore) -> None:
    games = store.list_games()
    if not games:
        console.print("No recorded games yet.")
        return
    table = Table(title="Recorded games")
    table.add_column("ID")
    table.add_column("Date")
    table.add_column("Difficulty")
    table.add_column("Result")
    table.add_column("Moves", justify="right")
    for game in games:
        when = datetime.fromtimestamp(game.timestamp / 1000).strftime("%Y-%m-%d %H:%M")
        result = game.result.type
        if game.result.winner:
            result += f" ({game.result.winner})"
        table.add_row(game.id, when, game.difficulty, result, str(game.move_count))
    console.print(table)


def main() -> None:
    """CLI entry point for the terminal UI."""
    parser = argparse.ArgumentParser(description="London Trainer terminal UI")
    parser.add_argument("--list", action="store_true", help="List recorded games and exit")
    parser.add_argument("--replay", metavar="GAME_ID", help="Play back a recorded game")
    parser.add_argument("--speed", type=float, default=1.0, help="Replay speed multiplier")
    args = parser.parse_args()

    settings = load_settings()
    configure_logging(settings)
    console = Console()
    store = GameStore(JsonStore(settings.data_dir))

    if args.list:
        _print_games(console, store)
        return

    if args.replay:
        game = store.get_game(args.replay)
        if game is None:
            console.print(f"[red]No recorded game with id {args.replay}[/red]")
            sys.exit(1)
        controller = ReplayController()
        controller.enter_replay(game)
        controller.set_speed(args.speed)
        try:
            asyncio.run(_replay_loop(console, controller))
        except KeyboardInterrupt:
            pass
        return

    _watch_loop(console, settings.data_dir)


if __name__ == "__main__":
    main()
