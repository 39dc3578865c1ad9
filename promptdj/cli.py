from __future__ import annotations

import argparse
import logging
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .errors import PromptDJError
from .logging_utils import configure_logging, debug_enabled, get_log_path, log_exception
from .storage import TrackStore
from .tracks import TrackModel

_LOGGER = logging.getLogger("promptdj.cli")
_CONSOLE = Console()


def _load_model(store: TrackStore) -> TrackModel:
    model = TrackModel(store.load())
    model.subscribe(store.save)
    return model


def _print_tracks(model: TrackModel) -> None:
    table = Table(title="Tracks")
    table.add_column("id")
    table.add_column("name")
    table.add_column("weight", justify="right")
    table.add_column("prompt")
    table.add_column("filtered")
    for track in model.list():
        table.add_row(
            track.track_id,
            f"[{track.color}]{escape(track.name)}[/]",
            f"{track.weight:.2f}",
            escape(track.text),
            "yes" if model.is_filtered(track) else "",
        )
    _CONSOLE.print(table)
    prompts = model.weighted_prompts()
    _CONSOLE.print(f"{len(prompts)} prompt(s) would be sent.")


def _doctor() -> list[str]:
    lines = [
        f"Track store: {TrackStore().path}",
        f"Log file: {get_log_path()}",
    ]
    try:
        import sounddevice  # type: ignore[import]  # noqa: F401
    except (ImportError, OSError) as exc:
        _LOGGER.info("sounddevice unavailable: %s", exc, exc_info=True)
        lines.append(f"sounddevice: unavailable ({exc})")
    else:
        lines.append("sounddevice: available")
    return lines


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="promptdj")
    parser.add_argument("--store", type=Path, default=None, help="Path to tracks.json.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("tracks", help="List stored tracks.")

    add = sub.add_parser("add", help="Add a track from a name or prompt.")
    add.add_argument("text", type=str)

    remove = sub.add_parser("remove", help="Remove a track.")
    remove.add_argument("track_id", type=str)

    weight = sub.add_parser("weight", help="Set a track weight (0-2).")
    weight.add_argument("track_id", type=str)
    weight.add_argument("value", type=float)

    sub.add_parser("doctor", help="Show paths and audio backend availability.")
    return parser


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        store = TrackStore(args.store)

        match args.command:
            case "tracks":
                _print_tracks(TrackModel(store.load()))
            case "add":
                model = _load_model(store)
                track_id = model.add(args.text)
                _CONSOLE.print(f"Added {track_id}")
            case "remove":
                model = _load_model(store)
                removed = model.remove(args.track_id)
                _CONSOLE.print(f"Removed {removed.track_id} ({removed.name})")
            case "weight":
                model = _load_model(store)
                track = model.edit(args.track_id, weight=args.value)
                _CONSOLE.print(f"{track.track_id} weight = {track.weight:.2f}")
            case "doctor":
                for line in _doctor():
                    _CONSOLE.print(line)
            case _:
                parser.print_help()
                return 1
        return 0
    except PromptDJError as exc:
        _LOGGER.warning("promptdj CLI failed: %s", exc, exc_info=debug_enabled())
        log_exception("promptdj CLI", exc)
        _CONSOLE.print(f"[red]{escape(str(exc))}[/]")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
