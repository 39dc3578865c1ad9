from promptdj.cli import build_parser, main
from promptdj.storage import TrackStore


def test_parser_parses_weight_command() -> None:
    args = build_parser().parse_args(["weight", "track-1", "0.75"])
    assert args.command == "weight"
    assert args.value == 0.75


def test_add_weight_remove_round_trip(tmp_path, capsys) -> None:
    store_path = tmp_path / "tracks.json"
    assert main(["--store", str(store_path), "add", "Strings"]) == 0
    assert "Added track-4" in capsys.readouterr().out

    assert main(["--store", str(store_path), "weight", "track-4", "1.25"]) == 0
    stored = {track.track_id: track for track in TrackStore(store_path).load()}
    assert stored["track-4"].weight == 1.25

    assert main(["--store", str(store_path), "remove", "track-0"]) == 0
    remaining = [track.track_id for track in TrackStore(store_path).load()]
    assert remaining == ["track-1", "track-2", "track-3", "track-4"]


def test_tracks_lists_without_writing(tmp_path, capsys) -> None:
    store_path = tmp_path / "tracks.json"
    assert main(["--store", str(store_path), "tracks"]) == 0
    out = capsys.readouterr().out
    assert "Drums" in out
    assert "3 prompt(s) would be sent." in out
    assert not store_path.exists()


def test_errors_return_nonzero(tmp_path, capsys, monkeypatch) -> None:
    monkeypatch.setenv("PROMPTDJ_LOG_DIR", str(tmp_path / "logs"))
    store_path = tmp_path / "tracks.json"
    assert main(["--store", str(store_path), "remove", "track-42"]) == 1
    assert main(["--store", str(store_path), "weight", "track-0", "5"]) == 1
    assert main(["--store", str(store_path), "add", "   "]) == 1
    assert "Unknown track" in capsys.readouterr().out


def test_doctor_reports_paths(tmp_path, capsys, monkeypatch) -> None:
    monkeypatch.setenv("PROMPTDJ_DATA_DIR", str(tmp_path))
    assert main(["doctor"]) == 0
    out = capsys.readouterr().out
    assert "Track store:" in out
    assert "sounddevice:" in out
