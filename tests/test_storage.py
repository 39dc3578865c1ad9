import json
import random

from promptdj.storage import TrackStore, default_store_path
from promptdj.tracks import Track, TrackModel


def test_default_path_follows_data_dir(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("PROMPTDJ_DATA_DIR", str(tmp_path))
    assert default_store_path() == tmp_path / "tracks.json"
    assert TrackStore().path == tmp_path / "tracks.json"


def test_missing_file_loads_defaults(tmp_path) -> None:
    tracks = TrackStore(tmp_path / "tracks.json").load(rng=random.Random(0))
    assert [track.name for track in tracks] == ["Drums", "Bassline", "Harmony", "Melody"]


def test_save_then_load_preserves_order_and_fields(tmp_path) -> None:
    store = TrackStore(tmp_path / "nested" / "tracks.json")
    tracks = [
        Track(track_id="track-3", name="Keys", text="rhodes chords", weight=1.5, color="#06D6A0"),
        Track(track_id="track-1", name="Drums", text="breakbeat", weight=0.0, color="#118AB2"),
    ]
    path = store.save(tracks)
    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw[0] == {
        "trackId": "track-3",
        "name": "Keys",
        "text": "rhodes chords",
        "weight": 1.5,
        "color": "#06D6A0",
    }
    assert store.load() == tracks
    assert not list(path.parent.glob(".tracks-*"))


def test_loaded_tracks_seed_the_id_counter(tmp_path) -> None:
    store = TrackStore(tmp_path / "tracks.json")
    store.save([Track(track_id="track-6", name="Keys", text="rhodes", weight=1.0, color="#06D6A0")])
    model = TrackModel(store.load())
    assert model.add("Bass") == "track-7"


def test_corrupt_file_falls_back_to_defaults(tmp_path) -> None:
    path = tmp_path / "tracks.json"
    path.write_text("{not json", encoding="utf-8")
    assert len(TrackStore(path).load()) == 4

    path.write_text(json.dumps([{"trackId": "track-0", "name": "A", "text": "a", "weight": 9}]))
    assert [track.name for track in TrackStore(path).load()][0] == "Drums"
