import json
from pathlib import Path


def test_settings_defaults_load_when_missing(tmp_path: Path):
    from loom.settings import SettingsStore

    store = SettingsStore(home=tmp_path)
    data = store.load()
    assert isinstance(data, dict)
    assert data.get("schema_version") == 1
    assert data["hosts"] == []
    assert store.get_host() is None


def test_host_profile_roundtrip(tmp_path: Path):
    from loom.config import Config
    from loom.settings import SettingsStore

    store = SettingsStore(home=tmp_path)
    cfg = Config(host="web1:2222", user="deploy", password="secret", key_files=["~/.ssh/deploy"], provider="system")
    store.put_host("web1", cfg)
    store.put_host("db1", Config(host="db1"), make_default=False)

    loaded = store.get_host("web1")
    assert loaded.host == "web1:2222"
    assert loaded.user == "deploy"
    assert loaded.key_files == ["~/.ssh/deploy"]
    assert loaded.provider == "system"
    assert loaded.password is None

    # first profile saved becomes the default
    assert store.get_host().host == "web1:2222"
    assert [h["id"] for h in store.hosts()] == ["db1", "web1"]

    # secrets never reach the file
    assert "secret" not in store.path().read_text(encoding="utf-8")


def test_remove_host_moves_default(tmp_path: Path):
    from loom.config import Config
    from loom.settings import SettingsStore

    store = SettingsStore(home=tmp_path)
    store.put_host("a", Config(host="a"))
    store.put_host("b", Config(host="b"))
    assert store.remove_host("a") is True
    assert store.remove_host("a") is False
    assert store.load()["default_host_id"] == "b"


def test_settings_corrupt_json_is_backed_up(tmp_path: Path):
    from loom.settings import SettingsStore

    store = SettingsStore(home=tmp_path)
    p = store.path()
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text("{not valid json", encoding="utf-8")

    loaded = store.load()
    assert loaded.get("schema_version") == 1

    # A backup should exist
    baks = sorted(p.parent.glob(p.name + ".bak.*"))
    assert baks, "Expected a backup to be created for corrupt settings"


def test_unknown_keys_survive_save(tmp_path: Path):
    from loom.settings import SettingsStore

    store = SettingsStore(home=tmp_path)
    data = store.load()
    data["future_key"] = {"x": 1}
    store.save(data)
    assert json.loads(store.path().read_text(encoding="utf-8"))["future_key"] == {"x": 1}
