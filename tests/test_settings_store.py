from pathlib import Path


def test_settings_defaults_load_when_missing(tmp_path: Path):
    from onnx_qdq_harness.settings import SettingsStore

    store = SettingsStore(home=tmp_path)
    data = store.load()
    assert isinstance(data, dict)
    assert data.get("schema_version") == 1
    assert data.get("cache_mode") == "provider_options"
    assert data.get("backend_path") is None


def test_settings_roundtrip_save_load(tmp_path: Path):
    from onnx_qdq_harness.settings import SettingsStore

    store = SettingsStore(home=tmp_path)
    store.save(
        {
            "schema_version": 1,
            "backend_path": "/opt/qnn/libQnnHtp.so",
            "artifacts_dir": "/tmp/qdq",
            "seed": 3,
            "custom_key": {"kept": True},
        }
    )

    loaded = store.load()
    assert loaded["backend_path"] == "/opt/qnn/libQnnHtp.so"
    assert loaded["seed"] == 3
    assert loaded["custom_key"] == {"kept": True}
    assert loaded["last_saved_at"]
    assert store.get("backend_path") == "/opt/qnn/libQnnHtp.so"


def test_settings_get_falls_back_on_none(tmp_path: Path):
    from onnx_qdq_harness.settings import SettingsStore

    store = SettingsStore(home=tmp_path)
    assert store.get("artifacts_dir", "fallback") == "fallback"


def test_settings_corrupt_json_is_backed_up(tmp_path: Path):
    from onnx_qdq_harness.settings import SettingsStore

    store = SettingsStore(home=tmp_path)
    p = store.path()
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text("{not valid json", encoding="utf-8")

    loaded = store.load()
    assert loaded.get("schema_version") == 1

    # A backup should exist
    baks = sorted(p.parent.glob(p.name + ".bak.*"))
    assert baks, "Expected a backup to be created for corrupt settings"
