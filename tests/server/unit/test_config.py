from coopsync.server.config import load_settings
from coopsync.sync.config import MAX_STATE_BYTES


def test_load_settings_reads_expected_env(monkeypatch) -> None:
    monkeypatch.setenv("COOPSYNC_DATABASE_URL", "postgresql://local")
    monkeypatch.setenv("COOPSYNC_HOST", "0.0.0.0")
    monkeypatch.setenv("COOPSYNC_PORT", "9000")
    monkeypatch.setenv("COOPSYNC_MAX_STATE_BYTES", "1024")

    settings = load_settings()

    assert settings.database_url == "postgresql://local"
    assert settings.host == "0.0.0.0"
    assert settings.port == 9000
    assert settings.max_state_bytes == 1024


def test_load_settings_applies_defaults(monkeypatch) -> None:
    monkeypatch.delenv("COOPSYNC_DATABASE_URL", raising=False)
    monkeypatch.delenv("COOPSYNC_HOST", raising=False)
    monkeypatch.delenv("COOPSYNC_PORT", raising=False)
    monkeypatch.delenv("COOPSYNC_MAX_STATE_BYTES", raising=False)

    settings = load_settings()

    assert settings.database_url is None
    assert settings.host == "127.0.0.1"
    assert settings.port == 8000
    assert settings.max_state_bytes == MAX_STATE_BYTES
