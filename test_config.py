import pytest

import config


def test_defaults(monkeypatch):
    for name in (
        "DATABASE_URL",
        "DEFAULT_K_FACTOR",
        "CANCELLATION_WINDOW_DAYS",
        "DEFAULT_GROUP_SIZE",
        "DEFAULT_ADVANCING_PER_GROUP",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = config.load_config()

    assert settings["DATABASE_URL"] is None
    assert settings["DEFAULT_K_FACTOR"] == 32
    assert settings["CANCELLATION_WINDOW_DAYS"] == 5
    assert settings["DEFAULT_GROUP_SIZE"] == 4
    assert settings["DEFAULT_ADVANCING_PER_GROUP"] == 2


def test_postgres_scheme_is_rewritten(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgres://user:pw@host/db")
    assert config.database_url() == "postgresql://user:pw@host/db"


@pytest.mark.parametrize(
    "name, value",
    [("DEFAULT_K_FACTOR", "abc"), ("DEFAULT_K_FACTOR", "0"), ("DEFAULT_GROUP_SIZE", "1")],
)
def test_bad_values_fail_fast(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(RuntimeError):
        config.load_config()


def test_only_engine_settings_are_loaded(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    assert set(config.load_config()) == {
        "DATABASE_URL",
        "SQLITE_PATH",
        "DEFAULT_K_FACTOR",
        "CANCELLATION_WINDOW_DAYS",
        "DEFAULT_GROUP_SIZE",
        "DEFAULT_ADVANCING_PER_GROUP",
    }
