import pytest

from codearena.config import DEFAULT_CORS_ORIGINS, Settings, split_origins


@pytest.mark.parametrize(
    "raw, expected",
    [
        ('["https://a.example", "https://b.example"]', ["https://a.example", "https://b.example"]),
        ("https://a.example, https://b.example", ["https://a.example", "https://b.example"]),
        ("[https://a.example]", ["https://a.example"]),
        ("[]", []),
        ("", []),
        (None, []),
    ],
)
def test_split_origins(raw, expected):
    assert split_origins(raw) == expected


def test_cors_origins_fall_back_to_default():
    assert Settings(cors_origins_raw="").cors_origins == DEFAULT_CORS_ORIGINS


@pytest.mark.parametrize(
    "url, expected",
    [
        ("postgres://u:p@db/arena", "postgresql+asyncpg://u:p@db/arena"),
        ("postgresql://u:p@db/arena", "postgresql+asyncpg://u:p@db/arena"),
        ("postgresql+asyncpg://u:p@db/arena", "postgresql+asyncpg://u:p@db/arena"),
        ("sqlite:///./arena.db", "sqlite+aiosqlite:///./arena.db"),
    ],
)
def test_database_url_uses_async_driver(url, expected):
    assert Settings(database_url=url).database_url == expected


def test_grace_window_is_read_from_its_env_name(monkeypatch):
    monkeypatch.setenv("CODING_PHASE_AUTOSUBMIT_GRACE_MS", "1500")
    assert Settings().coding_phase_autosubmit_grace_ms == 1500
