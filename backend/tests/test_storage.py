import pytest

from app.services.storage import MemorySnapshotBackend, SqlSnapshotBackend, build_backend
from app.settings import Settings


@pytest.fixture(params=["memory", "sql"])
def backend(request):
    if request.param == "memory":
        return MemorySnapshotBackend()
    return SqlSnapshotBackend.from_url("sqlite://")


def test_get_set_delete(backend):
    assert backend.get("k") is None
    backend.set("k", '{"a": 1}')
    assert backend.get("k") == '{"a": 1}'
    backend.set("k", '{"a": 2}')
    assert backend.get("k") == '{"a": 2}'
    backend.delete("k")
    assert backend.get("k") is None
    backend.delete("k")


def test_build_backend_from_settings():
    settings = Settings(STORAGE_BACKEND="memory")
    assert isinstance(build_backend(settings), MemorySnapshotBackend)


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("ORIGIN", "https://a.example, https://b.example,")
    monkeypatch.setenv("EDIT_LATEST_ROUND_ONLY", "false")
    settings = Settings()
    assert settings.allowed_origins() == ["http://localhost:5173", "https://a.example", "https://b.example"]
    assert settings.edit_latest_round_only is False


def test_database_url_is_masked():
    settings = Settings(DATABASE_URL="postgresql://user:secret@db:5432/rummy")
    assert settings.masked_database_url() == "postgresql://***@db:5432/rummy"
