import pytest

from coopsync.server import migrate


class _FakeCursor:
    def __init__(self, executed: list[str]) -> None:
        self._executed = executed

    def __enter__(self) -> "_FakeCursor":
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def execute(self, sql: str) -> None:
        self._executed.append(sql)


class _FakeConnection:
    def __init__(self) -> None:
        self.executed: list[str] = []
        self.committed = False

    def __enter__(self) -> "_FakeConnection":
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def cursor(self) -> _FakeCursor:
        return _FakeCursor(self.executed)

    def commit(self) -> None:
        self.committed = True


def test_migrate_requires_database_url(monkeypatch) -> None:
    monkeypatch.delenv("COOPSYNC_DATABASE_URL", raising=False)

    with pytest.raises(RuntimeError):
        migrate.main([])


def test_print_sql_needs_no_database(monkeypatch, capsys) -> None:
    monkeypatch.delenv("COOPSYNC_DATABASE_URL", raising=False)

    assert migrate.main(["--print-sql"]) == 0
    assert "CREATE TABLE IF NOT EXISTS game_rooms" in capsys.readouterr().out


def test_apply_schema_executes_and_commits() -> None:
    connection = _FakeConnection()
    urls: list[str] = []

    def connect(url: str) -> _FakeConnection:
        urls.append(url)
        return connection

    migrate.apply_schema("postgresql://rooms.test/coop", connect=connect)

    assert urls == ["postgresql://rooms.test/coop"]
    assert connection.executed == [migrate.read_schema()]
    assert connection.committed is True


def test_schema_enforces_state_size_ceiling() -> None:
    schema = migrate.read_schema()

    assert "CREATE TABLE IF NOT EXISTS game_rooms" in schema
    assert "octet_length(game_state) <= 20971520" in schema
