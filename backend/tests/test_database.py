from sqlalchemy import text

from upgrades import database


def test_store_disabled_without_url(monkeypatch):
    monkeypatch.setattr(database, "engine", None)
    assert database.init_store("") is False
    assert next(database.get_db()) is None


def test_init_store_creates_tables(tmp_path, monkeypatch):
    monkeypatch.setattr(database, "engine", None)
    url = f"sqlite:///{tmp_path / 'store.db'}"
    assert database.init_store(url) is True
    with database.get_db_session() as db:
        assert db.execute(text("select count(*) from checkout_sessions")).scalar() == 0
    database.engine.dispose()
