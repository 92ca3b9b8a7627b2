import pytest

from discovery.storage.database import Database


@pytest.fixture()
def database(tmp_path):
    db = Database(tmp_path / "discovery.db")
    db.initialise()
    return db
