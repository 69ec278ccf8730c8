import asyncio
import json

import pytest

from stallview import config, db
from stallview.auth import Identity
from stallview.catalog import Comic


class FakeStore:
    """In-memory favorite rows with switches for failure and slow responses."""

    def __init__(self):
        self.rows = set()
        self.calls = []
        self.fail = None
        self.gate = None
        self.gates = {}

    async def _request(self, op):
        self.calls.append(op)
        gate = self.gates.get(op, self.gate)
        if gate is not None:
            await gate.wait()
        if self.fail is not None:
            raise self.fail

    async def is_favorite(self, user_id, comic_id):
        await self._request("is_favorite")
        return (user_id, comic_id) in self.rows

    async def add_favorite(self, user_id, comic_id):
        await self._request("add_favorite")
        self.rows.add((user_id, comic_id))

    async def remove_favorite(self, user_id, comic_id):
        await self._request("remove_favorite")
        self.rows.discard((user_id, comic_id))


async def _wait_for_call(store, op, limit=100):
    for _ in range(limit):
        if op in store.calls:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"{op} was never requested")


@pytest.fixture
def wait_for_call():
    return _wait_for_call


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def identity():
    return Identity(7, "reader@example.com")


@pytest.fixture
def make_comic():
    def _make(frame_count=3, comic_id="c1", title="Flush Hour", image_url="https://cdn.example.com/c1.png"):
        return Comic(comic_id, title, image_url, frame_count, ("office",))

    return _make


@pytest.fixture
def data_dirs(tmp_path, monkeypatch):
    cfg = tmp_path / "config"
    monkeypatch.setattr(config, "CONFIG_DIR", cfg)
    monkeypatch.setattr(config, "ASSETS_DIR", cfg / "assets")
    monkeypatch.setattr(config, "VIEWER_JSON", cfg / "viewer.json")
    monkeypatch.setattr(config, "CATALOG_JSON", cfg / "catalog.json")
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "data" / "app.db")
    config.ensure_config()
    return cfg


@pytest.fixture
def database(data_dirs):
    db.init_db()
    return db.DB_PATH


CATALOG = [
    {
        "id": "flush-hour",
        "title": "Flush Hour",
        "image_url": "flush-hour.png",
        "frame_count": 3,
        "tags": ["office", "monday"],
        "created_at": "2024-01-02 10:00:00",
    },
    {
        "id": "paper-trail",
        "title": "Paper Trail",
        "image_url": "https://cdn.example.com/paper-trail.png",
        "frame_count": 1,
        "tags": ["supplies"],
        "created_at": "2024-03-04 10:00:00",
    },
]


@pytest.fixture
def catalog_file(data_dirs):
    config.CATALOG_JSON.write_text(json.dumps(CATALOG), encoding="utf-8")
    (config.ASSETS_DIR / "flush-hour.png").write_bytes(b"\x89PNG\r\n\x1a\n")
    return config.CATALOG_JSON
