"""
Pytest fixtures and configuration for AllSales tests
"""
import copy
import fnmatch
import threading

import pytest
from unittest.mock import MagicMock

from allsales import normalizer, redis_cache
from allsales.app import create_app
from allsales.constants import DEFAULT_SETTINGS
from allsales.db import db
from allsales.exceptions import UpstreamError
from allsales.normalizer import normalize
from allsales.repositories.catalog_repository import CatalogRepository
from allsales.services import get_services
from allsales.steam_client import CatalogItem, DetailResult


class FakeRedis:
    """In-memory stand-in for the redis client used by redis_cache"""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    def ping(self):
        return True

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                self.ttls.pop(key, None)
                removed += 1
        return removed

    def scan_iter(self, match="*"):
        return [key for key in list(self.store) if fnmatch.fnmatch(key, match)]


class FakeSteamClient:
    """Scriptable replacement for SteamClient"""

    def __init__(self):
        self.catalog = []
        self.details = {}
        self.catalog_error = None
        self.catalog_calls = 0
        self.detail_calls = []
        self._lock = threading.Lock()

    def set_catalog(self, *pairs):
        self.catalog = [CatalogItem(external_id=external_id, display_name=name) for external_id, name in pairs]

    def set_detail(self, external_id, data):
        self.details[external_id] = DetailResult.found(data)

    def set_not_found(self, external_id, reason="No data available"):
        self.details[external_id] = DetailResult.not_found(reason)

    def set_failed(self, external_id):
        self.details[external_id] = DetailResult.failed(UpstreamError("Service unavailable", http_status=503))

    def fetch_catalog(self):
        self.catalog_calls += 1
        if self.catalog_error:
            raise self.catalog_error
        return list(self.catalog)

    def fetch_detail(self, external_id, hint_name=None):
        with self._lock:
            self.detail_calls.append(external_id)
        return self.details.get(external_id, DetailResult.not_found())

    def calls_for(self, external_id):
        return self.detail_calls.count(external_id)

    def throttle_state(self):
        return {"request_delay_seconds": 1.0, "rate_limit_streak": 0, "cooldown_pending": False}

    def clear_cache(self):
        return 0

    def close(self):
        pass


def make_payload(
    name,
    app_type="game",
    initial=None,
    final=None,
    discount=0,
    currency="USD",
    is_free=False,
    genres=(),
    publishers=(),
    developers=(),
    **extra,
):
    """appdetails `data` object in Steam's shape; prices in cents"""
    payload = {
        "name": name,
        "type": app_type,
        "is_free": is_free,
        "genres": [{"id": str(i), "description": genre} for i, genre in enumerate(genres)],
        "publishers": list(publishers),
        "developers": list(developers),
    }
    if final is not None:
        payload["price_overview"] = {
            "currency": currency,
            "initial": initial if initial is not None else final,
            "final": final,
            "discount_percent": discount,
            "initial_formatted": "",
            "final_formatted": f"${final / 100:.2f}",
        }
    payload.update(extra)
    return payload


@pytest.fixture(autouse=True)
def no_redis(monkeypatch):
    """Tests run without a cache unless they ask for fake_redis"""
    monkeypatch.setattr(redis_cache, "redis_client", None)
    redis_cache.reset_cache_stats()


@pytest.fixture
def fake_redis(monkeypatch):
    client = FakeRedis()
    monkeypatch.setattr(redis_cache, "redis_client", client)
    return client


@pytest.fixture
def mock_logger(monkeypatch):
    """Replaces the normalizer logger so data-quality warnings can be asserted"""
    logger = MagicMock()
    monkeypatch.setattr(normalizer, "logger", logger)
    return logger


@pytest.fixture
def test_settings(tmp_path):
    settings = copy.deepcopy(DEFAULT_SETTINGS)
    settings["database"]["url"] = f"sqlite:///{tmp_path / 'allsales-test.db'}"
    settings["update"]["scheduler_enabled"] = False
    settings["update"]["concurrency_limit"] = 3
    settings["update"]["batch_size"] = 2
    settings["steam"]["request_delay_ms"] = 0
    return settings


@pytest.fixture
def steam():
    return FakeSteamClient()


@pytest.fixture
def app_factory(test_settings):
    created = []

    def factory(client):
        app = create_app({"TESTING": True, "CACHE_ENABLED": False}, settings=test_settings, client=client)
        created.append(app)
        return app

    yield factory

    for app in created:
        with app.app_context():
            db.session.remove()
            db.engine.dispose()


@pytest.fixture
def app(app_factory, steam):
    return app_factory(steam)


@pytest.fixture
def app_context(app):
    with app.app_context():
        yield app


@pytest.fixture
def services(app):
    return get_services(app)


@pytest.fixture
def api_client(app):
    return app.test_client()


@pytest.fixture
def payload():
    return make_payload


@pytest.fixture
def store_record(app_context):
    """Insert a record the way a sync would"""

    def store(external_id, data):
        return CatalogRepository.create(**normalize(external_id, data.get("name"), data))

    return store
