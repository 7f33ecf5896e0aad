"""
Tests for upgrading catalog documents stored in older shapes
"""
from allsales.constants import CURRENT_SCHEMA_VERSION
from allsales.db import db
from allsales.legacy import import_legacy_documents, migrate_stored_records, upgrade_document
from allsales.models import CatalogRecord
from allsales.repositories.catalog_repository import CatalogRepository


def mongo_document(**overrides):
    doc = {
        "_id": {"$oid": "64f1c0ffee"},
        "appid": 620,
        "name": "Portal 2",
        "type": "game",
        "isMainType": True,
        "is_free": False,
        "required_age": "0",
        "developers": ["Valve"],
        "publishers": ["Valve"],
        "genres": ["Action", "Adventure"],
        "packages": [7877],
        "platforms": {"windows": True, "mac": True, "linux": True},
        "price": {
            "currency": "USD",
            "initial": 9.99,
            "final": 1.99,
            "discount_percent": 80,
            "lastChecked": {"$date": "2024-03-01T10:00:00Z"},
        },
        "priceHistory": [
            {"currency": "USD", "initial": 9.99, "final": 9.99, "discount_percent": 0,
             "lastChecked": "2024-02-01T10:00:00Z"},
        ],
        "lastUpdated": {"$date": "2024-03-01T10:00:00Z"},
        "__v": 0,
    }
    doc.update(overrides)
    return doc


class TestUpgradeDocument:
    """upgrade_document()"""

    def test_price_overview_document(self):
        doc = {
            "appid": 10,
            "name": "Counter-Strike",
            "type": "game",
            "price_overview": {"currency": "EUR", "initial": 819, "final": 819, "discount_percent": 0},
        }

        upgraded = upgrade_document(doc)

        assert upgraded["schema_version"] == CURRENT_SCHEMA_VERSION
        assert upgraded["external_id"] == 10
        assert upgraded["current_price"]["final"] == 8.19
        assert upgraded["current_price"]["currency"] == "EUR"
        assert upgraded["final_price"] == 8.19
        assert "price_overview" not in upgraded

    def test_document_fields_are_renamed(self):
        upgraded = upgrade_document(mongo_document())

        assert upgraded["external_id"] == 620
        assert upgraded["classification"] == "game"
        assert upgraded["is_primary_classification"] is True
        assert upgraded["package_ids"] == [7877]
        assert upgraded["minimum_age"] == 0
        assert upgraded["current_price"]["last_checked"] == "2024-03-01T10:00:00+00:00"
        assert "lastChecked" not in upgraded["current_price"]
        assert upgraded["price_history"][0]["final"] == 9.99
        assert upgraded["discount_percent"] == 80
        assert "_id" not in upgraded and "__v" not in upgraded

    def test_missing_nested_values_are_filled(self):
        upgraded = upgrade_document({"external_id": 3, "name": "Bare", "classification": "Games", "schema_version": 2})

        assert upgraded["classification"] == "games"
        assert upgraded["is_primary_classification"] is True
        assert upgraded["critic_score"] == {"score": None, "url": None}
        assert upgraded["community_rating"] == {"total": 0}
        assert upgraded["platforms"] == {"windows": False, "mac": False, "linux": False}
        assert upgraded["dlc_ids"] == []
        assert upgraded["current_price"] is None

    def test_current_document_is_left_alone(self):
        doc = {"external_id": 3, "name": "Current", "classification": "spaceship", "schema_version": CURRENT_SCHEMA_VERSION}

        assert upgrade_document(doc) == doc


class TestImport:
    """import_legacy_documents()"""

    def test_imports_with_history(self, app_context):
        summary = import_legacy_documents([mongo_document()])

        assert summary == {"imported": 1, "skipped": 0, "invalid": 0}
        record = CatalogRecord.query.filter_by(external_id=620).one()
        assert record.current_price["final"] == 1.99
        assert [snapshot.final for snapshot in record.price_history] == [9.99]
        assert record.schema_version == CURRENT_SCHEMA_VERSION

    def test_skips_stored_blacklisted_and_invalid(self, app_context, services):
        services.blacklist.record(30, "Ghost")
        import_legacy_documents([mongo_document()])

        summary = import_legacy_documents([
            mongo_document(),
            mongo_document(appid=30, name="Ghost"),
            mongo_document(appid=None),
            mongo_document(appid=31, name=""),
            "not a document",
        ])

        assert summary == {"imported": 0, "skipped": 2, "invalid": 3}


class TestMigrateStored:
    """migrate_stored_records()"""

    def test_upgrades_old_rows_once(self, app_context):
        CatalogRepository.create(
            external_id=77,
            name="Old Row",
            classification="Game",
            critic_score=None,
            community_rating=None,
            schema_version=2,
        )

        assert migrate_stored_records() == 1
        assert migrate_stored_records() == 0

        db.session.expire_all()
        record = CatalogRecord.query.filter_by(external_id=77).one()
        assert record.classification == "game"
        assert record.is_primary_classification is True
        assert record.critic_score == {"score": None, "url": None}
        assert record.schema_version == CURRENT_SCHEMA_VERSION
