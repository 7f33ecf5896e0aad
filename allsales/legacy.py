"""
Versioned upgrades for catalog documents stored in older shapes.

Shapes:
    0  raw store fields, price kept as Steam's `price_overview` in cents
    1  document fields (appid, type, isMainType, ...) with a decimal `price`
       and a `priceHistory` list
    2  record field names (external_id, classification, current_price, ...)
    3  record field names with every nested value present

upgrade_document() runs the missing steps once, in order. Dumps exported from
the previous document store are loaded with import_legacy_documents(), rows
written by older releases are upgraded in place by migrate_stored_records().
"""
import logging

from sqlalchemy.exc import IntegrityError

from allsales.constants import CURRENT_SCHEMA_VERSION
from allsales.db import db
from allsales.models.catalogrecord import CatalogRecord
from allsales.normalizer import (
    is_primary,
    minor_to_decimal,
    normalize_classification,
    normalize_community_rating,
    normalize_critic_score,
    normalize_genres,
    normalize_int_list,
    normalize_platforms,
    normalize_string_list,
    parse_minimum_age,
)
from allsales.repositories.blacklist_repository import BlacklistRepository
from allsales.repositories.catalog_repository import CatalogRepository
from allsales.utils import ensure_utc, isoformat, now_utc

logger = logging.getLogger("main")

# Document field -> record field
RENAMED_FIELDS = {
    "appid": "external_id",
    "type": "classification",
    "isMainType": "is_primary_classification",
    "required_age": "minimum_age",
    "packages": "package_ids",
    "dlc": "dlc_ids",
    "header_image": "header_image_url",
    "website": "website_url",
    "metacritic": "critic_score",
    "recommendations": "community_rating",
    "price": "current_price",
    "priceHistory": "price_history",
    "lastUpdated": "last_updated",
    "createdAt": "created_at",
}

# Fields a stored row keeps across migrate_stored_records()
PRESERVED_COLUMNS = ("id", "external_id", "created_at", "last_updated")


def _unwrap_date(value):
    # Mongo extended JSON exports dates as {"$date": "..."}
    if isinstance(value, dict) and "$date" in value:
        value = value["$date"]
    return ensure_utc(value)


def detect_version(doc):
    if isinstance(doc.get("schema_version"), int):
        return doc["schema_version"]
    if "external_id" in doc:
        return 2
    if "price_overview" in doc and "price" not in doc:
        return 0
    return 1


def _upgrade_0_to_1(doc):
    doc = dict(doc)
    price_overview = doc.pop("price_overview", None)
    if isinstance(price_overview, dict) and not doc.get("is_free"):
        doc["price"] = {
            "currency": price_overview.get("currency"),
            "initial": minor_to_decimal(price_overview.get("initial")),
            "final": minor_to_decimal(price_overview.get("final")),
            "discount_percent": int(price_overview.get("discount_percent") or 0),
            "initial_formatted": price_overview.get("initial_formatted") or "",
            "final_formatted": price_overview.get("final_formatted") or "",
            "lastChecked": doc.get("lastUpdated"),
        }
    else:
        doc["price"] = None
    doc.setdefault("priceHistory", [])
    return doc


def _upgrade_price_keys(price):
    if not isinstance(price, dict):
        return None
    price = dict(price)
    last_checked = price.pop("lastChecked", None)
    price["last_checked"] = isoformat(_unwrap_date(price.get("last_checked") or last_checked))
    return price


def _upgrade_1_to_2(doc):
    upgraded = {}
    for key, value in doc.items():
        if key in ("_id", "__v", "updatedAt"):
            continue
        upgraded[RENAMED_FIELDS.get(key, key)] = value

    upgraded["current_price"] = _upgrade_price_keys(upgraded.get("current_price"))
    upgraded["price_history"] = [
        price for price in (_upgrade_price_keys(p) for p in upgraded.get("price_history") or []) if price
    ]
    return upgraded


def _upgrade_2_to_3(doc):
    doc = dict(doc)
    external_id = doc.get("external_id")

    classification = normalize_classification(doc.get("classification"))
    doc["classification"] = classification
    doc["is_primary_classification"] = is_primary(classification)
    doc["is_free"] = bool(doc.get("is_free", False))
    doc["minimum_age"] = parse_minimum_age(doc.get("minimum_age"), external_id)

    doc["developers"] = normalize_string_list(doc.get("developers"))
    doc["publishers"] = normalize_string_list(doc.get("publishers"))
    doc["genres"] = normalize_genres(doc.get("genres"))
    doc["package_ids"] = normalize_int_list(doc.get("package_ids"))
    doc["dlc_ids"] = normalize_int_list(doc.get("dlc_ids"))
    doc["platforms"] = normalize_platforms(doc.get("platforms"))
    doc["critic_score"] = normalize_critic_score(doc.get("critic_score"))
    doc["community_rating"] = normalize_community_rating(doc.get("community_rating"))
    doc["header_image_url"] = doc.get("header_image_url") or ""
    doc["website_url"] = doc.get("website_url") or ""

    price = doc.get("current_price") if not doc["is_free"] else None
    doc["current_price"] = price or None
    doc["discount_percent"] = int(price.get("discount_percent") or 0) if price else None
    doc["final_price"] = price.get("final") if price else None
    doc.setdefault("price_history", [])
    return doc


UPGRADE_STEPS = {
    0: _upgrade_0_to_1,
    1: _upgrade_1_to_2,
    2: _upgrade_2_to_3,
}


def upgrade_document(doc):
    """
    Bring a catalog document of any known shape to CURRENT_SCHEMA_VERSION.
    Documents already current are returned as a copy.
    """
    version = detect_version(doc)
    doc = dict(doc)
    while version < CURRENT_SCHEMA_VERSION:
        doc = UPGRADE_STEPS[version](doc)
        version += 1
    doc["schema_version"] = CURRENT_SCHEMA_VERSION
    return doc


def _record_fields(doc):
    columns = {column.name for column in CatalogRecord.__table__.columns}
    fields = {key: value for key, value in doc.items() if key in columns and key != "id"}
    for key in ("created_at", "last_updated"):
        fields[key] = _unwrap_date(fields.get(key)) or now_utc()
    return fields


def import_legacy_documents(docs):
    """
    Insert exported documents as catalog records.

    Documents whose appid is already stored or blacklisted are skipped; documents
    without a usable appid or name are counted as invalid.

    Returns:
        {"imported", "skipped", "invalid"}
    """
    stored_ids = CatalogRepository.distinct_external_ids() | BlacklistRepository.distinct_external_ids()
    summary = {"imported": 0, "skipped": 0, "invalid": 0}

    for raw in docs:
        if not isinstance(raw, dict):
            summary["invalid"] += 1
            continue
        doc = upgrade_document(raw)
        try:
            external_id = int(doc.get("external_id"))
        except (TypeError, ValueError):
            logger.warning(f"Skipping legacy document without a usable appid: {raw.get('_id', raw.get('appid'))}")
            summary["invalid"] += 1
            continue
        if not doc.get("name"):
            summary["invalid"] += 1
            continue
        if external_id in stored_ids:
            summary["skipped"] += 1
            continue

        doc["external_id"] = external_id
        try:
            CatalogRepository.create(price_history=doc.get("price_history"), **_record_fields(doc))
        except IntegrityError:
            summary["skipped"] += 1
            continue
        stored_ids.add(external_id)
        summary["imported"] += 1

    logger.info(
        f"Legacy import finished: {summary['imported']} imported, "
        f"{summary['skipped']} skipped, {summary['invalid']} invalid"
    )
    return summary


def migrate_stored_records(batch_size=500):
    """Upgrade rows written with an older schema_version. Returns the number upgraded."""
    migrated = 0
    after_id = 0
    while True:
        records = CatalogRepository.get_outdated(CURRENT_SCHEMA_VERSION, limit=batch_size, after_id=after_id)
        if not records:
            break
        for record in records:
            doc = {column.name: getattr(record, column.name) for column in record.__table__.columns}
            upgraded = upgrade_document(doc)
            for key, value in upgraded.items():
                if key in PRESERVED_COLUMNS or key == "price_history" or not hasattr(record, key):
                    continue
                setattr(record, key, value)
            after_id = record.external_id
        db.session.commit()
        migrated += len(records)
        logger.info(f"Migrated {migrated} stored records to schema version {CURRENT_SCHEMA_VERSION}")
    return migrated
