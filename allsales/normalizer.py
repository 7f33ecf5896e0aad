"""
Maps raw Steam store `appdetails` data onto the stored catalog record shape.

Never raises on odd upstream data: missing lists become empty lists, missing
nested objects become their zero value and unparseable ages become 0.
"""
import logging

from allsales.constants import (
    CLASSIFICATION_UNKNOWN,
    CLASSIFICATIONS,
    CURRENT_SCHEMA_VERSION,
    PRIMARY_CLASSIFICATIONS,
)
from allsales.utils import isoformat, now_utc

logger = logging.getLogger("main")

PRICE_COMPARE_FIELDS = ("currency", "initial", "final", "discount_percent")


def normalize_classification(raw_type):
    classification = str(raw_type or CLASSIFICATION_UNKNOWN).strip().lower()
    if classification not in CLASSIFICATIONS:
        return CLASSIFICATION_UNKNOWN
    return classification


def is_primary(classification):
    return classification in PRIMARY_CLASSIFICATIONS


def parse_minimum_age(value, external_id=None):
    """Steam sends required_age as int or numeric string; anything else is 0"""
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        logger.warning(f"Data quality: non-numeric required_age {value!r} for app {external_id}, using 0")
        return 0


def minor_to_decimal(value):
    """Cents (or other minor units) to a decimal amount"""
    if value is None or value == "":
        return None
    try:
        return round(int(value) / 100, 2)
    except (TypeError, ValueError):
        return None


def parse_discount_percent(value, external_id=None):
    if value is None or value == "":
        return 0
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError, OverflowError):
        logger.warning(f"Data quality: non-numeric discount_percent {value!r} for app {external_id}, using 0")
        return 0


def normalize_price(price_overview, checked_at=None, external_id=None):
    if not isinstance(price_overview, dict):
        return None
    return {
        "currency": price_overview.get("currency"),
        "initial": minor_to_decimal(price_overview.get("initial")),
        "final": minor_to_decimal(price_overview.get("final")),
        "discount_percent": parse_discount_percent(price_overview.get("discount_percent"), external_id),
        "initial_formatted": price_overview.get("initial_formatted") or "",
        "final_formatted": price_overview.get("final_formatted") or "",
        "last_checked": isoformat(checked_at or now_utc()),
    }


def price_changed(old, new):
    """True when currency, initial, final or discount differ. Two missing prices are equal."""
    if not old and not new:
        return False
    if not old or not new:
        return True
    return any(old.get(field) != new.get(field) for field in PRICE_COMPARE_FIELDS)


def normalize_string_list(values):
    if not isinstance(values, list):
        return []
    return [str(v) for v in values if v is not None and str(v).strip()]


def normalize_int_list(values):
    if not isinstance(values, list):
        return []
    result = []
    for v in values:
        try:
            result.append(int(v))
        except (TypeError, ValueError):
            continue
    return result


def normalize_genres(values):
    if not isinstance(values, list):
        return []
    genres = []
    for genre in values:
        # Store payloads use {"id": "1", "description": "Action"}; older data stored plain strings
        description = genre.get("description") if isinstance(genre, dict) else genre
        if description and str(description).strip():
            genres.append(str(description))
    return genres


def normalize_platforms(value):
    value = value if isinstance(value, dict) else {}
    return {key: bool(value.get(key, False)) for key in ("windows", "mac", "linux")}


def normalize_critic_score(value):
    value = value if isinstance(value, dict) else {}
    score = value.get("score")
    if score == "":
        score = None
    return {"score": score, "url": value.get("url") or None}


def normalize_community_rating(value):
    value = value if isinstance(value, dict) else {}
    try:
        total = int(value.get("total") or 0)
    except (TypeError, ValueError):
        total = 0
    return {"total": total}


def normalize(external_id, hint_name, raw):
    """
    Build the column values of a CatalogRecord from an appdetails `data` object.

    Args:
        external_id: Steam appid
        hint_name: name from the app list, used when the details carry none
        raw: the `data` object of a successful appdetails response

    Returns:
        dict keyed by CatalogRecord column names
    """
    raw = raw if isinstance(raw, dict) else {}
    classification = normalize_classification(raw.get("type"))
    is_free = bool(raw.get("is_free", False))

    price = None
    if not is_free:
        price = normalize_price(raw.get("price_overview"), external_id=external_id)

    return {
        "external_id": int(external_id),
        "name": raw.get("name") or hint_name or "",
        "classification": classification,
        "is_primary_classification": is_primary(classification),
        "is_free": is_free,
        "minimum_age": parse_minimum_age(raw.get("required_age"), external_id),
        "developers": normalize_string_list(raw.get("developers")),
        "publishers": normalize_string_list(raw.get("publishers")),
        "genres": normalize_genres(raw.get("genres")),
        "package_ids": normalize_int_list(raw.get("packages")),
        "dlc_ids": normalize_int_list(raw.get("dlc")),
        "platforms": normalize_platforms(raw.get("platforms")),
        "header_image_url": raw.get("header_image") or "",
        "website_url": raw.get("website") or "",
        "critic_score": normalize_critic_score(raw.get("metacritic")),
        "community_rating": normalize_community_rating(raw.get("recommendations")),
        "current_price": price,
        "discount_percent": price["discount_percent"] if price else None,
        "final_price": price["final"] if price else None,
        "schema_version": CURRENT_SCHEMA_VERSION,
    }
