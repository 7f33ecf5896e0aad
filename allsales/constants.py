import os

DATA_DIR = os.environ.get("ALLSALES_DATA_DIR", os.path.join(os.getcwd(), "data"))
DB_FILE = os.path.join(DATA_DIR, "allsales.db")
CONFIG_FILE = os.environ.get("ALLSALES_CONFIG", os.path.join(DATA_DIR, "settings.yaml"))

ALLSALES_DB = "sqlite:///" + DB_FILE

BUILD_VERSION = "1.0.0"
USER_AGENT = f"AllSales/{BUILD_VERSION}"

# Upstream endpoints
STEAM_APP_LIST_URL = "https://api.steampowered.com/ISteamApps/GetAppList/v2/"
STEAM_APP_DETAILS_URL = "https://store.steampowered.com/api/appdetails"
STEAM_STORE_COUNTRY = "us"

# Cache keys
CATALOG_CACHE_KEY = "steam:catalog"
DETAIL_CACHE_PREFIX = "steam:detail"

# Classifications reported by the store in the `type` field
CLASSIFICATION_GAME = "game"
CLASSIFICATION_GAMES = "games"  # legacy alias of "game" found in older stored data
CLASSIFICATION_DLC = "dlc"
CLASSIFICATION_PACKAGE = "package"
CLASSIFICATION_UNKNOWN = "unknown"

CLASSIFICATIONS = [
    CLASSIFICATION_GAME,
    CLASSIFICATION_GAMES,
    CLASSIFICATION_DLC,
    "demo",
    "mod",
    "video",
    "music",
    "hardware",
    "series",
    "tool",
    "config",
    "application",
    "advertising",
    CLASSIFICATION_PACKAGE,
    "bundle",
    CLASSIFICATION_UNKNOWN,
]

PRIMARY_CLASSIFICATIONS = [
    CLASSIFICATION_GAME,
    CLASSIFICATION_GAMES,
    CLASSIFICATION_DLC,
    CLASSIFICATION_PACKAGE,
]

BLACKLIST_DEFAULT_REASON = "No data available"
BLACKLIST_MALFORMED_REASON = "Malformed payload"

# Throttle behaviour
RATE_LIMIT_DECAY_SECONDS = 60
RATE_LIMIT_COOLDOWN_THRESHOLD = 5

RUN_KIND_SYNC_NEW = "sync_new"
RUN_KIND_UPDATE_ALL = "update_all"

# Highest page accepted from a request; keeps OFFSET inside a 64-bit integer
MAX_PAGE_NUMBER = 1_000_000_000

DEFAULT_SETTINGS = {
    "steam": {
        "api_key": "",
        "request_delay_ms": 1000,
        "max_delay_ms": 30000,
        "max_retries": 3,
        "retry_delay_ms": 2000,
        "request_timeout": 10,
    },
    "cache": {
        "redis_url": "redis://localhost:6379/0",
        "catalog_ttl": 3600,
        "detail_ttl": 1800,
    },
    "update": {
        "cron_schedule": "0 */2 * * *",
        "run_on_startup": True,
        "scheduler_enabled": True,
        "concurrency_limit": 5,
        "batch_size": 100,
    },
    "pagination": {
        "default_page": 1,
        "default_page_size": 25,
        "max_page_size": 50,
    },
    "database": {
        "url": ALLSALES_DB,
        "pool_size": 10,
        "max_overflow": 5,
    },
}

# Environment variable -> (section, key, type)
ENV_OVERRIDES = {
    "STEAM_API_KEY": ("steam", "api_key", str),
    "STEAM_API_DELAY": ("steam", "request_delay_ms", int),
    "STEAM_API_MAX_DELAY": ("steam", "max_delay_ms", int),
    "STEAM_API_MAX_RETRIES": ("steam", "max_retries", int),
    "STEAM_API_RETRY_DELAY": ("steam", "retry_delay_ms", int),
    "REQUEST_TIMEOUT": ("steam", "request_timeout", float),
    "REDIS_URL": ("cache", "redis_url", str),
    "CATALOG_CACHE_TTL": ("cache", "catalog_ttl", int),
    "DETAIL_CACHE_TTL": ("cache", "detail_ttl", int),
    "UPDATE_CRON_SCHEDULE": ("update", "cron_schedule", str),
    "RUN_ON_STARTUP": ("update", "run_on_startup", bool),
    "SCHEDULER_ENABLED": ("update", "scheduler_enabled", bool),
    "CONCURRENCY_LIMIT": ("update", "concurrency_limit", int),
    "UPDATE_BATCH_SIZE": ("update", "batch_size", int),
    "DEFAULT_PAGE": ("pagination", "default_page", int),
    "DEFAULT_PAGE_SIZE": ("pagination", "default_page_size", int),
    "MAX_PAGE_SIZE": ("pagination", "max_page_size", int),
    "DATABASE_URL": ("database", "url", str),
    "DB_POOL_SIZE": ("database", "pool_size", int),
    "DB_MAX_OVERFLOW": ("database", "max_overflow", int),
}

# Shape version written on every stored catalog record, see legacy.py
CURRENT_SCHEMA_VERSION = 3
