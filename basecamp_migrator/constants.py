"""Shared constants for the Basecamp to Fizzy migration tool."""

# HTTP status codes
HTTP_OK = 200
HTTP_CREATED = 201
HTTP_NO_CONTENT = 204
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_RATE_LIMIT = 429
HTTP_SERVER_ERROR_MIN = 500

# API defaults
BASECAMP_API_URL = "https://3.basecampapi.com"
BASECAMP_TOKEN_URL = "https://launchpad.37signals.com/authorization/token"
BASECAMP_USER_AGENT = "bc-fizzy-migrate/1.0.0"
FIZZY_API_URL = "https://app.fizzy.do"
DEFAULT_RATE_LIMIT = 5
REQUEST_TIMEOUT = 30

# Retry defaults
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0
DEFAULT_MAX_RETRY_DELAY = 30.0
DEFAULT_RETRY_AFTER = 5.0

# Migration defaults
DEFAULT_BATCH_SIZE = 10
MAX_TITLE_LENGTH = 255
TITLE_OVERFLOW_DIVIDER = "\n\n---\n\n"
SOURCE_SYSTEM = "basecamp"
DRY_RUN_ID_PREFIX = "dry-run-"

# Run state persistence
RUN_ID_PREFIX = "mig_"
RUN_STATE_SCHEMA_VERSION = 1
RUN_LOCK_STALE_SECONDS = 10 * 60
MIGRATIONS_DIRNAME = "migrations"
USER_MAPPINGS_FILENAME = "user_mappings.json"
