MONGODB_URI_ENV = "MONGODB_URI"
MONGODB_DB_NAME_ENV = "MONGODB_DB_NAME"

INVITE_TTL_HOURS_ENV = "INVITE_TTL_HOURS"
SESSION_TTL_SECONDS_ENV = "SESSION_TTL_SECONDS"
CLAIMS_WRITE_ATTEMPTS_ENV = "CLAIMS_WRITE_ATTEMPTS"

API_REQUEST_TIMEOUT_SECONDS_ENV = "API_REQUEST_TIMEOUT_SECONDS"
API_RATE_LIMIT_MAX_ENV = "API_RATE_LIMIT_MAX"
API_RATE_LIMIT_WINDOW_SECONDS_ENV = "API_RATE_LIMIT_WINDOW_SECONDS"

FEATURE_FLAGS_ENV = "FEATURE_FLAGS"
TEST_MODE_ENV = "TEST_MODE"

DEFAULT_DB_NAME = "PeakLog"
DEFAULT_INVITE_TTL_HOURS = 168
DEFAULT_SESSION_TTL_SECONDS = 3600
DEFAULT_CLAIMS_WRITE_ATTEMPTS = 3
DEFAULT_API_REQUEST_TIMEOUT_SECONDS = 15
DEFAULT_API_RATE_LIMIT_MAX = 300
DEFAULT_API_RATE_LIMIT_WINDOW_SECONDS = 60
