import logging

APP_NAME = "dynamostream"

LOGGER = logging.getLogger(APP_NAME)

BATCH_GET_LIMIT = 100
BATCH_WRITE_LIMIT = 25
BATCH_MAX_PAYLOAD_BYTES = 16 * 1024 * 1024

DEFAULT_MAX_CONCURRENCY = 4

BACKOFF_BASE_SECONDS = 0.05
BACKOFF_CAP_SECONDS = 1.5
BACKOFF_MAX_RETRIES = 8
# largest power of two a backoff delay is scaled by
MAX_BACKOFF_EXPONENT = 64

TRANSIENT_ERROR_CODES = frozenset(
    {
        "ProvisionedThroughputExceededException",
        "ThrottlingException",
        "RequestLimitExceeded",
        "InternalServerError",
        "ServiceUnavailable",
        "LimitExceededException",
    }
)
