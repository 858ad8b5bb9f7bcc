import random
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from dynamostream.constants import (
    BACKOFF_BASE_SECONDS,
    BACKOFF_CAP_SECONDS,
    BACKOFF_MAX_RETRIES,
    BATCH_GET_LIMIT,
    BATCH_MAX_PAYLOAD_BYTES,
    BATCH_WRITE_LIMIT,
    DEFAULT_MAX_CONCURRENCY,
    MAX_BACKOFF_EXPONENT,
)
from dynamostream.types import BatchKind


class BackoffPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    base: float = Field(default=BACKOFF_BASE_SECONDS, gt=0)
    cap: float = Field(default=BACKOFF_CAP_SECONDS, gt=0)
    max_retries: int = Field(default=BACKOFF_MAX_RETRIES, ge=0)
    jitter: bool = False

    @model_validator(mode="after")
    def check_cap(self) -> Self:
        if self.cap < self.base:
            raise ValueError("Backoff cap must not be smaller than the base delay")
        return self

    def delay(self, attempt: int) -> float:
        """Delay in seconds before retry number `attempt` (1-based)."""
        delay = min(self.cap, self.base * 2 ** min(max(attempt - 1, 0), MAX_BACKOFF_EXPONENT))
        if self.jitter:
            return random.uniform(delay / 2, delay)
        return delay


class BatchSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    get_limit: int = Field(default=BATCH_GET_LIMIT, gt=0, le=BATCH_GET_LIMIT)
    write_limit: int = Field(default=BATCH_WRITE_LIMIT, gt=0, le=BATCH_WRITE_LIMIT)
    max_payload_bytes: int = Field(default=BATCH_MAX_PAYLOAD_BYTES, gt=0, le=BATCH_MAX_PAYLOAD_BYTES)
    max_concurrency: int = Field(default=DEFAULT_MAX_CONCURRENCY, gt=0)

    def limit_for(self, kind: BatchKind) -> int:
        return self.get_limit if kind == BatchKind.get else self.write_limit


class DynamoConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    region: str = "us-east-1"
    endpoint_url: str | None = None
    batch: BatchSettings = Field(default_factory=BatchSettings)
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
