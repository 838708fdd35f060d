"""
Per-caller rate limiting for the AI assistant.

Policies are per tier (FREE and PRO). Counters live behind a UsageStore so
the limiter can run against DynamoDB in production and a no-op store when
limiting is disabled. Limiting is off unless RATE_LIMITING_ENABLED is set.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Protocol

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, Field

from models import CallerIdentity, RateLimitStatus

logger = logging.getLogger()

HOURLY = "hourly"
DAILY = "daily"
MONTHLY = "monthly"

WINDOW_SECONDS = {
    HOURLY: 60 * 60,
    DAILY: 24 * 60 * 60,
    MONTHLY: 31 * 24 * 60 * 60,
}

BUCKET_FORMATS = {
    HOURLY: "%Y-%m-%dT%H",
    DAILY: "%Y-%m-%d",
    MONTHLY: "%Y-%m",
}


# ============================================================================
# Policies
# ============================================================================


class RateLimitPolicy(BaseModel):
    """
    Limits for one tier.

    Attributes:
        daily_limit: Messages per UTC day
        hourly_limit: Messages per UTC hour
        concurrent_limit: Requests in flight at once
        max_tokens_per_message: Token ceiling for each Claude reply
        monthly_soft_limit: Messages per month before a warning is logged
    """

    daily_limit: int = Field(..., alias="daily")
    hourly_limit: int = Field(..., alias="hourly")
    concurrent_limit: int = Field(..., alias="concurrent")
    max_tokens_per_message: int = Field(..., alias="maxTokens")
    monthly_soft_limit: Optional[int] = Field(default=None, alias="monthly")

    class Config:
        """Pydantic configuration."""

        populate_by_name = True
        frozen = True


FREE_POLICY = RateLimitPolicy(daily=10, hourly=3, concurrent=1, maxTokens=500)
PRO_POLICY = RateLimitPolicy(daily=200, hourly=20, concurrent=3, maxTokens=2000, monthly=5000)

DEFAULT_POLICIES: Dict[str, RateLimitPolicy] = {
    "FREE": FREE_POLICY,
    "PRO": PRO_POLICY,
}


# ============================================================================
# Usage Stores
# ============================================================================


class UsageStore(Protocol):
    """Counter storage keyed by caller identity and window."""

    def increment(self, identity: str, window: str) -> int:
        """Atomically add one to the current bucket and return the new count."""
        ...


class NoOpUsageStore:
    """Store used when no counter table is configured. Always reports zero."""

    def increment(self, identity: str, window: str) -> int:
        return 0


class DynamoDBUsageStore:
    """
    Usage counters in DynamoDB.

    One item per identity and window bucket:
        PK = "usage#{identity}", SK = "{window}#{bucket}"
    `increment` uses an UpdateItem ADD, so concurrent requests from the same
    caller never lose counts. Items carry a `ttl` attribute so DynamoDB
    expires old buckets.
    """

    def __init__(self, dynamodb_client, table_name: str, clock: Callable[[], float] = time.time):
        """
        Initialize usage store.

        Args:
            dynamodb_client: boto3 DynamoDB client
            table_name: DynamoDB table name for usage counters
            clock: Returns the current epoch time in seconds
        """
        self.dynamodb_client = dynamodb_client
        self.table_name = table_name
        self.clock = clock

    def _key(self, identity: str, window: str) -> Dict[str, Dict[str, str]]:
        now = datetime.fromtimestamp(self.clock(), tz=timezone.utc)
        bucket = now.strftime(BUCKET_FORMATS[window])
        return {
            "PK": {"S": f"usage#{identity}"},
            "SK": {"S": f"{window}#{bucket}"},
        }

    def increment(self, identity: str, window: str) -> int:
        expires_at = int(self.clock()) + WINDOW_SECONDS[window]

        response = self.dynamodb_client.update_item(
            TableName=self.table_name,
            Key=self._key(identity, window),
            UpdateExpression="ADD #count :one SET #ttl = if_not_exists(#ttl, :ttl)",
            ExpressionAttributeNames={"#count": "count", "#ttl": "ttl"},
            ExpressionAttributeValues={
                ":one": {"N": "1"},
                ":ttl": {"N": str(expires_at)},
            },
            ReturnValues="UPDATED_NEW",
        )
        return int(response["Attributes"]["count"]["N"])


# ============================================================================
# Rate Limiter
# ============================================================================


class RateLimitDecision(BaseModel):
    """
    Outcome of a rate limit check.

    Attributes:
        allowed: Whether the request may proceed
        message: Reason shown to the caller when denied
        retry_after: Seconds until the exhausted window resets
        limits: Policy applied to the caller
        usage: Counts per window after this request
        reset_at: ISO 8601 time the hourly window resets
    """

    allowed: bool
    message: str = ""
    retry_after: Optional[int] = None
    limits: RateLimitPolicy
    usage: Dict[str, Optional[int]] = Field(default_factory=dict)
    reset_at: Optional[str] = None

    def to_body(self) -> Dict:
        return {
            "message": self.message,
            "retryAfter": self.retry_after,
            "limits": self.limits.model_dump(by_alias=True, exclude_none=True),
            "usage": self.usage,
        }

    def status(self) -> RateLimitStatus:
        hourly = self.usage.get(HOURLY) or 0
        return RateLimitStatus(
            remaining=max(0, self.limits.hourly_limit - hourly),
            reset_at=self.reset_at or "",
        )


class RateLimiter:
    """
    Increment-and-check limiter over hourly, daily and (PRO) monthly windows.

    Each check counts the attempt before comparing against the limit, so two
    concurrent requests from one caller cannot both slip under it.
    """

    def __init__(
        self,
        policies: Optional[Dict[str, RateLimitPolicy]] = None,
        store: Optional[UsageStore] = None,
        enabled: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize rate limiter.

        Args:
            policies: Policy per tier ("FREE", "PRO")
            store: Counter storage (defaults to a no-op store)
            enabled: When False every check is allowed and nothing is counted
            clock: Returns the current epoch time in seconds
        """
        self.policies = policies or DEFAULT_POLICIES
        self.store = store or NoOpUsageStore()
        self.enabled = enabled
        self.clock = clock

    def policy_for(self, caller: CallerIdentity) -> RateLimitPolicy:
        return self.policies[caller.tier]

    def max_tokens_for(self, caller: CallerIdentity, default: int) -> int:
        """Cap the reply token ceiling at the tier limit when limiting is enabled."""
        if not self.enabled:
            return default
        return min(default, self.policy_for(caller).max_tokens_per_message)

    def _seconds_until_reset(self, window: str) -> int:
        now = int(self.clock())
        if window == HOURLY:
            return WINDOW_SECONDS[HOURLY] - now % WINDOW_SECONDS[HOURLY]
        return WINDOW_SECONDS[DAILY] - now % WINDOW_SECONDS[DAILY]

    def _hourly_reset_at(self) -> str:
        reset = int(self.clock()) + self._seconds_until_reset(HOURLY)
        return datetime.fromtimestamp(reset, tz=timezone.utc).isoformat().replace("+00:00", "Z")

    def check(self, caller: CallerIdentity) -> RateLimitDecision:
        """
        Count this request and decide whether it may proceed.

        Store failures are logged and the request is allowed.

        Args:
            caller: Caller identity

        Returns:
            RateLimitDecision: Decision with usage counts
        """
        policy = self.policy_for(caller)

        if not self.enabled:
            return RateLimitDecision(
                allowed=True,
                limits=policy,
                usage={HOURLY: 0, DAILY: 0, MONTHLY: 0 if caller.is_pro else None},
            )

        try:
            hourly = self.store.increment(caller.id, HOURLY)
            daily = self.store.increment(caller.id, DAILY)
            monthly = self.store.increment(caller.id, MONTHLY) if caller.is_pro else None
        except (ClientError, BotoCoreError) as e:
            logger.error(f"[rate-limit] Usage store unavailable, allowing request: {e}")
            return RateLimitDecision(allowed=True, limits=policy, reset_at=self._hourly_reset_at())

        usage = {HOURLY: hourly, DAILY: daily, MONTHLY: monthly}

        if hourly > policy.hourly_limit:
            logger.warning(f"[rate-limit] Hourly limit reached for {caller.id} ({hourly}/{policy.hourly_limit})")
            return RateLimitDecision(
                allowed=False,
                message=f"Hourly limit of {policy.hourly_limit} messages reached. Please try again later.",
                retry_after=self._seconds_until_reset(HOURLY),
                limits=policy,
                usage=usage,
                reset_at=self._hourly_reset_at(),
            )

        if daily > policy.daily_limit:
            logger.warning(f"[rate-limit] Daily limit reached for {caller.id} ({daily}/{policy.daily_limit})")
            return RateLimitDecision(
                allowed=False,
                message=f"Daily limit of {policy.daily_limit} messages reached. Please try again tomorrow.",
                retry_after=self._seconds_until_reset(DAILY),
                limits=policy,
                usage=usage,
                reset_at=self._hourly_reset_at(),
            )

        if monthly is not None and policy.monthly_soft_limit and monthly > policy.monthly_soft_limit:
            # Soft limit: logged, never enforced
            logger.warning(
                f"[rate-limit] Monthly soft limit exceeded for {caller.id} "
                f"({monthly}/{policy.monthly_soft_limit})"
            )

        return RateLimitDecision(
            allowed=True,
            limits=policy,
            usage=usage,
            reset_at=self._hourly_reset_at(),
        )
