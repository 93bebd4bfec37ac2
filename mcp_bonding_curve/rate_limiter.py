"""
Client Rate Limiting

Fixed 60-second windows per client key (IP address for the quote API, the reported
client IP for MCP trade tools). Each surface owns its own limiter so quote traffic
cannot starve trades.

The cache is an OrderedDict in least-recently-seen order; once it grows past
`max_entries` the expired windows are pruned.
"""
import time
from collections import OrderedDict
from typing import Optional, Tuple

from mcp.server.fastmcp.utilities.logging import get_logger

from mcp_bonding_curve.config import RATE_LIMIT_PER_MINUTE
from mcp_bonding_curve.errors import RateLimitExceededError

logger = get_logger(__name__)


class RateLimiter:
    def __init__(self, limit: int = RATE_LIMIT_PER_MINUTE, window: int = 60, max_entries: int = 1000):
        self.limit = limit
        self.window = window
        self.max_entries = max_entries
        # {client: (count, window_start)}
        self.cache: "OrderedDict[str, Tuple[int, int]]" = OrderedDict()

    def check(self, client: str, now: Optional[int] = None) -> bool:
        """
        Records a request from `client`.

        Returns:
            True if the request is allowed, False if the client is over its limit.
        """
        now = int(time.time()) if now is None else now

        if len(self.cache) > self.max_entries:
            self.cleanup(now - self.window)

        count, started = self.cache.get(client, (0, now))
        if now - started >= self.window:
            count, started = 0, now
            logger.debug(f"Rate limit window reset for {client}")
        if count >= self.limit:
            logger.warning(f"Rate limit exceeded for {client}. Count: {count}, Limit: {self.limit}")
            return False

        self.cache[client] = (count + 1, started)
        self.cache.move_to_end(client)
        return True

    def enforce(self, client: str) -> None:
        """Like check(), but raises RateLimitExceededError when over the limit."""
        if not self.check(client):
            raise RateLimitExceededError(f"Rate limit exceeded for {client}")

    def cleanup(self, cutoff_time: int) -> None:
        """Removes windows that started before `cutoff_time`."""
        expired = [client for client, (_, started) in self.cache.items() if started < cutoff_time]
        for client in expired:
            del self.cache[client]
        if expired:
            logger.debug(f"Cleaned up {len(expired)} old rate limit entries")

    def reset(self) -> None:
        self.cache.clear()
