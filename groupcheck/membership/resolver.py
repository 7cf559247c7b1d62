"""Cache-then-query membership resolution."""

from __future__ import annotations

import asyncio
import logging

from groupcheck.core.models import UNKNOWN, MembershipResult
from groupcheck.membership.cache import MembershipCache
from groupcheck.providers.steam_provider import MembershipProvider

logger = logging.getLogger(__name__)


class MembershipResolver:
    """
    The single entry point for learning a player's membership.

    Cache hits return immediately. Misses query the provider in a worker thread; only
    cacheable results (verified and non-empty) are stored, so failures and non-member
    verdicts are re-queried next time.
    """

    def __init__(
        self,
        provider: MembershipProvider,
        cache: MembershipCache,
        *,
        cache_duration_seconds: float = 120,
    ) -> None:
        self.provider = provider
        self.cache = cache
        self.cache_duration_seconds = cache_duration_seconds

    async def resolve(self, user_id: int) -> MembershipResult:
        logger.debug(f"Resolving group membership for {user_id}")
        if user_id == 0:
            return UNKNOWN

        cached = self.cache.get(user_id)
        if cached is not None:
            return MembershipResult(True, cached)

        result = await asyncio.to_thread(self.provider.query, user_id)
        if result.cacheable and self.cache_duration_seconds > 0:
            self.cache.put(user_id, result.member_group_ids, self.cache_duration_seconds)
        return result
