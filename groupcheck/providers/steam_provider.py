"""
Steam Web API provider for group membership lookups.

Uses `ISteamUser/GetUserGroupList` and keeps only groups present in the catalog.
Every outcome maps to a MembershipResult:
- verified member subset (cacheable)
- verified non-member (private profile, API-reported failure, no matching groups)
- unknown (transport/timeout/parse failure, missing API key, empty catalog)
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Optional, Protocol, runtime_checkable

import requests

from groupcheck.core.catalog import GroupCatalog
from groupcheck.core.models import NON_MEMBER, UNKNOWN, MembershipResult, parse_group_id

logger = logging.getLogger(__name__)

# Default endpoint (can be overridden via STEAM_API_URL, e.g. for dev/mock-steam-api.py)
STEAM_GROUP_LIST_URL = "https://api.steampowered.com/ISteamUser/GetUserGroupList/v1/"
USER_AGENT = "groupcheck/1.0"
PRIVATE_PROFILE_MARKER = "private profile"


@runtime_checkable
class MembershipProvider(Protocol):
    def query(self, user_id: int) -> MembershipResult: ...


def normalize_success(value: Any) -> bool:
    """
    Normalize `response.success`, which Steam has returned as bool, 1/0 or a string.

    Anything unparsable is False.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value == 1
    if isinstance(value, str):
        s = value.strip()
        try:
            return int(s) == 1
        except ValueError:
            pass
        lowered = s.lower()
        if lowered in ("true", "false"):
            return lowered == "true"
    return False


def interpret_group_list(payload: Any, catalog: GroupCatalog, user_id: int = 0) -> MembershipResult:
    """Map a decoded 2xx GetUserGroupList body to a MembershipResult."""
    if not isinstance(payload, dict) or not isinstance(payload.get("response"), dict):
        logger.warning(f"Steam API response for {user_id} has no 'response' object")
        return UNKNOWN

    resp = payload["response"]
    success = normalize_success(resp["success"]) if "success" in resp else True
    if not success:
        error = resp.get("error")
        if isinstance(error, str) and error.strip():
            logger.info(f"Steam API response error '{error}' for {user_id}; treating as not a member")
        else:
            logger.info(f"Steam API reported failure for {user_id}; treating as not a member")
        return NON_MEMBER

    groups = resp.get("groups")
    if not isinstance(groups, list):
        return NON_MEMBER

    matched = set()
    for group in groups:
        if not isinstance(group, dict) or "gid" not in group:
            continue
        gid = parse_group_id(group["gid"])
        if gid is not None and gid in catalog:
            matched.add(gid)
    return MembershipResult.member_of(matched)


class SteamMembershipProvider:
    """
    Default MembershipProvider backed by the Steam Web API.

    Blocking (requests); callers on an event loop run `query` in a worker thread.
    """

    def __init__(
        self,
        api_key: str,
        catalog: GroupCatalog,
        *,
        timeout_seconds: float = 5,
        session: Optional[requests.Session] = None,
        url: Optional[str] = None,
    ) -> None:
        self.api_key = api_key or ""
        self.catalog = catalog
        self.timeout_seconds = timeout_seconds
        self._session = session
        self.url = url or os.getenv("STEAM_API_URL", STEAM_GROUP_LIST_URL)

    def _get(self, user_id: int) -> requests.Response:
        params = {"key": self.api_key, "steamid": str(user_id)}
        headers = {"User-Agent": USER_AGENT}
        if self._session is not None:
            return self._session.get(self.url, params=params, headers=headers, timeout=self.timeout_seconds)
        return requests.get(self.url, params=params, headers=headers, timeout=self.timeout_seconds)

    def query(self, user_id: int) -> MembershipResult:
        logger.debug(f"Querying Steam group list for {user_id}")

        if not self.api_key.strip():
            logger.warning("Invalid configuration: SteamApiKey is missing")
            return UNKNOWN
        if not len(self.catalog):
            logger.warning("No Steam groups configured; cannot validate membership.")
            return UNKNOWN

        try:
            response = self._get(user_id)
        except requests.exceptions.Timeout:
            logger.warning(f"Steam API request timed out for {user_id}")
            return UNKNOWN
        except requests.exceptions.RequestException as e:
            logger.warning(f"Failed to check group membership for {user_id}: {e}")
            return UNKNOWN

        try:
            body = response.text or ""
        except Exception as e:
            logger.warning(f"Failed to read Steam API response body for {user_id}: {e}")
            body = ""
        private_profile = PRIVATE_PROFILE_MARKER in body.lower()

        if not response.ok:
            if response.status_code == 403 and private_profile:
                logger.info(
                    f"Steam API denied group list for {user_id} because the profile is private; "
                    f"treating as not a member. Body: {body}"
                )
                return NON_MEMBER
            logger.warning(f"Steam API returned {response.status_code} for {user_id}. Body: {body}")
            return UNKNOWN

        logger.debug(f"Steam API success {response.status_code} for {user_id}. Body: {body}")
        try:
            payload = json.loads(body)
        except ValueError as e:
            logger.warning(f"Malformed Steam API payload for {user_id}: {e}")
            return UNKNOWN

        return interpret_group_list(payload, self.catalog, user_id)
