"""Canonical value types shared by the membership, permission and broadcast layers.

All types are immutable with structural equality. Group ids are unsigned 64-bit
Steam group ids (`gid`); flags are opaque host permission strings compared
case-insensitively.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AbstractSet, Any, FrozenSet, Iterable, List, Optional, Tuple

STEAM_COMMUNITY_URL = "https://steamcommunity.com"

MAX_UINT64 = (1 << 64) - 1


def flag_key(flag: str) -> str:
    return flag.casefold()


def unique_flags(flags: Iterable[str]) -> Tuple[str, ...]:
    """Drop case-insensitive duplicates, keeping first-seen order and spelling."""
    out: List[str] = []
    seen = set()
    for flag in flags:
        key = flag_key(flag)
        if key in seen:
            continue
        seen.add(key)
        out.append(flag)
    return tuple(out)


def contains_flag(flags: Iterable[str], flag: str) -> bool:
    key = flag_key(flag)
    return any(flag_key(f) == key for f in flags)


def flags_equal(first: Iterable[str], second: Iterable[str]) -> bool:
    return {flag_key(f) for f in first} == {flag_key(f) for f in second}


def flags_difference(first: Iterable[str], second: Iterable[str]) -> Tuple[str, ...]:
    """Flags in `first` that are not in `second` (case-insensitive), in `first` order."""
    exclude = {flag_key(f) for f in second}
    return tuple(f for f in unique_flags(first) if flag_key(f) not in exclude)


def parse_group_id(value: Any) -> Optional[int]:
    """
    Parse a Steam group id from config text or an API `gid` (string or number).

    Accepts ASCII digits with an optional leading "+". Zero, negatives and values
    beyond uint64 are rejected.
    """
    gid: Optional[int] = None
    if isinstance(value, str):
        s = value.strip()
        if s.startswith("+"):
            s = s[1:]
        if s.isascii() and s.isdigit():
            gid = int(s)
    elif isinstance(value, int) and not isinstance(value, bool):
        gid = value
    if gid is None or gid <= 0 or gid > MAX_UINT64:
        return None
    return gid


def group_url(group_id: int) -> str:
    return f"{STEAM_COMMUNITY_URL}/gid/{group_id}"


@dataclass(frozen=True)
class ConfiguredGroup:
    group_id: int
    display_name: str
    granted_flags: Tuple[str, ...]
    raw_id: str
    priority: int = 0
    config_index: int = 0

    @property
    def url(self) -> str:
        return group_url(self.group_id)


@dataclass(frozen=True)
class MembershipResult:
    """
    Outcome of a membership lookup.

    - success=True, non-empty ids: verified member of those catalog groups
    - success=True, empty ids: verified non-member
    - success=False: unknown (transient failure or invalid configuration)
    """

    success: bool
    member_group_ids: FrozenSet[int] = field(default_factory=frozenset)

    @classmethod
    def unknown(cls) -> "MembershipResult":
        return UNKNOWN

    @classmethod
    def non_member(cls) -> "MembershipResult":
        return NON_MEMBER

    @classmethod
    def member_of(cls, group_ids: Iterable[int]) -> "MembershipResult":
        return cls(True, frozenset(group_ids))

    @property
    def is_member(self) -> bool:
        return self.success and bool(self.member_group_ids)

    @property
    def cacheable(self) -> bool:
        # Only verified, non-empty answers are cached; a "not a member" verdict may be transient.
        return self.is_member


UNKNOWN = MembershipResult(False, frozenset())
NON_MEMBER = MembershipResult(True, frozenset())


@dataclass(frozen=True)
class MembershipCacheEntry:
    member_group_ids: FrozenSet[int]
    expires_at: float

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class PlayerMembershipSnapshot:
    member_group_ids: FrozenSet[int] = field(default_factory=frozenset)
    granted_flags: Tuple[str, ...] = ()

    @property
    def has_membership(self) -> bool:
        return bool(self.member_group_ids)

    def has_flag(self, flag: str) -> bool:
        return contains_flag(self.granted_flags, flag)

    def matches(self, member_group_ids: AbstractSet[int], flags: Iterable[str]) -> bool:
        """True when both the group set and the flag set are unchanged (order-independent)."""
        return set(self.member_group_ids) == set(member_group_ids) and flags_equal(self.granted_flags, flags)


EMPTY_SNAPSHOT = PlayerMembershipSnapshot()
