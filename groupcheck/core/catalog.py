"""Normalized, priority-ordered catalog of configured Steam groups."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, AbstractSet, FrozenSet, Iterable, Iterator, List, Optional, Sequence, Tuple

from groupcheck.core.models import ConfiguredGroup, parse_group_id, unique_flags

if TYPE_CHECKING:
    from groupcheck.config import GroupConfig

logger = logging.getLogger(__name__)

_FLAG_SEPARATORS = re.compile(r"[,;]")


def parse_flags(raw_flags: str) -> Tuple[str, ...]:
    """Split a "@a/b, @c/d; @e/f" flag string into unique, trimmed flags."""
    if not raw_flags or not raw_flags.strip():
        return ()
    parts = [p.strip() for p in _FLAG_SEPARATORS.split(raw_flags)]
    return unique_flags(p for p in parts if p)


class GroupCatalog:
    """
    Configured groups sorted by priority (desc), then declaration order (asc).

    Catalog order defines the primary group: the first entry a player belongs to.
    """

    def __init__(self, groups: Iterable[ConfiguredGroup] = ()) -> None:
        self._groups: Tuple[ConfiguredGroup, ...] = tuple(
            sorted(groups, key=lambda g: (-g.priority, g.config_index))
        )
        self._ids: FrozenSet[int] = frozenset(g.group_id for g in self._groups)

    @classmethod
    def from_config(
        cls,
        group_configs: Optional[Sequence[Optional["GroupConfig"]]],
        fallback: Optional["GroupConfig"] = None,
    ) -> "GroupCatalog":
        if fallback is None:
            from groupcheck.config import GroupConfig

            fallback = GroupConfig()

        groups: List[ConfiguredGroup] = []
        for index, group in enumerate(group_configs or []):
            if group is None:
                continue

            raw_id = group.group_id if group.group_id.strip() else fallback.group_id
            parsed_id = parse_group_id(raw_id)
            if parsed_id is None:
                logger.warning(f"Skipping Steam group with invalid id '{raw_id}'")
                continue

            raw_flag = group.granted_flag if group.granted_flag.strip() else fallback.granted_flag
            display_name = group.name.strip() if group.name and group.name.strip() else raw_id
            groups.append(
                ConfiguredGroup(
                    group_id=parsed_id,
                    display_name=display_name,
                    granted_flags=parse_flags(raw_flag),
                    raw_id=raw_id,
                    priority=group.priority,
                    config_index=index,
                )
            )

        return cls(groups)

    def __iter__(self) -> Iterator[ConfiguredGroup]:
        return iter(self._groups)

    def __len__(self) -> int:
        return len(self._groups)

    def __contains__(self, group_id: object) -> bool:
        return group_id in self._ids

    @property
    def ids(self) -> FrozenSet[int]:
        return self._ids

    @property
    def first(self) -> Optional[ConfiguredGroup]:
        return self._groups[0] if self._groups else None

    def restrict(self, group_ids: Iterable[int]) -> FrozenSet[int]:
        """Intersect arbitrary ids with the catalog; unknown ids are dropped."""
        return frozenset(g for g in group_ids if g in self._ids)

    def groups_for(self, member_group_ids: AbstractSet[int]) -> List[ConfiguredGroup]:
        """Matched groups in catalog order."""
        if not member_group_ids:
            return []
        return [g for g in self._groups if g.group_id in member_group_ids]

    def primary_group(self, member_group_ids: Optional[AbstractSet[int]]) -> Optional[ConfiguredGroup]:
        """
        Highest-priority group the player belongs to.

        With no matching membership this falls back to the first catalog entry. That
        fallback only feeds message placeholders; `flags_for` never consults it.
        """
        if member_group_ids:
            for group in self._groups:
                if group.group_id in member_group_ids:
                    return group
        return self.first

    def flags_for(self, member_group_ids: Optional[AbstractSet[int]]) -> Tuple[str, ...]:
        """Flags granted for a membership set: the primary group's flags only, never a union."""
        if not member_group_ids:
            return ()
        primary = self.primary_group(member_group_ids)
        if primary is None:
            return ()
        return primary.granted_flags
