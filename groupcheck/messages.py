"""
Chat message templates, localization files and placeholder values.

Templates carry `{Placeholder}` tokens. This module supplies the values as a
mapping and does plain case-insensitive substitution; color markup such as
`{red}` is left in place for the host to render.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import AbstractSet, Dict, Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from groupcheck.core.catalog import GroupCatalog
from groupcheck.core.models import STEAM_COMMUNITY_URL, ConfiguredGroup, unique_flags

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "en"


class MessageTemplates(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    prefix: str = Field(default="[Group] ", alias="Prefix")
    member_detected: str = Field(default="You are detected as a member of: {MemberGroups}", alias="MemberDetected")
    steam_id_unavailable: str = Field(default="Your SteamID isn't available yet.", alias="SteamIdUnavailable")
    group_check_member: str = Field(default="You are a member of: {MemberGroups}", alias="GroupCheckMember")
    group_check_not_member: str = Field(
        default="You are not a member of our groups. Visit {GroupUrls}", alias="GroupCheckNotMember"
    )
    group_check_unknown: str = Field(
        default="Failed to determine group membership right now.", alias="GroupCheckUnknown"
    )
    non_member_advertisement: str = Field(
        default="Join our Steam groups to unlock rewards! Visit {GroupUrls}", alias="NonMemberAdvertisement"
    )

    def apply_defaults(self, defaults: Optional["MessageTemplates"] = None) -> bool:
        """Replace blank templates with defaults. Returns True when anything changed."""
        defaults = defaults or MessageTemplates()
        changed = False
        for name in type(self).model_fields:
            current = getattr(self, name)
            if current is None or not str(current).strip():
                setattr(self, name, getattr(defaults, name))
                changed = True
        return changed

    def to_json(self) -> str:
        return json.dumps(self.model_dump(by_alias=True), indent=2, ensure_ascii=False)


def language_path(lang_dir: Path, language: Optional[str]) -> Path:
    name = (language or "").strip() or DEFAULT_LANGUAGE
    return Path(lang_dir) / f"{name}.json"


def load_messages(lang_dir: Path, language: Optional[str]) -> MessageTemplates:
    """Load `<lang_dir>/<language>.json`, creating or patching it with defaults."""
    path = language_path(lang_dir, language)
    try:
        if not path.exists():
            messages = MessageTemplates()
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(messages.to_json(), encoding="utf-8")
            logger.warning(f"Language file not found at {path}. Created default language file.")
            return messages

        raw = json.loads(path.read_text(encoding="utf-8"))
        messages = MessageTemplates.model_validate(_match_keys(raw)) if isinstance(raw, dict) else MessageTemplates()
        if messages.apply_defaults():
            path.write_text(messages.to_json(), encoding="utf-8")
            logger.info(f"Patched language file at {path} with missing entries.")
        return messages
    except Exception as e:
        logger.error(f"Failed to load language file for language {language}: {e}", exc_info=True)
        return MessageTemplates()


def _match_keys(raw: Dict[str, object]) -> Dict[str, object]:
    aliases = {(info.alias or name).lower(): (info.alias or name) for name, info in MessageTemplates.model_fields.items()}
    return {aliases.get(str(k).lower(), str(k)): ("" if v is None else v) for k, v in raw.items()}


def format_group_list(groups: Iterable[ConfiguredGroup]) -> str:
    names = [g.display_name for g in groups if g.display_name and g.display_name.strip()]
    return ", ".join(names) if names else "N/A"


def format_group_urls(groups: Iterable[ConfiguredGroup]) -> str:
    entries = [f"{g.display_name}: {g.url}" for g in groups]
    return ", ".join(entries) if entries else STEAM_COMMUNITY_URL


def format_flag_list(groups: Iterable[ConfiguredGroup]) -> str:
    flags = unique_flags(flag for g in groups for flag in g.granted_flags)
    return ", ".join(flags)


def build_placeholders(
    catalog: GroupCatalog,
    user_id: int,
    member_group_ids: Optional[AbstractSet[int]] = None,
    *,
    player_name: str = "",
) -> Dict[str, str]:
    """
    Substitution values for a player's message.

    Member lists fall back to the whole catalog when the player matched nothing, and
    `{GroupId}`/`{GroupUrl}` fall back to the catalog's first group.
    """
    member_groups = catalog.groups_for(member_group_ids or frozenset())
    primary = catalog.primary_group(member_group_ids)
    all_groups = list(catalog)

    all_list = format_group_list(all_groups)
    all_urls = format_group_urls(all_groups)
    flag_list = format_flag_list([primary] if primary is not None else member_groups)

    return {
        "{PlayerName}": player_name or "",
        "{SteamId64}": "" if not user_id else str(user_id),
        "{GroupId}": str(primary.group_id) if primary is not None else "",
        "{GroupUrl}": primary.url if primary is not None else "",
        "{GroupList}": all_list,
        "{GroupUrls}": all_urls,
        "{MemberGroups}": format_group_list(member_groups) if member_groups else all_list,
        "{MemberGroupUrls}": format_group_urls(member_groups) if member_groups else all_urls,
        "{Flag}": flag_list,
        "{Flags}": flag_list,
    }


def render_template(template: Optional[str], values: Mapping[str, str], *, prefix: str = "") -> str:
    """Prefix the template and substitute placeholders case-insensitively. Blank templates render as ""."""
    if not template or not template.strip():
        return ""
    result = f"{prefix or ''}{template}"
    for token, value in values.items():
        result = re.sub(re.escape(token), lambda _m, v=value: v, result, flags=re.IGNORECASE)
    return result
