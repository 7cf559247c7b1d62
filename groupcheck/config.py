"""
Plugin configuration: JSON file schema, normalization and env overrides.

The file is hand-edited by server admins, so parsing is lenient:
- property names match case-insensitively
- string fields accept numbers/booleans/arrays, Priority accepts numeric strings
- unknown properties are kept (legacy keys are migrated from them)

Env overrides (applied after the file, ConfigMap/Secret friendly):
- STEAM_API_KEY
- GROUPCHECK_REQUEST_TIMEOUT_SECONDS
- GROUPCHECK_CACHE_DURATION_SECONDS
- GROUPCHECK_AD_INTERVAL_MINUTES
- GROUPCHECK_DEBUG=1
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "config.json"
DEFAULT_API_KEY = "REPLACE_ME"
DEFAULT_GROUP_ID = "REPLACE_ME"
DEFAULT_GRANTED_FLAG = "@abs/membre"


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def _env_int(name: str) -> Optional[int]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except Exception:
        return None


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return ""


def flexible_str(value: Any) -> str:
    """Coerce a JSON value to text; arrays are joined with ", " after dropping blanks."""
    if isinstance(value, list):
        parts = [_scalar_text(v) for v in value]
        return ", ".join(p for p in parts if p.strip())
    return _scalar_text(value)


def flexible_int(value: Any) -> int:
    """Coerce a JSON value to an int32, falling back to 0."""
    if isinstance(value, bool):
        return 1 if value else 0
    try:
        if isinstance(value, int):
            out = value
        elif isinstance(value, float):
            out = int(round(value))
        elif isinstance(value, str):
            s = value.strip()
            try:
                out = int(s)
            except ValueError:
                f = float(s)
                out = int(f) if f.is_integer() else 0
        else:
            return 0
    except Exception:
        return 0
    if out < -(1 << 31) or out > (1 << 31) - 1:
        return 0
    return out


def mask_secret(value: Optional[str]) -> str:
    if not value or not value.strip():
        return "<empty>"
    if len(value) <= 4:
        return "*" * len(value)
    return "*" * (len(value) - 4) + value[-4:]


class _FileModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @model_validator(mode="before")
    @classmethod
    def _match_keys_case_insensitively(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        names = {}
        for name, info in cls.model_fields.items():
            key = info.alias or name
            names[key.lower()] = key
            names[name.lower()] = key
        return {names.get(str(k).lower(), k): v for k, v in data.items()}


class GroupConfig(_FileModel):
    group_id: str = Field(default=DEFAULT_GROUP_ID, alias="GroupId")
    granted_flag: str = Field(default=DEFAULT_GRANTED_FLAG, alias="GrantedFlag")
    name: Optional[str] = Field(default=None, alias="Name")
    priority: int = Field(default=0, alias="Priority")

    @field_validator("group_id", "granted_flag", mode="before")
    @classmethod
    def _flexible_text(cls, v: Any) -> str:
        return flexible_str(v)

    @field_validator("priority", mode="before")
    @classmethod
    def _flexible_priority(cls, v: Any) -> int:
        return flexible_int(v)


class PluginConfig(_FileModel):
    steam_api_key: str = Field(default=DEFAULT_API_KEY, alias="SteamApiKey")
    language: str = Field(default="en", alias="Language")
    request_timeout_seconds: int = Field(default=5, alias="RequestTimeoutSeconds")
    cache_duration_seconds: int = Field(default=120, alias="CacheDurationSeconds")
    non_member_ad_interval_minutes: int = Field(default=5, alias="NonMemberAdIntervalMinutes")
    groups: Optional[List[Optional[GroupConfig]]] = Field(default_factory=lambda: [GroupConfig()], alias="Groups")
    enable_debug_logging: bool = Field(default=False, alias="EnableDebugLogging")

    @field_validator("steam_api_key", "language", mode="before")
    @classmethod
    def _flexible_text(cls, v: Any) -> str:
        return flexible_str(v)

    @field_validator("request_timeout_seconds", "cache_duration_seconds", "non_member_ad_interval_minutes", mode="before")
    @classmethod
    def _flexible_numbers(cls, v: Any) -> int:
        return flexible_int(v)

    def to_json(self) -> str:
        return json.dumps(self.model_dump(mode="json", by_alias=True), indent=2)


@dataclass(frozen=True)
class ConfigLoadResult:
    data: PluginConfig
    path: Path
    created: bool


def _legacy_groups(config: PluginConfig, defaults: PluginConfig) -> Optional[List[Optional[GroupConfig]]]:
    extra = {str(k).lower(): v for k, v in (config.model_extra or {}).items()}
    legacy_id = flexible_str(extra["targetsteamgroupid"]) if "targetsteamgroupid" in extra else None
    legacy_flag = flexible_str(extra["grantedflag"]) if "grantedflag" in extra else None
    if legacy_id is None and legacy_flag is None:
        return None

    fallback = (defaults.groups or [None])[0] or GroupConfig()
    return [
        GroupConfig(
            group_id=legacy_id if legacy_id and legacy_id.strip() else fallback.group_id,
            granted_flag=legacy_flag if legacy_flag and legacy_flag.strip() else fallback.granted_flag,
        )
    ]


def normalize_config(config: PluginConfig, defaults: Optional[PluginConfig] = None) -> bool:
    """
    Fill missing/invalid fields from defaults in place.

    Returns True when anything changed (the caller rewrites the file).
    """
    defaults = defaults or PluginConfig()
    updated = False

    if not config.language.strip():
        config.language = defaults.language
        updated = True
    if not config.steam_api_key.strip():
        config.steam_api_key = defaults.steam_api_key
        updated = True
    if config.request_timeout_seconds <= 0:
        config.request_timeout_seconds = defaults.request_timeout_seconds
        updated = True
    if config.cache_duration_seconds <= 0:
        config.cache_duration_seconds = defaults.cache_duration_seconds
        updated = True
    if config.non_member_ad_interval_minutes < 0:
        config.non_member_ad_interval_minutes = defaults.non_member_ad_interval_minutes
        updated = True

    # Legacy single-group files carry no "Groups" key at all.
    legacy = _legacy_groups(config, defaults)
    if not config.groups or (legacy and "groups" not in config.model_fields_set):
        config.groups = legacy or defaults.groups
        return True

    fallback = (defaults.groups or [None])[0] or GroupConfig()
    for group in config.groups:
        if group is None:
            continue
        if not group.group_id.strip():
            group.group_id = fallback.group_id
            updated = True
        if not group.granted_flag.strip():
            group.granted_flag = fallback.granted_flag
            updated = True
        if group.name is not None and not group.name.strip():
            group.name = None
            updated = True

    return updated


def apply_env_overrides(config: PluginConfig) -> None:
    api_key = (os.getenv("STEAM_API_KEY") or "").strip()
    if api_key:
        config.steam_api_key = api_key

    timeout = _env_int("GROUPCHECK_REQUEST_TIMEOUT_SECONDS")
    if timeout is not None and timeout > 0:
        config.request_timeout_seconds = timeout
    cache = _env_int("GROUPCHECK_CACHE_DURATION_SECONDS")
    if cache is not None and cache > 0:
        config.cache_duration_seconds = cache
    interval = _env_int("GROUPCHECK_AD_INTERVAL_MINUTES")
    if interval is not None and interval >= 0:
        config.non_member_ad_interval_minutes = interval

    config.enable_debug_logging = _env_bool("GROUPCHECK_DEBUG", config.enable_debug_logging)


def save_config(config: PluginConfig, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(config.to_json(), encoding="utf-8")


def resolve_config_path(config_path: Optional[str] = None) -> Path:
    raw = (config_path or os.getenv("GROUPCHECK_CONFIG") or "").strip()
    if not raw:
        return Path("config") / CONFIG_FILE_NAME
    path = Path(raw)
    return path / CONFIG_FILE_NAME if path.is_dir() else path


def load_config(path: Path, *, save_after_load: bool = True) -> ConfigLoadResult:
    """
    Load, normalize and (when needed) rewrite the config file.

    A missing file is created with defaults. Any failure falls back to defaults; the
    plugin keeps running with an unusable API key rather than crashing the host.
    """
    path = Path(path)
    created = False
    try:
        if path.exists():
            config = PluginConfig.model_validate(json.loads(path.read_text(encoding="utf-8")))
        else:
            created = True
            config = PluginConfig()

        updated = normalize_config(config)
        if created:
            if save_after_load:
                save_config(config, path)
            logger.warning(f"Config file not found at {path}. Created default config.")
        elif updated and save_after_load:
            save_config(config, path)
            logger.info(f"Patched config at {path} with missing or invalid fields.")
    except Exception as e:
        logger.error(f"Failed to load config from {path}: {e}", exc_info=True)
        config = PluginConfig()
        created = False

    apply_env_overrides(config)
    logger.debug(
        f"Loaded config from {path} (SteamApiKeyMasked={mask_secret(config.steam_api_key)}, "
        f"Language={config.language}, Timeout={config.request_timeout_seconds}s, "
        f"Cache={config.cache_duration_seconds}s, AdInterval={config.non_member_ad_interval_minutes}m, "
        f"Groups={len(config.groups or [])})"
    )
    return ConfigLoadResult(data=config, path=path, created=created)
