"""
Plugin entry point: wires config, catalog, resolver, reconciler and advertiser.

The host adapter forwards its events to the coroutine handlers below from the
plugin's event loop:
- on_user_connected / on_user_disconnected
- on_round_start
- check_membership_command (the `!group_check` chat command)
- reload_config (the admin reload console command)
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import AbstractSet, Callable, Coroutine, FrozenSet, Optional, Set, Tuple

import requests

from groupcheck.broadcast.advertiser import AdvertisementScheduler
from groupcheck.config import PluginConfig, load_config, mask_secret, resolve_config_path
from groupcheck.core.catalog import GroupCatalog
from groupcheck.core.models import UNKNOWN
from groupcheck.host.base import FrameBridge, GameHost
from groupcheck.membership.cache import MembershipCache
from groupcheck.membership.resolver import MembershipResolver
from groupcheck.messages import MessageTemplates, build_placeholders, load_messages, render_template
from groupcheck.permissions.reconciler import PermissionReconciler, ReconcilePlan, SleepFn
from groupcheck.permissions.state import PlayerStateStore
from groupcheck.providers.steam_provider import SteamMembershipProvider

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "groupcheck"
RELOAD_REPLY = "groupcheck config reloaded"


def configure_logging(debug: bool) -> None:
    logging.getLogger(PACKAGE_LOGGER).setLevel(logging.DEBUG if debug else logging.INFO)


class GroupCheckPlugin:
    def __init__(
        self,
        host: GameHost,
        *,
        config_path: Optional[str] = None,
        lang_dir: Optional[str] = None,
        session: Optional[requests.Session] = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.host = host
        self.frame = FrameBridge(host)
        self.config_path = resolve_config_path(config_path)
        self.lang_dir = Path(lang_dir) if lang_dir else self.config_path.parent / "lang"
        self._session = session

        self.config = PluginConfig()
        self.messages = MessageTemplates()
        self.catalog = GroupCatalog()

        self.cache = MembershipCache(clock)
        self.store = PlayerStateStore()
        self.resolver = MembershipResolver(SteamMembershipProvider("", self.catalog, session=session), self.cache)
        self.reconciler = PermissionReconciler(
            self.catalog,
            self.store,
            self.frame,
            on_member_detected=self._notify_member_detected,
            sleep=sleep,
        )
        self.advertiser = AdvertisementScheduler(self.store, self.frame, self.format_message, sleep=sleep)
        self._tasks: Set["asyncio.Task[object]"] = set()

    # Lifecycle

    def read_settings(self) -> Tuple[PluginConfig, MessageTemplates]:
        config = load_config(self.config_path).data
        messages = load_messages(self.lang_dir, config.language)
        return config, messages

    def configure(self, config: PluginConfig, messages: Optional[MessageTemplates] = None) -> None:
        """Apply a (re)loaded configuration; caches and player state are left alone."""
        self.config = config
        self.messages = messages or MessageTemplates()
        configure_logging(config.enable_debug_logging)

        self.catalog = GroupCatalog.from_config(config.groups)
        if not len(self.catalog):
            logger.warning("No valid Steam groups configured. Players will not be matched until at least one group is added.")

        self.resolver.provider = SteamMembershipProvider(
            config.steam_api_key,
            self.catalog,
            timeout_seconds=config.request_timeout_seconds,
            session=self._session,
        )
        self.resolver.cache_duration_seconds = config.cache_duration_seconds
        self.reconciler.update_catalog(self.catalog)
        logger.debug(
            f"Configured groupcheck (SteamApiKeyMasked={mask_secret(config.steam_api_key)}, "
            f"Groups={len(self.catalog)})"
        )

    async def load(self, config: Optional[PluginConfig] = None, messages: Optional[MessageTemplates] = None) -> None:
        if config is None:
            config, messages = self.read_settings()
        self.configure(config, messages)
        self.advertiser.start(self.config.non_member_ad_interval_minutes, self.messages.non_member_advertisement)

    async def unload(self) -> None:
        await self.advertiser.stop()
        await self.drain()

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.reconciler.drain()

    # Inbound events

    async def on_user_connected(self, user_id: int) -> Optional[ReconcilePlan]:
        logger.debug(f"Player authorized {user_id}")
        try:
            membership = await self.resolver.resolve(user_id)
        except Exception as e:
            logger.error(f"Membership resolution failed for {user_id}: {e}", exc_info=True)
            return None
        logger.debug(f"Player {user_id} membership groups: {sorted(membership.member_group_ids)}")
        return await self.reconciler.apply_if_connected(user_id, membership)

    async def on_user_disconnected(self, user_id: int) -> None:
        logger.debug(f"Player disconnected {user_id}")
        await self.reconciler.remove_user(user_id)

    async def on_round_start(self) -> int:
        return await self.reconciler.reapply_connected()

    async def check_membership_command(self, user_id: int) -> str:
        """Resolve the caller's membership and return the rendered reply."""
        logger.debug(f"!group_check invoked by {user_id}")
        member_ids: FrozenSet[int] = frozenset()
        if not user_id:
            template = self.messages.steam_id_unavailable
        else:
            try:
                membership = await self.resolver.resolve(user_id)
            except Exception as e:
                logger.error(f"Membership resolution failed for {user_id}: {e}", exc_info=True)
                membership = UNKNOWN
            member_ids = membership.member_group_ids
            if membership.is_member:
                template = self.messages.group_check_member
            elif membership.success:
                template = self.messages.group_check_not_member
            else:
                template = self.messages.group_check_unknown

        try:
            return await self.frame.call(lambda: self.format_message(template, user_id, member_ids))
        except Exception as e:
            logger.error(f"Group check reply failed for {user_id}: {e}", exc_info=True)
            return ""

    async def reload_config(self) -> str:
        logger.info("ReloadConfig command invoked")
        config, messages = self.read_settings()
        self.configure(config, messages)
        self.cache.clear()
        logger.debug("Cleared membership cache after config reload")

        try:
            users = await self.frame.connected_users()
        except Exception as e:
            logger.warning(f"Failed to list players after config reload: {e}")
            users = []
        for user_id in users:
            if user_id:
                self._spawn(self.on_user_connected(user_id))

        await self.advertiser.restart(self.config.non_member_ad_interval_minutes, self.messages.non_member_advertisement)
        return RELOAD_REPLY

    # Messaging

    def format_message(self, template: Optional[str], user_id: int, member_group_ids: AbstractSet[int]) -> str:
        """Render a template for one player. Runs on the frame thread (reads the player name)."""
        values = build_placeholders(
            self.catalog,
            user_id,
            member_group_ids,
            player_name=self.host.player_name(user_id) if user_id else "",
        )
        return render_template(template, values, prefix=self.messages.prefix)

    async def send_template(self, user_id: int, template: Optional[str], member_group_ids: AbstractSet[int]) -> bool:
        def _on_frame() -> bool:
            text = self.format_message(template, user_id, member_group_ids)
            if not text:
                return False
            self.host.send_message(user_id, text)
            return True

        try:
            return await self.frame.call(_on_frame)
        except Exception as e:
            logger.warning(f"Failed to send chat message to {user_id}: {e}")
            return False

    async def _notify_member_detected(self, user_id: int, member_group_ids: FrozenSet[int]) -> None:
        await self.send_template(user_id, self.messages.member_detected, member_group_ids)

    def _spawn(self, coro: Coroutine[object, object, object]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
