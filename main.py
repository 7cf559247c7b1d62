#!/usr/bin/env python3
"""
Steam group membership check - local CLI.

Runs the plugin against an in-process host so config, language files and the
Steam Web API key can be verified without a game server.
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)


def parse_steam_id(value: str) -> Optional[int]:
    s = (value or "").strip()
    if not s.isdigit():
        return None
    return int(s)


async def _check(user_id: int, name: str, config_path: Optional[str], lang_dir: Optional[str]) -> int:
    from groupcheck.host.local import LocalHost
    from groupcheck.plugin import GroupCheckPlugin

    host = LocalHost()
    host.start()
    host.connect(user_id, name)
    plugin = GroupCheckPlugin(host, config_path=config_path, lang_dir=lang_dir)
    try:
        await plugin.load()
        await plugin.on_user_connected(user_id)
        await plugin.drain()
        reply = await plugin.check_membership_command(user_id)
        for _, text in host.messages:
            print(text)
        print(reply)
        flags = sorted(host.flags_of(user_id))
        print(f"Flags: {', '.join(flags) if flags else '(none)'}")
    finally:
        await plugin.unload()
        host.stop()
    return 0


def check_user(steam_id: str, *, name: str = "", config_path: Optional[str] = None, lang_dir: Optional[str] = None) -> int:
    """Resolve one SteamID64 and print what the player would see in chat."""
    user_id = parse_steam_id(steam_id)
    if not user_id:
        print(f"Invalid SteamID64: {steam_id}", file=sys.stderr)
        return 2
    return asyncio.run(_check(user_id, name or str(user_id), config_path, lang_dir))


def show_catalog(*, config_path: Optional[str] = None) -> int:
    """Print the normalized group catalog in priority order."""
    from groupcheck.config import load_config, resolve_config_path
    from groupcheck.core.catalog import GroupCatalog

    config = load_config(resolve_config_path(config_path)).data
    catalog = GroupCatalog.from_config(config.groups)
    if not len(catalog):
        print("No valid Steam groups configured.")
        return 1

    print(f"{'Priority':<10} {'GroupId':<20} {'Name':<24} {'Flags':<24} URL")
    print("-" * 110)
    for group in catalog:
        flags = ", ".join(group.granted_flags)
        print(f"{group.priority:<10} {group.group_id:<20} {group.display_name[:24]:<24} {flags[:24]:<24} {group.url}")
    return 0


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Steam group membership check",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Resolve one player against the configured groups
  python main.py check 76561198000000000

  # Use another config file and language directory
  python main.py --config ./config/config.json --lang-dir ./config/lang check 76561198000000000

  # Show configured groups in priority order
  python main.py catalog
        """,
    )
    parser.add_argument("--config", help="Path to config.json (or its directory). Default: $GROUPCHECK_CONFIG or ./config/config.json")
    parser.add_argument("--lang-dir", help="Directory holding <language>.json message files. Default: <config dir>/lang")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command")
    check = sub.add_parser("check", help="Resolve a SteamID64 and print the chat reply")
    check.add_argument("steam_id", help="SteamID64 of the player")
    check.add_argument("--name", default="", help="Player name used for {PlayerName}")
    sub.add_parser("catalog", help="Print configured groups in priority order")

    args = parser.parse_args()

    if args.debug:
        # Read by the config loader, so it survives config reloads.
        os.environ["GROUPCHECK_DEBUG"] = "1"
        logging.getLogger("groupcheck").setLevel(logging.DEBUG)

    if args.command == "check":
        sys.exit(check_user(args.steam_id, name=args.name, config_path=args.config, lang_dir=args.lang_dir))
    if args.command == "catalog":
        sys.exit(show_catalog(config_path=args.config))

    parser.print_help()
    sys.exit(1)


if __name__ == "__main__":
    main()
