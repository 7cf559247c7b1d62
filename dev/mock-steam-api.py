#!/usr/bin/env python3
"""
Mock Steam Web API (GetUserGroupList) for local development.

Point the plugin at it with:
  STEAM_API_URL=http://localhost:18480/ISteamUser/GetUserGroupList/v1/

Canned SteamID64s:
- 76561198000000001: member of group 103582791429521408
- 76561198000000002: private profile (403)
- 76561198000000003: API-reported failure
- anything else: public profile with no groups
"""

import sys

from flask import Flask, jsonify, request

app = Flask(__name__)

MEMBER_GROUPS = {
    "76561198000000001": ["103582791429521408", "103582791400000000"],
}
PRIVATE_PROFILES = {"76561198000000002"}
FAILING_PROFILES = {"76561198000000003"}


@app.route("/ISteamUser/GetUserGroupList/v1/", methods=["GET"])
def user_group_list():
    """Return the group list for `steamid`."""
    if not request.args.get("key"):
        return "<html><body><h1>Forbidden</h1>Access is denied. Retrying will not help. Please verify your key= parameter.</body></html>", 403

    steam_id = request.args.get("steamid", "")
    if steam_id in PRIVATE_PROFILES:
        return "<html><body><h1>Forbidden</h1>Private profile</body></html>", 403
    if steam_id in FAILING_PROFILES:
        return jsonify({"response": {"success": False, "error": "Failed to get groups"}})

    groups = [{"gid": gid} for gid in MEMBER_GROUPS.get(steam_id, [])]
    return jsonify({"response": {"success": True, "groups": groups}})


@app.route("/healthz")
def health():
    """Health check endpoint."""
    return jsonify({"status": "ok"})


if __name__ == "__main__":
    print("Mock Steam Web API starting on http://0.0.0.0:18480", file=sys.stderr)
    app.run(host="0.0.0.0", port=18480, debug=False)
