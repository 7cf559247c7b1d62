"""
Host (game server) boundary.

Permission grants, chat delivery and player enumeration belong to the host's
single-threaded frame loop; the rest of the package reaches them only through
`FrameBridge`.
"""

from groupcheck.host.base import FrameBridge, GameHost

__all__ = ["FrameBridge", "GameHost"]
