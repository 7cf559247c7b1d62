"""Steam group membership check for game servers.

Grants permission flags to connected players based on their membership in
configured Steam groups, and nudges non-members with a periodic advertisement.
"""

__version__ = "2.0.0"
