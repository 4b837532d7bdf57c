"""
Guild permission checks over Discord partial guild payloads.
"""

from typing import Any, Dict, Iterable, List, Mapping

PERMISSION_FLAGS: Dict[str, int] = {
    "CREATE_INSTANT_INVITE": 1 << 0,
    "KICK_MEMBERS": 1 << 1,
    "BAN_MEMBERS": 1 << 2,
    "ADMINISTRATOR": 1 << 3,
    "MANAGE_CHANNELS": 1 << 4,
    "MANAGE_GUILD": 1 << 5,
    "VIEW_AUDIT_LOG": 1 << 7,
    "VIEW_CHANNEL": 1 << 10,
    "SEND_MESSAGES": 1 << 11,
    "MANAGE_MESSAGES": 1 << 13,
    "ATTACH_FILES": 1 << 15,
    "READ_MESSAGE_HISTORY": 1 << 16,
    "MANAGE_ROLES": 1 << 28,
    "MANAGE_WEBHOOKS": 1 << 29,
    "MANAGE_THREADS": 1 << 34,
    "MODERATE_MEMBERS": 1 << 40,
}


def _permission_bits(guild: Mapping[str, Any]) -> int:
    # Discord serializes the bitfield as a decimal string
    raw = guild.get("permissions") or 0
    try:
        return int(raw)
    except (TypeError, ValueError):
        return 0


def has_permission(guild: Mapping[str, Any], permission: str) -> bool:
    """True if the user owns ``guild`` or holds the ``permission`` bit in it."""
    if guild.get("owner"):
        return True

    flag = PERMISSION_FLAGS.get(permission)
    if not flag:
        return False
    return (_permission_bits(guild) & flag) == flag


def filter_by_permission(guilds: Iterable[Mapping[str, Any]], permission: str = "MANAGE_GUILD") -> List[Mapping[str, Any]]:
    """Guilds in which the user owns the guild or holds ``permission``."""
    return [guild for guild in guilds if has_permission(guild, permission)]
