from __future__ import annotations

from dataclasses import dataclass

from .constants import G_US, LID, S_WHATSAPP_NET


@dataclass(slots=True)
class FullJid:
    user: str
    server: str
    device: int | None = None
    agent: str | None = None


def jid_decode(jid: str | None) -> FullJid | None:
    """
    Split `user[_agent][:device]@server` into its parts.

    Returns None for strings without a server part.
    """

    if not jid:
        return None
    sep = jid.find("@")
    if sep < 0:
        return None

    server = jid[sep + 1 :]
    user_agent, *device_parts = jid[:sep].split(":")
    user, *agent_parts = user_agent.split("_")

    device: int | None = None
    if device_parts and device_parts[0].isdigit():
        device = int(device_parts[0])
    agent = agent_parts[0] if agent_parts else None
    return FullJid(user=user, server=server, device=device, agent=agent)


def jid_user(jid: str | None) -> str:
    """User part of a JID with any agent/device suffix stripped (`"123:4@lid"` -> `"123"`)."""

    decoded = jid_decode(jid)
    if decoded is not None:
        return decoded.user
    if not jid:
        return ""
    return jid.split(":")[0]


def phone_jid(user_or_jid: str) -> str:
    """Normalize a phone number or phone JID to `<user>@s.whatsapp.net`."""

    user = jid_user(user_or_jid) if "@" in user_or_jid else user_or_jid.split(":")[0]
    return f"{user}{S_WHATSAPP_NET}"


def is_lid_user(jid: str | None) -> bool:
    return bool(jid and jid.endswith(LID))


def is_group(jid: str | None) -> bool:
    return bool(jid and jid.endswith(G_US))


def is_user(jid: str | None) -> bool:
    return bool(jid and jid.endswith(S_WHATSAPP_NET))
