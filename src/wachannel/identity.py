from __future__ import annotations

from collections.abc import Awaitable, Callable

from loguru import logger

from .jid import is_lid_user, jid_user, phone_jid
from .session import SessionUser

LidLookup = Callable[[str], Awaitable[str | None]]


class IdentityResolver:
    """
    Translate per-device LID JIDs (`<lid>@lid`) into phone JIDs.

    Mappings are cached by LID user for the lifetime of the resolver and are
    never replaced once set. The cache has one entry per distinct LID seen, so
    it is not evicted.
    """

    def __init__(self, lookup: LidLookup | None = None) -> None:
        self._lookup = lookup
        self._lid_to_phone: dict[str, str] = {}

    def set_lookup(self, lookup: LidLookup | None) -> None:
        """Point external lookups at the current session (sessions change on reconnect)."""

        self._lookup = lookup

    def __len__(self) -> int:
        return len(self._lid_to_phone)

    def remember(self, lid: str, phone: str) -> bool:
        lid_user = jid_user(lid)
        phone_user = jid_user(phone)
        if not lid_user or not phone_user or lid_user in self._lid_to_phone:
            return False
        self._lid_to_phone[lid_user] = phone_jid(phone_user)
        return True

    def seed(self, user: SessionUser | None) -> None:
        """Map the account's own LID to its phone JID (self-chat messages arrive as LID)."""

        if user is None or not user.lid or not user.id:
            return
        if self.remember(user.lid, user.id):
            logger.debug("LID to phone mapping set {} -> {}", jid_user(user.lid), jid_user(user.id))

    async def translate(self, jid: str) -> str:
        if not is_lid_user(jid):
            return jid

        lid_user = jid_user(jid)
        cached = self._lid_to_phone.get(lid_user)
        if cached:
            logger.debug("Translated LID {} to {} (cached)", jid, cached)
            return cached

        if self._lookup is None:
            return jid

        try:
            pn = await self._lookup(jid)
        except Exception as e:
            logger.debug("Failed to resolve LID {}: {}", jid, e)
            return jid

        if not pn:
            return jid

        self.remember(lid_user, pn)
        resolved = self._lid_to_phone.get(lid_user)
        if not resolved:
            return jid
        logger.info("Translated LID {} to {} (lookup)", jid, resolved)
        return resolved
