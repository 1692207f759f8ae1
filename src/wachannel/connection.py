from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from loguru import logger

from .config import ChannelConfig
from .constants import DisconnectReason
from .exceptions import AuthRequiredError, ChannelConnectionError
from .session import ConnectionUpdate, Session, SessionFactory, disconnect_status_code
from .util.asyncio import cancel_suppress, ensure_task


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    LOGGED_OUT = "logged_out"


class ConnectionManager:
    """
    Owns the current session and the connection state machine.

        DISCONNECTED -> CONNECTING -> OPEN
        OPEN | CONNECTING -> DISCONNECTED     (close, reconnect scheduled)
        any -> LOGGED_OUT                     (logout or pairing required, terminal)

    A new session is built from the factory for every attempt. Failed attempts
    are retried every `reconnect_delay_s` until one succeeds; there is no cap.
    Only events from the current session are acted on.
    """

    def __init__(
        self,
        factory: SessionFactory,
        config: ChannelConfig,
        *,
        on_open: Callable[[Session], Awaitable[None]] | None = None,
        on_session: Callable[[Session], None] | None = None,
        on_logged_out: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self.factory = factory
        self.config = config
        self.on_open = on_open
        self.on_session = on_session
        self.on_logged_out = on_logged_out

        self.state = ConnectionState.DISCONNECTED
        self.session: Session | None = None
        self.attempts = 0
        self.auth_error: AuthRequiredError | None = None

        self._first_open: asyncio.Future[None] | None = None
        self._logged_out = asyncio.Event()
        self._reconnect_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._stopped = False

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        logger.debug("Connection state {} -> {}", self.state.value, state.value)
        self.state = state

    async def start(self) -> None:
        """
        Connect and wait for the first open.

        Later disconnects are handled silently. Raises `AuthRequiredError` if
        the session is logged out before it ever opens.
        """

        if self.auth_error is not None:
            raise self.auth_error
        if self._stopped:
            # Reconnecting after stop(): start over with a fresh first-open signal.
            self._stopped = False
            self._first_open = None
        if self._first_open is None:
            self._first_open = asyncio.get_running_loop().create_future()
            self._schedule_reconnect(initial=True)
        await asyncio.shield(self._first_open)

    async def stop(self) -> None:
        """Close the session without reconnecting."""

        self._stopped = True
        await cancel_suppress(self._reconnect_task)
        self._reconnect_task = None
        if self.state is not ConnectionState.LOGGED_OUT:
            self._set_state(ConnectionState.DISCONNECTED)
        await self._release()

    async def _release(self) -> None:
        """Detach and close the current session and cancel its background work."""

        session, self.session = self.session, None
        if session is not None:
            session.events.remove_all_listeners()
            try:
                await session.close()
            except Exception as e:
                logger.debug("Error while closing session: {}", e)
        for task in list(self._tasks):
            await cancel_suppress(task)

    async def wait_until_logged_out(self) -> None:
        """Block until the session is logged out, then raise `AuthRequiredError`."""

        await self._logged_out.wait()
        raise self.auth_error or AuthRequiredError()

    def spawn(self, coro: Any, *, name: str) -> asyncio.Task[Any]:
        return ensure_task(coro, name=name, tasks=self._tasks)

    def _schedule_reconnect(self, *, initial: bool = False) -> None:
        if self._stopped or self.state is ConnectionState.LOGGED_OUT:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = ensure_task(
            self._reconnect_loop(initial=initial), name="wachannel.reconnect"
        )

    async def _reconnect_loop(self, *, initial: bool) -> None:
        if not initial:
            logger.info("Reconnecting...")
        while not self._stopped and self.state is not ConnectionState.LOGGED_OUT:
            try:
                await self._attempt()
                return
            except Exception as e:
                logger.error(
                    "Connection attempt failed, retrying in {}s: {}",
                    self.config.reconnect_delay_s,
                    e,
                )
            await asyncio.sleep(self.config.reconnect_delay_s)

    async def _attempt(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        self.attempts += 1
        try:
            session = await self.factory(self.config)
        except Exception as e:
            self._set_state(ConnectionState.DISCONNECTED)
            raise ChannelConnectionError(f"failed to create session: {e}") from e

        previous, self.session = self.session, session
        if previous is not None:
            previous.events.remove_all_listeners()
        session.events.on("connection.update", lambda u: self._on_update(session, u))
        session.events.on("creds.update", lambda _creds: self._on_creds(session))
        if self.on_session is not None:
            self.on_session(session)

    async def _on_creds(self, session: Session) -> None:
        try:
            await session.save_creds()
        except Exception as e:
            logger.error("Failed to save credentials: {}", e)

    async def _on_update(self, session: Session, update: ConnectionUpdate) -> None:
        if session is not self.session or self.state is ConnectionState.LOGGED_OUT:
            return

        if update.qr:
            logger.error("WhatsApp authentication required: the session is not paired")
            await self._enter_logged_out(AuthRequiredError("pairing required"))
            return

        if update.connection == "connecting":
            self._set_state(ConnectionState.CONNECTING)
        elif update.connection == "close":
            code = disconnect_status_code(update.last_disconnect)
            if code == DisconnectReason.LOGGED_OUT:
                logger.info("Logged out. Re-authenticate to continue.")
                await self._enter_logged_out(AuthRequiredError("logged out", status_code=code))
                return
            self._set_state(ConnectionState.DISCONNECTED)
            logger.info("Connection closed (reason={}, reconnect={})", code, not self._stopped)
            self._schedule_reconnect()
        elif update.connection == "open":
            self._set_state(ConnectionState.OPEN)
            logger.info("Connected to WhatsApp")
            if self.on_open is not None:
                self.spawn(self._run_on_open(self.on_open, session), name="wachannel.on_open")
            if self._first_open is not None and not self._first_open.done():
                self._first_open.set_result(None)

    async def _run_on_open(
        self, on_open: Callable[[Session], Awaitable[None]], session: Session
    ) -> None:
        try:
            await on_open(session)
        except Exception:
            logger.exception("Post-open work failed")

    async def _enter_logged_out(self, err: AuthRequiredError) -> None:
        self._set_state(ConnectionState.LOGGED_OUT)
        self.auth_error = err
        if self._reconnect_task is not asyncio.current_task():
            await cancel_suppress(self._reconnect_task)
        self._reconnect_task = None
        if self._first_open is not None and not self._first_open.done():
            self._first_open.set_exception(err)
        self._logged_out.set()

        await self._release()
        if self.on_logged_out is not None:
            try:
                await self.on_logged_out()
            except Exception:
                logger.exception("Logged-out cleanup failed")
