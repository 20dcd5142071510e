"""
Token holder shared by every request of a console client.

Refresh is single flight: callers that saw the same stale access token wait on
one lock and reuse the token obtained by whoever refreshed first. When the
refresh itself fails the session enters an expired episode, listeners are
notified once, and requests parked with enqueue() can be replayed after the
operator logs in again.
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, Callable

from workers_api.core.errors import AuthExpiredError, WorkersError

logger = logging.getLogger(__name__)

RefreshFn = Callable[[str], tuple[str, str | None]]


class AuthSessionManager:
    def __init__(
        self,
        refresh_fn: RefreshFn,
        *,
        access_token: str | None = None,
        refresh_token: str | None = None,
        on_expired: Callable[[], None] | None = None,
    ) -> None:
        self._refresh_fn = refresh_fn
        self._access_token = access_token
        self._refresh_token = refresh_token
        self._lock = threading.Lock()
        self._expired = False
        self._listeners: list[Callable[[], None]] = [on_expired] if on_expired else []
        self._pending: deque[Callable[[], Any]] = deque()
        self.refresh_count = 0

    @property
    def expired(self) -> bool:
        return self._expired

    def acquire_token(self) -> str | None:
        with self._lock:
            return self._access_token

    def set_tokens(self, access_token: str, refresh_token: str | None) -> None:
        """Install tokens from a fresh login; ends the current expired episode."""
        with self._lock:
            self._access_token = access_token
            self._refresh_token = refresh_token
            self._expired = False

    def add_expiry_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def refresh(self, stale_token: str | None) -> str:
        with self._lock:
            if self._expired:
                raise AuthExpiredError('La sesion expiro; vuelva a iniciar sesion')
            if self._access_token and self._access_token != stale_token:
                return self._access_token
            if not self._refresh_token:
                notify = self._expire_locked()
            else:
                try:
                    access, refresh = self._refresh_fn(self._refresh_token)
                except WorkersError as exc:
                    logger.warning('token refresh failed: %s', exc.message)
                    notify = self._expire_locked()
                else:
                    self._access_token = access
                    if refresh:
                        self._refresh_token = refresh
                    self.refresh_count += 1
                    return access
        if notify:
            self._notify_expired()
        raise AuthExpiredError('La sesion expiro; vuelva a iniciar sesion')

    def _expire_locked(self) -> bool:
        first = not self._expired
        self._expired = True
        self._access_token = None
        self._refresh_token = None
        return first

    def _notify_expired(self) -> None:
        for listener in list(self._listeners):
            listener()

    def enqueue(self, replay: Callable[[], Any]) -> None:
        with self._lock:
            self._pending.append(replay)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def replay_pending(self) -> list[tuple[bool, Any]]:
        """
        Run parked requests in arrival order.

        Returns one (ok, result_or_error) pair per request; a failing replay does
        not stop the ones after it.
        """
        if self._expired:
            raise AuthExpiredError('No se pueden reintentar solicitudes sin una sesion activa')
        with self._lock:
            pending = list(self._pending)
            self._pending.clear()
        outcomes: list[tuple[bool, Any]] = []
        for replay in pending:
            try:
                outcomes.append((True, replay()))
            except WorkersError as exc:
                outcomes.append((False, exc))
        return outcomes
