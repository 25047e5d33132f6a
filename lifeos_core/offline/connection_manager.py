# =============================================================================
# lifeos_core/offline/connection_manager.py
# Connection Status Detection and Management
# =============================================================================
"""
ConnectionManager - tracks whether the remote store can be used.

States:
    OFFLINE                  no network; every write is queued
    ONLINE_UNAUTHENTICATED   network, but no usable session
    ONLINE_AUTHENTICATED     writes go straight to the remote store

Transitions come from the platform (notify_connectivity), from the auth
layer (login/logout) and from the remote store itself: the first
AuthExpiredError drops to ONLINE_UNAUTHENTICATED and tears the session down
exactly once, however many requests fail with it at the same time.

An optional background probe (TCP connect to the Supabase host) can stand
in for a platform connectivity signal.
"""

from __future__ import annotations
import socket
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional
from urllib.parse import urlparse
import logging

from lifeos_core.auth import AuthProvider

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    """Connection status states."""
    OFFLINE = "offline"
    ONLINE_UNAUTHENTICATED = "online_unauthenticated"
    ONLINE_AUTHENTICATED = "online_authenticated"


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    network_available: bool = False
    authenticated: bool = False
    session_expired: bool = False
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None

    @property
    def status(self) -> ConnectionStatus:
        if not self.network_available:
            return ConnectionStatus.OFFLINE
        if self.authenticated and not self.session_expired:
            return ConnectionStatus.ONLINE_AUTHENTICATED
        return ConnectionStatus.ONLINE_UNAUTHENTICATED


class ConnectionManager:
    """
    Connectivity and session state for the sync coordinator.

    Usage:
        manager = ConnectionManager(auth, supabase_url=settings.supabase_url)
        manager.set_network_available(True)
        if manager.is_authenticated_online:
            ...
    """

    CHECK_INTERVAL_ONLINE = 30      # Seconds between probes when online
    CHECK_INTERVAL_OFFLINE = 10     # Seconds between probes when offline
    CONNECTION_TIMEOUT = 5          # Timeout for the TCP probe

    def __init__(
        self,
        auth: AuthProvider,
        supabase_url: Optional[str] = None,
        probe_timeout: float = CONNECTION_TIMEOUT,
    ):
        self._auth = auth
        self._supabase_url = supabase_url
        self._probe_timeout = probe_timeout
        self._state = ConnectionState()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[ConnectionState], None]] = []
        self._monitor_thread: Optional[threading.Thread] = None
        self._stop_monitoring = threading.Event()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def is_online(self) -> bool:
        return self._state.network_available

    @property
    def is_offline(self) -> bool:
        return not self._state.network_available

    @property
    def is_authenticated_online(self) -> bool:
        return self._state.status == ConnectionStatus.ONLINE_AUTHENTICATED

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def _transition(self, change: Callable[[ConnectionState], None]) -> bool:
        """Apply a state change; notify callbacks if the status moved."""
        with self._lock:
            old_status = self._state.status
            change(self._state)
            new_status = self._state.status
            if new_status == ConnectionStatus.ONLINE_AUTHENTICATED:
                self._state.last_online = datetime.now()

        if old_status != new_status:
            logger.info(f"Connection status changed: {old_status.value} -> {new_status.value}")
            self._notify_callbacks()
            return True
        return False

    def set_network_available(self, available: bool) -> bool:
        """
        Platform connectivity signal.

        Returns:
            True if the status changed
        """
        def change(state: ConnectionState):
            state.network_available = available
            state.last_check = datetime.now()
            if available:
                state.consecutive_failures = 0
                state.error_message = None
            else:
                state.consecutive_failures += 1
            # Pick up a session that already exists (e.g. restored on startup)
            if available and not state.session_expired:
                state.authenticated = self._auth.is_authenticated()

        return self._transition(change)

    def mark_authenticated(self) -> bool:
        """A user signed in; re-arms the session-expiry latch."""
        def change(state: ConnectionState):
            state.authenticated = True
            state.session_expired = False

        return self._transition(change)

    def mark_signed_out(self) -> bool:
        def change(state: ConnectionState):
            state.authenticated = False

        return self._transition(change)

    def report_auth_expired(self) -> bool:
        """
        Handle a rejected session token.

        The first caller flips the latch and clears the session; every
        concurrent or later caller (until the next login) is a no-op.

        Returns:
            True for the one caller that performed the teardown
        """
        with self._lock:
            if self._state.session_expired:
                return False
            old_status = self._state.status
            self._state.session_expired = True
            self._state.authenticated = False
            self._state.error_message = "Session expired"

        logger.warning("Session expired; remote writes paused until sign-in")
        try:
            self._auth.clear_session()
        except Exception as e:
            logger.error(f"Error clearing expired session: {e}")

        if old_status != self._state.status:
            self._notify_callbacks()
        return True

    # =========================================================================
    # BACKGROUND PROBE
    # =========================================================================

    def check_connection(self) -> ConnectionState:
        """Probe the Supabase host and feed the result into the state machine."""
        self.set_network_available(self._check_supabase())
        return self._state

    def _check_supabase(self) -> bool:
        """TCP connect to the Supabase host."""
        if not self._supabase_url:
            return False

        parsed = urlparse(self._supabase_url)
        host = parsed.hostname
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        if not host:
            return False

        try:
            with socket.create_connection((host, port), timeout=self._probe_timeout):
                return True
        except OSError as e:
            self._state.error_message = str(e)
            logger.debug(f"Supabase probe failed: {e}")
            return False

    def start_monitoring(self) -> None:
        """Start background connection monitoring."""
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return

        self._stop_monitoring.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitoring_loop,
            daemon=True,
            name="ConnectionMonitor"
        )
        self._monitor_thread.start()
        logger.debug("Connection monitoring started")

    def stop_monitoring(self) -> None:
        """Stop background connection monitoring."""
        self._stop_monitoring.set()
        if self._monitor_thread:
            self._monitor_thread.join(timeout=5)
        logger.debug("Connection monitoring stopped")

    def _monitoring_loop(self) -> None:
        while not self._stop_monitoring.is_set():
            try:
                self.check_connection()
            except Exception as e:
                logger.error(f"Error in connection check: {e}")

            interval = self.CHECK_INTERVAL_ONLINE if self.is_online else self.CHECK_INTERVAL_OFFLINE
            if self._stop_monitoring.wait(timeout=interval):
                break

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def register_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """
        Register a callback for connection status changes.

        Args:
            callback: Function called with ConnectionState when status changes
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}")

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "status": self._state.status.value,
            "is_online": self.is_online,
            "authenticated": self._state.authenticated,
            "session_expired": self._state.session_expired,
            "last_check": self._state.last_check.isoformat() if self._state.last_check else None,
            "last_online": self._state.last_online.isoformat() if self._state.last_online else None,
            "failures": self._state.consecutive_failures,
            "error": self._state.error_message,
        }
