# bridge/connection_pool.py
import logging
import threading
from contextlib import contextmanager
from colorama import Fore
from zk import ZK
from zk.exception import ZKError

from .console import console_emit
from .errors import classify_connect_error

logger = logging.getLogger(__name__)


class DeviceSession:
    """One live connection to a terminal, owned by the ConnectionPool."""

    def __init__(self, host, port, timeout, conn):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.conn = conn

    @property
    def key(self):
        return (self.host, self.port)

    @property
    def connected(self):
        return bool(getattr(self.conn, "is_connect", False))

    def close(self):
        try:
            self.conn.enable_device()
        except ZKError:
            logger.debug("enable_device failed before disconnect from %s:%s", self.host, self.port)
        self.conn.disconnect()

    def __repr__(self):
        return f"<DeviceSession {self.host}:{self.port} connected={self.connected}>"


def zk_connector(password=0, force_udp=False, ommit_ping=True):
    """Build a connector that opens a pyzk connection."""
    def _connect(host, port, timeout):
        zk = ZK(host, port=port, timeout=timeout, password=password,
                force_udp=force_udp, ommit_ping=ommit_ping)
        return zk.connect()
    return _connect


class ConnectionPool:
    """
    Registry of live device sessions keyed by (host, port).

    The registry itself is guarded by a lock; `session()` additionally holds a
    per-address lock so only one operation talks to a device at a time.
    """

    def __init__(self, connector=None, default_timeout=10):
        self._connector = connector or zk_connector()
        self.default_timeout = default_timeout
        self._sessions = {}
        self._lock = threading.Lock()
        self._address_locks = {}

    @classmethod
    def from_config(cls, config):
        connector = zk_connector(
            password=config.get("DEVICE_PASSWORD", 0),
            force_udp=config.get("DEVICE_FORCE_UDP", False),
            ommit_ping=config.get("DEVICE_OMMIT_PING", True),
        )
        return cls(connector=connector, default_timeout=config.get("DEVICE_TIMEOUT", 10))

    @property
    def active_count(self):
        with self._lock:
            return len(self._sessions)

    def get(self, host, port):
        with self._lock:
            return self._sessions.get((host, int(port)))

    def address_lock(self, host, port):
        key = (host, int(port))
        with self._lock:
            lock = self._address_locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._address_locks[key] = lock
            return lock

    def acquire(self, host, port, timeout=None):
        """
        Return the live session for (host, port), opening one if needed.
        Raises DeviceConnectionError / ProtocolError when the device can't be reached.
        """
        port = int(port)
        key = (host, port)
        timeout = timeout or self.default_timeout

        with self._lock:
            existing = self._sessions.get(key)
            if existing is not None:
                if existing.connected:
                    return existing
                # stale entry: drop it before opening a fresh one
                self._sessions.pop(key, None)
        if existing is not None:
            self._close_quietly(existing)

        console_emit(Fore.YELLOW + f"[CONNECT] {host}:{port} (timeout {timeout}s)", level="debug", host=host, port=port)
        try:
            conn = self._connector(host, port, timeout)
        except Exception as e:
            err = classify_connect_error(e, host, port)
            console_emit(Fore.RED + f"[CONNECT FAILED] {host}:{port}: {err.message} ({e})", level="error", host=host, port=port)
            raise err from e

        session = DeviceSession(host, port, timeout, conn)
        with self._lock:
            replaced = self._sessions.get(key)
            self._sessions[key] = session
        if replaced is not None and replaced is not session:
            self._close_quietly(replaced)
        console_emit(Fore.GREEN + f"[CONNECTED] {host}:{port}", level="info", host=host, port=port)
        return session

    def release(self, host, port):
        """Disconnect and forget the session for (host, port). No-op when absent."""
        with self._lock:
            session = self._sessions.pop((host, int(port)), None)
        if session is None:
            return
        self._close_quietly(session)
        console_emit(Fore.RED + f"[DISCONNECTED] {host}:{port}", level="info", host=host, port=port)

    def close_all(self):
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            self._close_quietly(session)
        if sessions:
            console_emit(Fore.CYAN + f"[POOL] closed {len(sessions)} device connection(s)", level="info")
        return len(sessions)

    @contextmanager
    def session(self, host, port, timeout=None):
        """Hold the device exclusively for one operation; always released on exit."""
        with self.address_lock(host, port):
            session = self.acquire(host, port, timeout)
            try:
                yield session
            finally:
                self.release(host, port)

    @staticmethod
    def _close_quietly(session):
        try:
            session.close()
        except Exception:
            logger.warning("Error closing device connection %s:%s", session.host, session.port, exc_info=True)
