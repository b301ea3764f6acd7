# bridge/logging_handler.py
import logging
import os
import re
import sys
import threading
from collections import deque
from datetime import datetime
from logging.handlers import RotatingFileHandler

from .console import strip_ansi
from .extensions import socketio

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# werkzeug / reloader chatter that the dashboard has no use for
_NOISE = re.compile(
    r"Restarting with stat|Debugger is active|Debugger PIN|Serving Flask app|Press CTRL\+C to quit",
    re.IGNORECASE,
)


class RepeatFilter(logging.Filter):
    """Drops a message identical to one forwarded less than `window` seconds ago."""

    def __init__(self, window=0.5, size=200):
        super().__init__()
        self.window = window
        self._recent = deque(maxlen=size)
        self._lock = threading.Lock()

    def filter(self, record):
        msg = record.getMessage()
        if not msg or _NOISE.search(msg):
            return False
        now = datetime.utcnow()
        with self._lock:
            for text, ts in reversed(self._recent):
                if (now - ts).total_seconds() > self.window:
                    break
                if text == msg:
                    return False
            self._recent.append((msg, now))
        return True


class SocketIOLogHandler(logging.Handler):
    """Forwards bridge log records to dashboard clients as 'log' events."""

    def emit(self, record):
        try:
            socketio.emit('log', {
                "timestamp": datetime.utcnow().isoformat(timespec='milliseconds') + 'Z',
                "logger": record.name,
                "level": record.levelname,
                "message": strip_ansi(self.format(record)),
            })
        except Exception:
            self.handleError(record)


_initialized = False
_init_lock = threading.Lock()


def init_logging(app):
    """
    Configure the 'bridge' logger tree once per process: level from LOG_LEVEL,
    a stream handler, an optional rotating file under LOG_DIR, and the
    Socket.IO forwarder when SOCKETIO_LOGGING is on.
    """
    global _initialized
    with _init_lock:
        if _initialized:
            return
        root = logging.getLogger("bridge")
        root.setLevel(app.config.get("LOG_LEVEL", "INFO"))
        formatter = logging.Formatter(LOG_FORMAT)
        not_console = lambda record: not record.name.startswith("bridge.console")

        # console.py already prints its lines in colour
        stream = logging.StreamHandler(sys.stderr)
        stream.setFormatter(formatter)
        stream.addFilter(not_console)
        root.addHandler(stream)

        log_dir = app.config.get("LOG_DIR")
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
            fh = RotatingFileHandler(os.path.join(log_dir, "bridge.log"), maxBytes=1024 * 1024, backupCount=5)
            fh.setFormatter(formatter)
            root.addHandler(fh)

        if app.config.get("SOCKETIO_LOGGING", False):
            handler = SocketIOLogHandler()
            handler.setFormatter(logging.Formatter("%(message)s"))
            handler.addFilter(not_console)
            handler.addFilter(RepeatFilter())
            root.addHandler(handler)

        _initialized = True
