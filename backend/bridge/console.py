# bridge/console.py
import re
import logging
from datetime import datetime
from colorama import init as colorama_init, Fore
from .extensions import socketio

colorama_init(autoreset=True)

logger = logging.getLogger("bridge.console")

ANSI_RE = re.compile(r'\x1b\[[0-9;]*m')
COLOR_MAP = {
    Fore.GREEN: 'green',
    Fore.YELLOW: 'yellow',
    Fore.CYAN: 'cyan',
    Fore.BLUE: 'blue',
    Fore.MAGENTA: 'magenta',
    Fore.WHITE: 'white',
    Fore.RED: 'red',
}
LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "new": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def strip_ansi(s: str) -> str:
    return ANSI_RE.sub('', s) if s else s


def console_emit(raw_text_with_color: str, level: str = "info", host=None, port=None, extra: dict = None):
    """
    Print a coloured console line, log it, and push it to connected Socket.IO clients.
    `host`/`port` tag the line with the device it concerns.
    """
    try:
        print(raw_text_with_color)
    except Exception:
        print(strip_ansi(raw_text_with_color))

    text = strip_ansi(raw_text_with_color)
    logger.log(LEVELS.get(level, logging.INFO), text.strip())

    color_name = None
    for code, name in COLOR_MAP.items():
        if code and code in raw_text_with_color:
            color_name = name
            break
    payload = {
        "type": "console",
        "level": level,
        "text": text,
        "color": color_name,
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }
    if host is not None:
        payload["device"] = f"{host}:{port}" if port is not None else str(host)
    if extra:
        payload["extra"] = extra

    try:
        socketio.emit("console", payload)
    except Exception:
        # no server attached (CLI, tests)
        pass
