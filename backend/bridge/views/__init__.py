# bridge/views/__init__.py
from flask import request

from ..errors import InvalidRequest


def json_body():
    return request.get_json(silent=True) or {}


def device_address(data, default_port=4370):
    """(ip, port) from a request body; 400 when ip is missing or port is not a number."""
    ip = str(data.get("ip") or "").strip()
    if not ip:
        raise InvalidRequest("Missing device ip")
    port = data.get("port") or default_port
    try:
        port = int(port)
    except (TypeError, ValueError):
        raise InvalidRequest(f"Invalid port: {data.get('port')!r}")
    if not 0 < port < 65536:
        raise InvalidRequest(f"Invalid port: {port}")
    return ip, port
