# backend/bridge/errors.py
import errno
import socket

TIMEOUT = "timeout"
REFUSED = "refused"
UNREACHABLE = "unreachable"

_UNREACHABLE_ERRNOS = {errno.EHOSTUNREACH, errno.ENETUNREACH, errno.EHOSTDOWN}
_RESET_ERRNOS = {errno.ECONNRESET, errno.ECONNABORTED}


class BridgeError(Exception):
    """Base class for every failure the bridge reports back to a caller."""
    code = "bridge_error"
    http_status = 500

    def __init__(self, message, possible_causes=None, troubleshooting=None):
        super().__init__(message)
        self.message = message
        self.possible_causes = list(possible_causes or [])
        self.troubleshooting = list(troubleshooting or [])

    def diagnostic(self):
        return {
            "networkReachable": False,
            "error": self.code,
            "possibleCauses": list(self.possible_causes),
            "troubleshooting": list(self.troubleshooting),
        }

    def to_dict(self):
        return {
            "success": False,
            "message": self.message,
            "error": self.code,
        }


class InvalidRequest(BridgeError):
    code = "invalid_request"
    http_status = 400


class DeviceConnectionError(BridgeError):
    """Transport could not be established. `kind` is timeout, refused or unreachable."""
    code = "connection_error"
    http_status = 504

    def __init__(self, kind, host, port, message, possible_causes=None, troubleshooting=None):
        super().__init__(message, possible_causes, troubleshooting)
        self.kind = kind
        self.host = host
        self.port = port
        self.code = f"connection_{kind}"


class ProtocolError(BridgeError):
    """Device answered but the data was unusable."""
    code = "protocol_error"
    http_status = 502


class EnrollmentError(BridgeError):
    code = "enrollment_error"
    http_status = 502


class StoreError(BridgeError):
    code = "store_error"
    http_status = 500


# ---------- connect failure classification ----------

def _errno_of(exc):
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        value = getattr(exc, "errno", None)
        if value:
            return value
        exc = exc.__cause__ or exc.__context__
    return None


def timeout_error(host, port):
    return DeviceConnectionError(
        TIMEOUT, host, port,
        "Connection timeout. Device is not responding.",
        possible_causes=[
            "Device is powered off",
            "Wrong IP address",
            "Device is on a different network",
            f"Firewall blocking port {port}",
        ],
        troubleshooting=[
            f"Ping device: ping {host}",
            f"Test port: telnet {host} {port}",
            "Check device network settings in the terminal menu",
            "Verify this computer is on the same network as the device",
        ],
    )


def refused_error(host, port):
    return DeviceConnectionError(
        REFUSED, host, port,
        "Connection refused. ZKTeco service is not running on device.",
        possible_causes=[
            "Device is offline",
            "Wrong port number (should be 4370)",
            "Device needs to be restarted",
        ],
        troubleshooting=[
            "Check the device is powered on",
            "Verify port in device menu: Communication > Network > Port",
            "Restart the device",
        ],
    )


def unreachable_error(host, port):
    return DeviceConnectionError(
        UNREACHABLE, host, port,
        "Host unreachable. Cannot reach device network.",
        possible_causes=[
            "Device not on network",
            "Wrong subnet",
            "Network routing issue",
        ],
        troubleshooting=[
            f"Ping device: ping {host}",
            "Check network cable",
            "Verify subnet mask on the device",
        ],
    )


def protocol_failure(exc):
    return ProtocolError(
        f"ZKTeco protocol error: {exc}",
        possible_causes=[
            "Device might not be a ZKTeco device",
            "Firmware incompatibility",
            "Device requires authentication",
        ],
        troubleshooting=[
            "Verify device model is K40 or compatible",
            "Check firmware version",
            "Try different IP/port combination",
        ],
    )


def classify_connect_error(exc, host, port):
    """Map an exception raised while opening a device connection to a BridgeError."""
    if isinstance(exc, BridgeError):
        return exc

    text = str(exc).lower()
    code = _errno_of(exc)

    if isinstance(exc, (socket.timeout, TimeoutError)) or code == errno.ETIMEDOUT \
            or "timed out" in text or "timeout" in text:
        return timeout_error(host, port)
    if isinstance(exc, (ConnectionRefusedError, ConnectionResetError, ConnectionAbortedError)) \
            or code == errno.ECONNREFUSED or code in _RESET_ERRNOS \
            or "refused" in text or "reset by peer" in text:
        return refused_error(host, port)
    if code in _UNREACHABLE_ERRNOS or "unreachable" in text or "no route to host" in text \
            or "can't reach device" in text:
        return unreachable_error(host, port)
    return protocol_failure(exc)
