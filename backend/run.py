# backend/run.py
import atexit
import signal
import sys

from colorama import Fore

from bridge import create_app
from bridge.extensions import socketio
from bridge.services import EXTENSION_KEY

app = create_app()
_services = app.extensions[EXTENSION_KEY]


def _shutdown(signum=None, frame=None):
    if signum is not None:
        print(Fore.YELLOW + f"{signal.Signals(signum).name} received, shutting down gracefully")
    closed = _services.shutdown()
    print(Fore.CYAN + f"[SHUTDOWN] closed {closed} device connection(s)")
    if signum is not None:
        sys.exit(0)


if __name__ == "__main__":
    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)
    atexit.register(_services.shutdown)

    port = app.config["BRIDGE_PORT"]
    print(Fore.GREEN + f"\n✓ Biometric Bridge Service running on port {port}")
    print(Fore.GREEN + "✓ ZKTeco SDK: pyzk enabled")
    print(Fore.GREEN + f"✓ Health check: http://localhost:{port}/health")
    print("\nWaiting for device communication requests...\n")
    socketio.run(app, host="0.0.0.0", port=port, allow_unsafe_werkzeug=True)
