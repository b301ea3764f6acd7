# bridge/services.py
from flask import current_app

from .connection_pool import ConnectionPool
from .device_ops import DeviceService
from .scheduler import AutoSyncScheduler
from .store import AttendanceStore
from .sync import AttendanceSyncEngine

EXTENSION_KEY = "biometric_bridge"


class BridgeServices:
    """The long-lived objects one app instance owns: pool, store, engine, device ops, scheduler."""

    def __init__(self, app, pool=None):
        config = app.config
        self.pool = pool if pool is not None else ConnectionPool.from_config(config)
        self.store = AttendanceStore()
        self.engine = AttendanceSyncEngine.from_config(self.pool, self.store, config)
        self.devices = DeviceService.from_config(self.pool, self.store, config)
        self.scheduler = AutoSyncScheduler.from_config(app, self.engine, self.store)

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.stop()
        return self.pool.close_all()


def get_services() -> BridgeServices:
    return current_app.extensions[EXTENSION_KEY]
