import struct
from datetime import datetime, timedelta

import pytest

from bridge import create_app
from bridge.config import TestingConfig
from bridge.connection_pool import ConnectionPool
from bridge.extensions import db
from bridge.models import BiometricDevice, Employee
from bridge.services import EXTENSION_KEY


class FakeAttendance:
    def __init__(self, user_id, timestamp, punch=0, uid=None):
        self.user_id = user_id
        self.uid = uid
        self.timestamp = timestamp
        self.punch = punch
        self.status = 1


class FakeUser:
    def __init__(self, uid, user_id=None):
        self.uid = uid
        self.user_id = user_id or str(uid)


class FakeFinger:
    def __init__(self, template):
        self.template = template


class FakeZK:
    """Stands in for a connected pyzk ZK object."""

    def __init__(self, attendance=None, users=None, firmware="Ver 6.60 Apr 28 2017",
                 template=b"\x01\x02\x03\x04", enroll_ok=True):
        self.is_connect = True
        self._attendance = list(attendance or [])
        self._users = list(users or [])
        self.firmware = firmware
        self.template = template
        self.enroll_ok = enroll_ok
        self.calls = []
        self.users = 0
        self.records = 0

    def get_firmware_version(self):
        return self.firmware

    def get_serialnumber(self):
        return "CQQC225261110"

    def get_platform(self):
        return "ZMM220_TFT"

    def get_device_name(self):
        return "K40"

    def get_users(self):
        return list(self._users)

    def read_sizes(self):
        self.users = len(self._users)
        self.records = len(self._attendance)
        return True

    def get_attendance(self):
        self.calls.append("get_attendance")
        return list(self._attendance)

    def disable_device(self):
        return True

    def enable_device(self):
        return True

    def set_user(self, uid=None, name='', privilege=0, password='', group_id='', user_id='', card=0):
        self.calls.append(("set_user", uid, user_id))
        self._users.append(FakeUser(uid, user_id))

    def enroll_user(self, uid=0, temp_id=0, user_id=''):
        self.calls.append(("enroll_user", uid, temp_id))
        return self.enroll_ok

    def get_user_template(self, uid, temp_id=0, user_id=''):
        if not self.template:
            return None
        return FakeFinger(self.template)

    def disconnect(self):
        self.calls.append("disconnect")
        self.is_connect = False
        return True


class PackingZK(FakeZK):
    """Packs uid as an unsigned short on user writes, as pyzk does."""

    def set_user(self, uid=None, name='', privilege=0, password='', group_id='', user_id='', card=0):
        struct.pack("H", uid)
        super().set_user(uid=uid, name=name, user_id=user_id)

    def enroll_user(self, uid=0, temp_id=0, user_id=''):
        struct.pack("H", uid)
        return super().enroll_user(uid=uid, temp_id=temp_id, user_id=user_id)


class FakeConnector:
    """Connector for ConnectionPool: hands out FakeZK objects per host, or raises."""

    def __init__(self, default=None):
        self.default = default or FakeZK()
        self.devices = {}
        self.errors = {}
        self.calls = []

    def __call__(self, host, port, timeout):
        self.calls.append((host, port, timeout))
        if host in self.errors:
            raise self.errors[host]
        device = self.devices.get(host, self.default)
        device.is_connect = True
        return device


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def app(connector):
    app = create_app(TestingConfig, pool=ConnectionPool(connector=connector, default_timeout=1))
    with app.app_context():
        db.create_all()
        yield app
        services = app.extensions[EXTENSION_KEY]
        services.shutdown()
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions[EXTENSION_KEY]


@pytest.fixture
def device(app):
    d = BiometricDevice(device_id="K40-1", device_name="K40 Lobby", ip_address="10.0.0.1",
                        port=4370, protocol="ZKTeco", is_online=True, auto_sync_enabled=True)
    db.session.add(d)
    db.session.commit()
    return d


@pytest.fixture
def employees(app):
    rows = [
        Employee(employee_code="EMP000123", full_name="Ada"),
        Employee(employee_code="EMP000456", full_name="Grace"),
        Employee(employee_code="CONTRACTOR", full_name="No Digits"),
    ]
    db.session.add_all(rows)
    db.session.commit()
    return rows


@pytest.fixture
def punch_time():
    return (datetime.utcnow() - timedelta(hours=2)).replace(microsecond=0)
