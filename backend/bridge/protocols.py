# bridge/protocols.py
import json
import random
import struct
import base64
import logging
from enum import Enum
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import List, Optional

from colorama import Fore
from zk.exception import ZKError

from .console import console_emit
from .errors import EnrollmentError, InvalidRequest, ProtocolError
from .identity import normalise_device_uid

logger = logging.getLogger(__name__)

FINGER_POSITIONS = [
    'left_thumb',
    'left_index',
    'left_middle',
    'left_ring',
    'left_pinky',
    'right_thumb',
    'right_index',
    'right_middle',
    'right_ring',
    'right_pinky',
]
ZK_QUALITY_SCORE = 95
CHECK_OUT_PUNCH = 1
MAX_USER_SLOT = 65535  # pyzk packs uid as an unsigned short


class Protocol(str, Enum):
    ZKTECO = "ZKTeco"
    ADMS = "ADMS"
    ANVIZ = "Anviz"
    SUPREMA = "Suprema"
    SIMULATED = "Simulated"

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        return cls.SIMULATED

    @property
    def implemented(self):
        return self is Protocol.ZKTECO


def fallback_note(protocol):
    protocol = Protocol.parse(protocol)
    if protocol is Protocol.SIMULATED:
        return "Simulated mode"
    return f"{protocol.value} protocol not implemented, falling back to simulation"


def validate_finger_index(value) -> int:
    if isinstance(value, bool):
        raise InvalidRequest(f"fingerIndex must be an integer 0-9, got {value!r}")
    try:
        index = int(value)
    except (TypeError, ValueError):
        raise InvalidRequest(f"fingerIndex must be an integer 0-9, got {value!r}")
    if isinstance(value, float) and not value.is_integer():
        raise InvalidRequest(f"fingerIndex must be an integer 0-9, got {value!r}")
    if not 0 <= index < len(FINGER_POSITIONS):
        raise InvalidRequest(f"fingerIndex out of range (0-9): {index}")
    return index


def finger_position(index) -> str:
    return FINGER_POSITIONS[validate_finger_index(index)]


def log_type_for(check_type) -> str:
    return "check_out" if check_type == CHECK_OUT_PUNCH else "check_in"


@dataclass
class RawAttendanceRecord:
    user_id: str
    timestamp: datetime
    check_type: Optional[int] = None
    method: str = "fingerprint"


@dataclass
class DeviceInfo:
    model: str
    serial_number: Optional[str]
    firmware: str
    platform: Optional[str]
    device_name: Optional[str]

    def to_dict(self):
        data = asdict(self)
        return {
            "model": data["model"],
            "serialNumber": data["serial_number"],
            "firmware": data["firmware"],
            "platform": data["platform"],
            "deviceName": data["device_name"],
        }


class DeviceAdapter:
    """Capability interface every protocol variant answers to."""
    protocol = None
    simulated = False

    def get_info(self) -> DeviceInfo:
        raise NotImplementedError

    def get_user_count(self) -> int:
        raise NotImplementedError

    def get_attendance_count(self) -> int:
        raise NotImplementedError

    def get_attendance_records(self) -> List[RawAttendanceRecord]:
        raise NotImplementedError

    def enroll_user(self, uid: int, finger_index: int) -> bytes:
        raise NotImplementedError


class ZKTecoAdapter(DeviceAdapter):
    """Speaks the ZKTeco protocol through a pyzk connection held by a DeviceSession."""
    protocol = Protocol.ZKTECO

    def __init__(self, session):
        self.session = session
        self.conn = session.conn

    def _call(self, what, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (ZKError, struct.error) as e:
            raise ProtocolError(f"ZKTeco protocol error while reading {what}: {e}") from e

    def get_info(self):
        firmware = self._call("firmware version", self.conn.get_firmware_version)
        if not firmware:
            raise ProtocolError("Device did not report a firmware version")
        serial = self._call("serial number", self.conn.get_serialnumber)
        platform = self._call("platform", self.conn.get_platform)
        name = self._call("device name", self.conn.get_device_name)
        return DeviceInfo(
            model=name or "K40",
            serial_number=serial or None,
            firmware=str(firmware),
            platform=platform or None,
            device_name=name or None,
        )

    def get_user_count(self):
        users = self._call("users", self.conn.get_users) or []
        return len(users)

    def get_attendance_count(self):
        self._call("sizes", self.conn.read_sizes)
        return int(getattr(self.conn, "records", 0) or 0)

    def get_attendance_records(self):
        self._call("disable device", self.conn.disable_device)
        try:
            logs = self._call("attendance", self.conn.get_attendance) or []
        finally:
            try:
                self.conn.enable_device()
            except ZKError:
                logger.warning("Could not re-enable device %s:%s", self.session.host, self.session.port)
        records = []
        for att in logs:
            user_id = getattr(att, "user_id", None)
            if user_id in (None, ""):
                user_id = getattr(att, "uid", None)
            ts = getattr(att, "timestamp", None)
            if user_id is None or ts is None:
                continue
            records.append(RawAttendanceRecord(
                user_id=str(user_id).strip(),
                timestamp=ts,
                check_type=getattr(att, "punch", None),
            ))
        return records

    def _user_slot(self, device_uid):
        """pyzk uid slot for `device_uid`: the existing user's slot, or the next free one."""
        users = self._call("users", self.conn.get_users) or []
        wanted = str(device_uid)
        for u in users:
            if normalise_device_uid(getattr(u, "user_id", None)) == wanted:
                return u.uid, False
        slot = max((getattr(u, "uid", 0) or 0 for u in users), default=0) + 1
        if slot > MAX_USER_SLOT:
            raise EnrollmentError("Enrollment failed - no free user slot on device")
        return slot, True

    def enroll_user(self, uid, finger_index):
        """`uid` is the derived device UID; it is written as the pyzk user_id string."""
        finger_index = validate_finger_index(finger_index)
        user_id = str(uid)
        slot, missing = self._user_slot(uid)
        if missing:
            console_emit(Fore.CYAN + f"    [ENROLL] creating user {user_id} in slot {slot} on device", level="debug",
                         host=self.session.host, port=self.session.port)
            self._call("user create", self.conn.set_user, uid=slot, name=user_id, user_id=user_id)

        ok = self._call("enrollment", self.conn.enroll_user, uid=slot, temp_id=finger_index, user_id=user_id)
        if not ok:
            raise EnrollmentError("Enrollment failed - device did not capture a fingerprint")

        finger = self._call("template", self.conn.get_user_template, uid=slot, temp_id=finger_index)
        template = getattr(finger, "template", None) if finger else None
        if not template:
            raise EnrollmentError("Enrollment failed - no template data received")
        return bytes(template)


class SimulatedAdapter(DeviceAdapter):
    """Plausible fake data for protocols without a real implementation, or demos."""
    simulated = True

    def __init__(self, protocol=Protocol.SIMULATED):
        self.protocol = Protocol.parse(protocol)

    def get_info(self):
        return DeviceInfo(model="Simulated", serial_number=None, firmware="simulated",
                          platform=self.protocol.value, device_name="Simulated device")

    def get_user_count(self):
        return 0

    def get_attendance_count(self):
        return 0

    def get_attendance_records(self):
        return []

    def enroll_user(self, uid, finger_index):
        finger_index = validate_finger_index(finger_index)
        payload = {
            "type": "fingerprint",
            "uid": uid,
            "fingerIndex": finger_index,
            "data": [random.randint(0, 255) for _ in range(512)],
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "protocol": self.protocol.value,
            "simulated": True,
        }
        return json.dumps(payload).encode("utf-8")


def get_adapter(protocol, session=None) -> DeviceAdapter:
    protocol = Protocol.parse(protocol)
    if protocol.implemented:
        if session is None:
            raise ValueError("ZKTeco adapter needs an open session")
        return ZKTecoAdapter(session)
    return SimulatedAdapter(protocol)


def encode_template(template: bytes) -> str:
    return base64.b64encode(template).decode("ascii")
