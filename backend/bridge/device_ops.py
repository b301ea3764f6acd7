# bridge/device_ops.py
import time
import random
import logging
from datetime import datetime

from colorama import Fore

from .console import console_emit
from .errors import BridgeError, EnrollmentError, InvalidRequest, StoreError
from .identity import collisions_for, device_uid_for
from .protocols import (
    Protocol,
    ZK_QUALITY_SCORE,
    encode_template,
    fallback_note,
    finger_position,
    get_adapter,
    validate_finger_index,
)

logger = logging.getLogger(__name__)


class DeviceService:
    """Connection test, enrollment and heartbeat status for a single device."""

    def __init__(self, pool, store, simulated_delay=2.0, stale_after_seconds=600, timeout=None):
        self.pool = pool
        self.store = store
        self.simulated_delay = simulated_delay
        self.stale_after_seconds = stale_after_seconds
        self.timeout = timeout

    @classmethod
    def from_config(cls, pool, store, config):
        return cls(
            pool, store,
            simulated_delay=config.get("SIMULATED_DELAY_SECONDS", 2.0),
            stale_after_seconds=config.get("HEARTBEAT_STALE_SECONDS", 600),
            timeout=config.get("DEVICE_TIMEOUT"),
        )

    # -------------------------
    # Connection test
    # -------------------------
    def test_connection(self, device_ref, host, port, protocol):
        protocol = Protocol.parse(protocol)
        console_emit(Fore.YELLOW + f"[TEST] {protocol.value} device at {host}:{port}", level="info", host=host, port=port)
        if not protocol.implemented:
            return {
                "success": False,
                "online": False,
                "notImplemented": True,
                "message": "Only ZKTeco protocol is currently supported with real device communication",
            }

        device = self.store.get_device(device_ref)
        try:
            with self.pool.session(host, port, self.timeout) as session:
                adapter = get_adapter(protocol, session)
                info = adapter.get_info()
                user_count = adapter.get_user_count()
                record_count = adapter.get_attendance_count()
        except BridgeError as e:
            console_emit(Fore.RED + f"[TEST FAILED] {host}:{port}: {e.message}", level="error", host=host, port=port)
            if device is not None:
                self._mark_offline(device)
            return {
                "success": False,
                "message": e.message,
                "online": False,
                "error": e.code,
                "diagnostic": e.diagnostic(),
            }

        warning = None
        if device is not None:
            try:
                self.store.record_heartbeat(
                    device,
                    firmware=info.firmware,
                    serial_number=info.serial_number,
                    users=user_count,
                    records=record_count,
                )
            except StoreError as e:
                logger.error("Heartbeat for %s not saved: %s", device.device_id, e.message)
                warning = f"Device reachable but status not saved: {e.message}"

        device_info = info.to_dict()
        device_info.update({"userCount": user_count, "recordCount": record_count})
        console_emit(Fore.GREEN + f"[TEST OK] {host}:{port} fw={info.firmware} users={user_count} records={record_count}",
                     level="info", host=host, port=port)
        response = {
            "success": True,
            "message": (
                f"ZKTeco {info.model} connected successfully. "
                f"Found {user_count} users and {record_count} attendance records."
            ),
            "online": True,
            "deviceInfo": device_info,
            "diagnostic": {
                "networkReachable": True,
                "zkProtocolWorking": True,
                "canReadDeviceInfo": True,
            },
        }
        if warning:
            response["warning"] = warning
        return response

    def _mark_offline(self, device):
        try:
            self.store.mark_offline(device)
        except StoreError:
            logger.exception("Could not mark device %s offline", device.device_id)

    # -------------------------
    # Enrollment
    # -------------------------
    def enroll(self, device_ref, host, port, protocol, employee_ref, finger_index):
        # validated before anything touches the device
        finger_index = validate_finger_index(finger_index)
        if employee_ref in (None, ""):
            raise InvalidRequest("employeeId is required")
        protocol = Protocol.parse(protocol)

        employee = self.store.get_employee(employee_ref)
        code = employee.employee_code if employee is not None else str(employee_ref)
        uid = device_uid_for(code)
        clashes = collisions_for(
            code, self.store.employee_identifiers(),
            exclude_id=employee.id if employee is not None else None,
        )
        if clashes:
            return {
                "success": False,
                "message": f"Device UID {uid} is already derived for employee(s) {sorted(clashes)}; "
                           f"change the employee code before enrolling",
                "error": "uid_collision",
                "uid": uid,
            }

        console_emit(Fore.YELLOW + f"[ENROLL] {protocol.value} {host}:{port} employee={code} uid={uid} "
                     f"finger={finger_position(finger_index)}", level="info", host=host, port=port)
        try:
            if protocol.implemented:
                result = self._enroll_zkteco(host, port, uid, finger_index)
            else:
                result = self._enroll_simulated(protocol, uid, finger_index)
        except BridgeError as e:
            console_emit(Fore.RED + f"[ENROLL FAILED] {e.message}", level="error", host=host, port=port)
            return {
                "success": False,
                "message": f"Enrollment failed: {e.message}",
                "error": e.code,
                "note": "Make sure the device is in enrollment mode and employee places finger on scanner",
            }

        # the finger is on the terminal from here on; always hand the template back
        result["templateSaved"] = False
        try:
            device = self.store.get_device(device_ref)
            if employee is not None and device is not None:
                self.store.save_template(
                    employee, device,
                    finger_position(finger_index),
                    result["templateData"],
                    result["qualityScore"],
                )
                result["templateSaved"] = True
            else:
                logger.warning("Template not persisted: employee %s / device %s not in store", employee_ref, device_ref)
        except StoreError as e:
            logger.error("Template for %s enrolled on device but not saved: %s", code, e.message)
            result["warning"] = f"Template captured but not saved: {e.message}"
        return result

    def _enroll_zkteco(self, host, port, uid, finger_index):
        with self.pool.session(host, port, self.timeout) as session:
            template = get_adapter(Protocol.ZKTECO, session).enroll_user(uid, finger_index)
        if not template:
            raise EnrollmentError("Enrollment failed - no template data received")
        console_emit(Fore.GREEN + "[ENROLL] Enrollment successful!", level="info", host=host, port=port)
        return {
            "success": True,
            "templateData": encode_template(template),
            "qualityScore": ZK_QUALITY_SCORE,
            "message": "Fingerprint enrolled successfully on ZKTeco device",
            "uid": uid,
        }

    def _enroll_simulated(self, protocol, uid, finger_index):
        console_emit(Fore.CYAN + f"[ENROLL] {fallback_note(protocol)}", level="warning")
        if self.simulated_delay:
            time.sleep(self.simulated_delay)
        template = get_adapter(protocol).enroll_user(uid, finger_index)
        return {
            "success": True,
            "templateData": encode_template(template),
            "qualityScore": random.randint(85, 99),
            "message": "Fingerprint enrolled (SIMULATED MODE)",
            "uid": uid,
            "simulated": True,
            "note": fallback_note(protocol),
        }

    # -------------------------
    # Heartbeat status
    # -------------------------
    def device_status(self, device_ref, now=None):
        device = self.store.get_device(device_ref)
        if device is None:
            return None
        return {
            "deviceId": device.device_id,
            "deviceName": device.device_name,
            "status": device.heartbeat_status(self.stale_after_seconds, now=now),
            "isOnline": device.is_online,
            "lastHeartbeat": device.last_heartbeat.isoformat() if device.last_heartbeat else None,
            "lastSync": device.last_sync.isoformat() if device.last_sync else None,
            "checkedAt": (now or datetime.utcnow()).isoformat(),
        }
