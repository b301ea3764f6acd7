# bridge/store.py
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError

from .extensions import db
from .errors import StoreError
from .models import AttendanceLog, BiometricDevice, BiometricTemplate, DeviceSyncLog, Employee

logger = logging.getLogger(__name__)


def to_millis(ts: datetime) -> int:
    """Millisecond epoch for the dedup key; naive timestamps are read as UTC."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return int(ts.timestamp() * 1000)


class AttendanceStore:
    """
    The only place the bridge touches the HR tables. Everything the sync
    engine, the scheduler and the device operations read or write goes
    through here.
    """

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    @contextmanager
    def _reading(self, what):
        try:
            yield
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StoreError(f"Failed to read {what}: {e}") from e

    def rollback(self):
        try:
            self.session.rollback()
        except SQLAlchemyError:
            logger.exception("Session rollback failed")

    def _commit(self, what):
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StoreError(f"Failed to write {what}: {e}") from e

    # ---------- devices ----------
    def get_device(self, device_ref) -> Optional[BiometricDevice]:
        """Find a device by its external device_id, falling back to the primary key."""
        if device_ref is None or device_ref == "":
            return None
        with self._reading("device"):
            device = self.session.query(BiometricDevice).filter(
                BiometricDevice.device_id == str(device_ref)
            ).one_or_none()
            if device is None and str(device_ref).isdigit():
                device = self.session.get(BiometricDevice, int(device_ref))
        return device

    def list_auto_sync_devices(self) -> List[BiometricDevice]:
        with self._reading("auto-sync devices"):
            return (
                self.session.query(BiometricDevice)
                .filter(BiometricDevice.auto_sync_enabled.is_(True), BiometricDevice.is_online.is_(True))
                .order_by(BiometricDevice.id)
                .all()
            )

    def record_heartbeat(self, device, firmware=None, serial_number=None, users=None, records=None):
        now = datetime.utcnow()
        device.is_online = True
        device.last_heartbeat = now
        if firmware:
            device.firmware_version = firmware
        if serial_number:
            device.serial_number = serial_number
        if users is not None:
            device.current_users = users
        if records is not None:
            device.current_records = records
        self._commit("device heartbeat")

    def mark_offline(self, device):
        device.is_online = False
        self._commit("device status")

    def mark_synced(self, device):
        now = datetime.utcnow()
        device.last_sync = now
        device.last_heartbeat = now
        device.is_online = True
        self._commit("device sync time")

    # ---------- employees ----------
    def employee_identifiers(self) -> List[Tuple[int, str]]:
        with self._reading("employee codes"):
            rows = self.session.query(Employee.id, Employee.employee_code).all()
        return [(emp_id, code) for emp_id, code in rows]

    def sample_employees(self, limit=5) -> List[Employee]:
        with self._reading("employees"):
            return self.session.query(Employee).order_by(Employee.id).limit(limit).all()

    def get_employee(self, employee_ref) -> Optional[Employee]:
        """By primary key when numeric, otherwise by employee_code."""
        if employee_ref is None or employee_ref == "":
            return None
        ref = str(employee_ref)
        with self._reading("employee"):
            if ref.isdigit():
                employee = self.session.get(Employee, int(ref))
                if employee is not None:
                    return employee
            return self.session.query(Employee).filter(Employee.employee_code == ref).one_or_none()

    # ---------- attendance ----------
    def existing_log_keys(self, since: datetime) -> Set[Tuple[int, int]]:
        with self._reading("existing attendance logs"):
            rows = (
                self.session.query(AttendanceLog.employee_id, AttendanceLog.log_time)
                .filter(AttendanceLog.log_time >= since)
                .all()
            )
        return {(emp_id, to_millis(log_time)) for emp_id, log_time in rows}

    def insert_attendance_logs(self, device, logs: Iterable) -> int:
        """Insert ResolvedAttendanceLog entries in one batch; all or nothing."""
        rows = [
            AttendanceLog(
                device_id=device.id if device is not None else None,
                employee_id=log.employee_id,
                log_time=log.timestamp,
                log_type=log.log_type or "check_in",
                verification_method=log.verification_method or "fingerprint",
                match_score=log.match_score,
                temperature=log.temperature,
            )
            for log in logs
        ]
        if not rows:
            return 0
        try:
            self.session.add_all(rows)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StoreError(f"Failed to insert attendance logs: {e}") from e
        return len(rows)

    # ---------- audit / templates ----------
    def write_sync_audit(self, device, started_at, result):
        entry = DeviceSyncLog(
            device_id=device.id if device is not None else None,
            started_at=started_at,
            finished_at=datetime.utcnow(),
            success=bool(result.success),
            records_synced=int(result.records_synced),
            message=(result.message or "")[:512],
            simulated=bool(result.simulated),
        )
        self.session.add(entry)
        self._commit("sync audit")
        return entry

    def save_template(self, employee, device, finger_position, template_data, quality_score):
        tpl = BiometricTemplate(
            employee_id=employee.id,
            device_id=device.id if device is not None else None,
            template_type="fingerprint",
            finger_position=finger_position,
            template_data=template_data,
            quality_score=quality_score,
            is_active=True,
        )
        self.session.add(tpl)
        self._commit("biometric template")
        return tpl
