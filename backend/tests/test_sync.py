import socket
import struct
from datetime import timedelta

from sqlalchemy.exc import OperationalError

from bridge.errors import StoreError
from bridge.extensions import db
from bridge.identity import EmployeeIdentityMap
from bridge.models import AttendanceLog, DeviceSyncLog
from bridge.protocols import RawAttendanceRecord
from bridge.store import to_millis
from bridge.sync import AttendanceSyncEngine

from conftest import FakeAttendance, FakeZK


def _use_device(connector, attendance):
    connector.devices["10.0.0.1"] = FakeZK(attendance=attendance)


def test_unmapped_and_duplicate_records_are_skipped(services, connector, device, employees, punch_time):
    ada, grace = employees[0], employees[1]
    db.session.add(AttendanceLog(device_id=device.id, employee_id=grace.id, log_time=punch_time))
    db.session.commit()
    _use_device(connector, [
        FakeAttendance("123", punch_time, punch=1),
        FakeAttendance("999", punch_time),
        FakeAttendance("456", punch_time),
    ])

    result = services.engine.sync("10.0.0.1", 4370, "ZKTeco", "K40-1")

    assert result.success
    assert result.records_synced == 1
    assert result.skipped_unmapped == 1
    assert result.skipped_duplicate == 1
    assert result.message == "Attendance sync completed"
    row = AttendanceLog.query.filter_by(employee_id=ada.id).one()
    assert row.log_type == "check_out"
    assert row.match_score == 100
    assert row.verification_method == "fingerprint"


def test_second_sync_inserts_nothing(services, connector, device, employees, punch_time):
    _use_device(connector, [FakeAttendance("123", punch_time), FakeAttendance("456", punch_time)])

    first = services.engine.sync("10.0.0.1", 4370, "ZKTeco", "K40-1")
    second = services.engine.sync("10.0.0.1", 4370, "ZKTeco", "K40-1")

    assert first.records_synced == 2
    assert second.success
    assert second.records_synced == 0
    assert second.message == "No new attendance records"
    assert AttendanceLog.query.count() == 2


def test_records_older_than_the_window_still_dedup(services, connector, device, employees, punch_time):
    old = punch_time - timedelta(days=90)
    _use_device(connector, [FakeAttendance("123", old)])
    services.engine.sync("10.0.0.1", 4370, "ZKTeco", "K40-1")
    again = services.engine.sync("10.0.0.1", 4370, "ZKTeco", "K40-1")
    assert again.records_synced == 0
    assert AttendanceLog.query.count() == 1


def test_sync_marks_device_synced_and_releases_connection(services, connector, device, employees, punch_time):
    _use_device(connector, [FakeAttendance("123", punch_time)])
    services.engine.sync("10.0.0.1", 4370, "ZKTeco", "K40-1")
    assert device.last_sync is not None
    assert device.is_online
    assert services.pool.active_count == 0


def test_empty_device(services, connector, device, employees):
    _use_device(connector, [])
    result = services.engine.sync("10.0.0.1", 4370, "ZKTeco", "K40-1")
    assert result.success
    assert result.records_synced == 0


def test_connect_timeout_fails_and_is_audited(services, connector, device, employees):
    connector.errors["10.0.0.1"] = socket.timeout("timed out")
    result = services.engine.sync("10.0.0.1", 4370, "ZKTeco", "K40-1")

    assert not result.success
    assert result.records_synced == 0
    assert "Device is powered off" in result.diagnostic["possibleCauses"]
    audit = DeviceSyncLog.query.one()
    assert audit.success is False
    assert audit.device_id == device.id
    assert services.pool.active_count == 0


def test_store_failure_reports_failure_and_writes_audit(services, connector, device, employees, punch_time, monkeypatch):
    _use_device(connector, [FakeAttendance("123", punch_time)])

    def broken(device, logs):
        raise StoreError("Failed to insert attendance logs: database is locked")

    monkeypatch.setattr(services.store, "insert_attendance_logs", broken)
    result = services.engine.sync("10.0.0.1", 4370, "ZKTeco", "K40-1")

    assert not result.success
    assert "database is locked" in result.message
    assert AttendanceLog.query.count() == 0
    assert DeviceSyncLog.query.filter_by(success=False).count() == 1


def test_unknown_device_fails_before_connecting(services, connector):
    result = services.engine.sync("10.0.0.1", 4370, "ZKTeco", "NOPE")
    assert not result.success
    assert result.message == "Device not found in database"
    assert connector.calls == []
    assert DeviceSyncLog.query.one().device_id is None


def test_device_found_by_primary_key(services, connector, device, employees, punch_time):
    _use_device(connector, [FakeAttendance("123", punch_time)])
    result = services.engine.sync("10.0.0.1", 4370, "ZKTeco", str(device.id))
    assert result.success
    assert result.device_id == "K40-1"


def test_simulated_protocol_inserts_a_small_sample(services, connector, device, employees):
    result = services.engine.sync("10.0.0.1", 4370, "ADMS", "K40-1")
    assert result.success
    assert result.simulated
    assert result.records_synced == 3
    assert connector.calls == []
    for row in AttendanceLog.query.all():
        assert 80 <= row.match_score <= 99
        assert 36.0 <= row.temperature <= 37.0
    assert DeviceSyncLog.query.one().simulated is True


def test_simulated_without_employees(services, device):
    result = services.engine.sync("10.0.0.1", 4370, "Anviz", "K40-1")
    assert result.success
    assert result.records_synced == 0


def test_filter_and_resolve_drops_repeats_inside_one_batch(punch_time):
    identities = EmployeeIdentityMap.build([(1, "EMP000123")])
    records = [RawAttendanceRecord("123", punch_time), RawAttendanceRecord("000123", punch_time)]
    logs, unmapped, duplicates = AttendanceSyncEngine.filter_and_resolve(records, identities, set())
    assert len(logs) == 1
    assert (unmapped, duplicates) == (0, 1)


def test_filter_and_resolve_uses_existing_keys(punch_time):
    identities = EmployeeIdentityMap.build([(1, "EMP000123")])
    existing = {(1, to_millis(punch_time))}
    logs, _, duplicates = AttendanceSyncEngine.filter_and_resolve(
        [RawAttendanceRecord("123", punch_time)], identities, existing)
    assert logs == []
    assert duplicates == 1


def test_result_dict_keys(services, device):
    data = services.engine.sync("10.0.0.1", 4370, "Simulated", "K40-1").to_dict()
    assert {"success", "recordsSynced", "message", "timestamp", "deviceId"} <= set(data)


class _LockedAttendanceReads:
    """Session wrapper whose attendance-log reads fail like a locked database."""

    def __init__(self, session):
        self._session = session
        self.rollbacks = 0

    def query(self, *entities, **kwargs):
        if entities and entities[0] is AttendanceLog.employee_id:
            raise OperationalError("SELECT attendance_logs", {}, Exception("database is locked"))
        return self._session.query(*entities, **kwargs)

    def rollback(self):
        self.rollbacks += 1
        return self._session.rollback()

    def __getattr__(self, name):
        return getattr(self._session, name)


def test_store_read_failure_is_reported_and_audited(services, connector, device, employees, punch_time, monkeypatch):
    _use_device(connector, [FakeAttendance("123", punch_time)])
    locked = _LockedAttendanceReads(db.session)
    monkeypatch.setattr(services.store, "_session", locked)

    result = services.engine.sync("10.0.0.1", 4370, "ZKTeco", "K40-1")

    assert not result.success
    assert "database is locked" in result.message
    assert locked.rollbacks >= 1
    assert DeviceSyncLog.query.filter_by(success=False, device_id=device.id).count() == 1
    assert services.pool.active_count == 0


class _BadBufferZK(FakeZK):
    def __init__(self, exc):
        super().__init__()
        self.exc = exc

    def get_attendance(self):
        raise self.exc


def test_malformed_attendance_buffer_is_a_failed_sync(services, connector, device, employees):
    connector.devices["10.0.0.1"] = _BadBufferZK(struct.error("unpack requires a buffer of 40 bytes"))
    result = services.engine.sync("10.0.0.1", 4370, "ZKTeco", "K40-1")
    assert not result.success
    assert result.message.startswith("ZKTeco protocol error")
    assert DeviceSyncLog.query.filter_by(success=False).count() == 1


def test_unexpected_device_error_is_a_failed_sync(services, connector, device, employees):
    connector.devices["10.0.0.1"] = _BadBufferZK(ValueError("invalid literal for int()"))
    result = services.engine.sync("10.0.0.1", 4370, "ZKTeco", "K40-1")
    assert not result.success
    assert result.message == "Sync failed: invalid literal for int()"
    assert result.device_id == "K40-1"
    assert DeviceSyncLog.query.filter_by(success=False).count() == 1
    assert services.pool.active_count == 0
