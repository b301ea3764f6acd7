import socket

from bridge.extensions import db
from bridge.models import AttendanceLog, BiometricDevice
from bridge.scheduler import AutoSyncScheduler

from conftest import FakeAttendance, FakeZK


def test_start_twice_keeps_one_job(services):
    scheduler = services.scheduler
    first = scheduler.start(60)
    second = scheduler.start(60)
    try:
        assert first["success"] is True
        assert first["intervalSeconds"] == 60
        assert second["success"] is False
        assert second["message"] == "Auto-sync already running"
        assert scheduler.job_count == 1
    finally:
        scheduler.stop()


def test_stop_when_not_running(services):
    result = services.scheduler.stop()
    assert result["success"] is False
    assert result["message"] == "Auto-sync not running"


def test_stop_after_start(services):
    services.scheduler.start()
    result = services.scheduler.stop()
    assert result["success"] is True
    assert result["message"] == "Auto-sync stopped"
    assert not services.scheduler.running
    assert services.scheduler.job_count == 0


def test_non_positive_interval_uses_default(services):
    result = services.scheduler.start(0)
    try:
        assert result["intervalSeconds"] == 300
    finally:
        services.scheduler.stop()


def _add_device(device_id, ip, auto_sync=True, online=True):
    d = BiometricDevice(device_id=device_id, device_name=device_id, ip_address=ip, port=4370,
                        protocol="ZKTeco", is_online=online, auto_sync_enabled=auto_sync)
    db.session.add(d)
    db.session.commit()
    return d


def test_run_once_moves_past_a_failing_device(services, connector, employees, punch_time):
    _add_device("A", "10.0.0.1")
    _add_device("B", "10.0.0.2")
    _add_device("C", "10.0.0.3", auto_sync=False)
    _add_device("D", "10.0.0.4", online=False)
    connector.errors["10.0.0.1"] = socket.timeout("timed out")
    connector.devices["10.0.0.2"] = FakeZK(attendance=[FakeAttendance("123", punch_time)])

    results = services.scheduler.run_once()

    assert [r["deviceId"] for r in results] == ["A", "B"]
    assert results[0]["success"] is False
    assert results[1]["success"] is True
    assert results[1]["recordsSynced"] == 1
    assert services.scheduler.last_run["failures"] == 1
    assert services.scheduler.last_run["newLogs"] == 1
    assert AttendanceLog.query.count() == 1


def test_run_once_survives_unexpected_errors(services, monkeypatch):
    _add_device("A", "10.0.0.1")
    _add_device("B", "10.0.0.2")
    calls = []

    def flaky(host, port, protocol, device_ref):
        calls.append(device_ref)
        raise RuntimeError("socket closed mid-read")

    monkeypatch.setattr(services.engine, "sync", flaky)
    results = services.scheduler.run_once()
    assert calls == ["A", "B"]
    assert all(r["success"] is False for r in results)
    assert results[0]["message"] == "socket closed mid-read"


def test_run_summary_is_written(app, services, tmp_path):
    scheduler = AutoSyncScheduler(app, services.engine, services.store, log_dir=str(tmp_path))
    scheduler.run_once()
    files = list(tmp_path.glob("auto_sync_*.log"))
    assert len(files) == 1
    assert files[0].read_text(encoding="utf-8").startswith("RUN_SUMMARY_JSON: ")
