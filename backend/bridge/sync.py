# bridge/sync.py
import time
import random
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from colorama import Fore

from .console import console_emit
from .errors import BridgeError, DeviceConnectionError, StoreError
from .identity import EmployeeIdentityMap
from .protocols import Protocol, fallback_note, get_adapter, log_type_for
from .store import to_millis

logger = logging.getLogger(__name__)

ZK_MATCH_SCORE = 100


def _now_iso():
    return datetime.utcnow().isoformat() + "Z"


@dataclass
class ResolvedAttendanceLog:
    employee_id: int
    timestamp: datetime
    log_type: str = "check_in"
    verification_method: str = "fingerprint"
    match_score: Optional[int] = None
    temperature: Optional[float] = None

    def to_dict(self):
        return {
            "employeeId": self.employee_id,
            "timestamp": self.timestamp.isoformat(),
            "type": self.log_type,
            "method": self.verification_method,
            "score": self.match_score,
            "temperature": self.temperature,
        }


@dataclass
class SyncResult:
    success: bool
    records_synced: int
    message: str
    timestamp: str = field(default_factory=_now_iso)
    device_id: Optional[str] = None
    simulated: bool = False
    skipped_unmapped: int = 0
    skipped_duplicate: int = 0
    diagnostic: Optional[dict] = None

    def to_dict(self):
        data = {
            "success": self.success,
            "message": self.message,
            "recordsSynced": self.records_synced,
            "timestamp": self.timestamp,
            "deviceId": self.device_id,
            "simulated": self.simulated,
            "skippedUnmapped": self.skipped_unmapped,
            "skippedDuplicate": self.skipped_duplicate,
        }
        if self.diagnostic:
            data["diagnostic"] = self.diagnostic
        return data


class AttendanceSyncEngine:
    """Pulls punches off a device, drops the ones already stored, and writes the rest."""

    def __init__(self, pool, store, dedup_window_days=30, simulated_sample_size=3,
                 simulated_delay=0.5, timeout=None):
        self.pool = pool
        self.store = store
        self.dedup_window_days = dedup_window_days
        self.simulated_sample_size = simulated_sample_size
        self.simulated_delay = simulated_delay
        self.timeout = timeout

    @classmethod
    def from_config(cls, pool, store, config):
        return cls(
            pool, store,
            dedup_window_days=config.get("DEDUP_WINDOW_DAYS", 30),
            simulated_sample_size=config.get("SIMULATED_SAMPLE_SIZE", 3),
            simulated_delay=config.get("SIMULATED_SYNC_DELAY_SECONDS", 0.5),
            timeout=config.get("DEVICE_TIMEOUT"),
        )

    def sync(self, host, port, protocol, device_ref) -> SyncResult:
        protocol = Protocol.parse(protocol)
        started_at = datetime.utcnow()
        console_emit(Fore.YELLOW + f"\n[SYNC] {protocol.value} device {device_ref} at {host}:{port}",
                     level="info", host=host, port=port)

        device = None
        try:
            device = self.store.get_device(device_ref)
            if device is None:
                console_emit(Fore.RED + f"[SYNC ERROR] device {device_ref} not registered", level="error", host=host, port=port)
                result = SyncResult(False, 0, "Device not found in database", device_id=device_ref)
            else:
                result = self._sync_device(device, host, port, protocol)
        except DeviceConnectionError as e:
            result = SyncResult(False, 0, e.message, device_id=self._ref(device, device_ref), diagnostic=e.diagnostic())
        except StoreError as e:
            console_emit(Fore.RED + f"[DB ERROR] {e.message}", level="error", host=host, port=port)
            result = SyncResult(False, 0, e.message, device_id=self._ref(device, device_ref))
        except BridgeError as e:
            result = SyncResult(False, 0, e.message, device_id=self._ref(device, device_ref), diagnostic=e.diagnostic())
        except Exception as e:
            logger.exception("Unexpected error while syncing device %s", device_ref)
            self.store.rollback()
            result = SyncResult(False, 0, f"Sync failed: {e}", device_id=self._ref(device, device_ref))

        name = device.device_name if device is not None else device_ref
        if result.success:
            console_emit(Fore.MAGENTA + f"[SUCCESS ✅] {result.records_synced} new logs from {name}",
                         level="info", host=host, port=port)
        elif device is not None:
            console_emit(Fore.RED + f"[SYNC FAILED] {name}: {result.message}", level="error", host=host, port=port)
        self._audit(device, started_at, result)
        return result

    @staticmethod
    def _ref(device, device_ref):
        return device.device_id if device is not None else device_ref

    def _sync_device(self, device, host, port, protocol):
        if protocol.implemented:
            logs, unmapped, duplicates = self._collect_device_logs(host, port)
            simulated = False
        else:
            console_emit(Fore.CYAN + f"[SYNC] {fallback_note(protocol)}", level="warning", host=host, port=port)
            logs = self._collect_simulated_logs()
            unmapped = duplicates = 0
            simulated = True

        inserted = self.store.insert_attendance_logs(device, logs)
        if inserted:
            console_emit(Fore.WHITE + f"[DB] Inserted {inserted} attendance logs for {device.device_name}",
                         level="info", host=host, port=port)
        else:
            console_emit(Fore.CYAN + "[SYNC] No new attendance records to sync", level="info", host=host, port=port)
        self.store.mark_synced(device)
        return SyncResult(
            True, inserted,
            "Attendance sync completed" if inserted else "No new attendance records",
            device_id=device.device_id,
            simulated=simulated,
            skipped_unmapped=unmapped,
            skipped_duplicate=duplicates,
        )

    # ---------- real device ----------
    def _collect_device_logs(self, host, port):
        with self.pool.session(host, port, self.timeout) as session:
            adapter = get_adapter(Protocol.ZKTECO, session)

            start_time = time.time()
            records = adapter.get_attendance_records()
            elapsed = time.time() - start_time
            console_emit(Fore.BLUE + f"[INFO] Retrieved {len(records)} logs from {host}:{port} in {elapsed:.2f}s",
                         level="info", host=host, port=port, extra={"count": len(records)})
            if not records:
                return [], 0, 0

            oldest = min(r.timestamp for r in records)
            since = min(datetime.utcnow() - timedelta(days=self.dedup_window_days), oldest)
            existing = self.store.existing_log_keys(since)
            identities = EmployeeIdentityMap.build(self.store.employee_identifiers())

            return self.filter_and_resolve(records, identities, existing)

    @staticmethod
    def filter_and_resolve(records, identities, existing):
        """
        Returns (logs, unmapped_count, duplicate_count). `existing` is extended
        with every emitted key so repeats inside one batch are dropped too.
        """
        logs = []
        unmapped = 0
        duplicates = 0
        for rec in records:
            employee_id = identities.resolve(rec.user_id)
            if employee_id is None:
                unmapped += 1
                logger.debug("Skipping record - no employee match for device UID %s", rec.user_id)
                continue
            key = (employee_id, to_millis(rec.timestamp))
            if key in existing:
                duplicates += 1
                continue
            existing.add(key)
            logs.append(ResolvedAttendanceLog(
                employee_id=employee_id,
                timestamp=rec.timestamp,
                log_type=log_type_for(rec.check_type),
                verification_method=rec.method,
                match_score=ZK_MATCH_SCORE,
            ))
        if unmapped:
            console_emit(Fore.YELLOW + f"    [UNMAPPED] {unmapped} records with no matching employee", level="warning")
        return logs, unmapped, duplicates

    # ---------- simulated ----------
    def _collect_simulated_logs(self):
        if self.simulated_delay:
            time.sleep(self.simulated_delay)
        employees = self.store.sample_employees(limit=5)
        if not employees:
            console_emit(Fore.YELLOW + "[SIMULATED] No employees found for simulation", level="warning")
            return []
        now = datetime.utcnow()
        logs = []
        for employee in employees[:self.simulated_sample_size]:
            logs.append(ResolvedAttendanceLog(
                employee_id=employee.id,
                timestamp=now - timedelta(seconds=random.random() * 3600),
                log_type="check_in" if random.random() > 0.5 else "check_out",
                verification_method="fingerprint",
                match_score=random.randint(80, 99),
                temperature=round(36 + random.random(), 1),
            ))
        console_emit(Fore.CYAN + f"[SIMULATED] Generated {len(logs)} simulated logs", level="info")
        return logs

    def _audit(self, device, started_at, result):
        try:
            self.store.write_sync_audit(device, started_at, result)
        except StoreError:
            logger.exception("Could not write sync audit row for device %s", result.device_id)
