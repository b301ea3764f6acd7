# backend/bridge/scheduler.py
import os
import json
import time
import logging
import threading
import traceback
from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler
from colorama import Fore

from .console import console_emit

logger = logging.getLogger(__name__)

JOB_ID = "auto_sync_job"


def _now_iso():
    return datetime.utcnow().isoformat() + "Z"


class AutoSyncScheduler:
    """
    One recurring job that syncs every auto-sync enabled, online device.

    Devices are synced one after another so a small LAN is never hit with
    parallel connections. A failing device is logged and the loop moves on.
    """

    def __init__(self, app, engine, store, default_interval=300, log_dir=None):
        self.app = app
        self.engine = engine
        self.store = store
        self.default_interval = int(default_interval)
        self.log_dir = log_dir
        self.interval_seconds = None
        self.started_at = None
        self.last_run = None
        self._scheduler = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, app, engine, store):
        return cls(
            app, engine, store,
            default_interval=app.config.get("AUTO_SYNC_INTERVAL", 300),
            log_dir=app.config.get("SCHEDULER_LOG_DIR"),
        )

    @property
    def running(self):
        return self._scheduler is not None and getattr(self._scheduler, "running", False)

    @property
    def job_count(self):
        if not self.running:
            return 0
        return len(self._scheduler.get_jobs())

    def status(self):
        return {
            "running": self.running,
            "intervalSeconds": self.interval_seconds if self.running else None,
            "startedAt": self.started_at if self.running else None,
            "lastRun": self.last_run,
            "jobs": self.job_count,
        }

    def start(self, interval_seconds=None):
        with self._lock:
            if self.running:
                console_emit(Fore.CYAN + "[SCHEDULER] already running")
                return {"success": False, "message": "Auto-sync already running", **self.status()}

            interval = int(interval_seconds if interval_seconds is not None else self.default_interval)
            if interval <= 0:
                interval = self.default_interval

            scheduler = BackgroundScheduler()
            scheduler.add_job(
                self._tick,
                'interval',
                seconds=interval,
                id=JOB_ID,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=interval,
            )
            scheduler.start()
            self._scheduler = scheduler
            self.interval_seconds = interval
            self.started_at = _now_iso()
            console_emit(Fore.CYAN + f"[SCHEDULER] Started auto-sync every {interval} seconds.")
            return {"success": True, "message": f"Auto-sync started with {interval}s interval", **self.status()}

    def stop(self):
        with self._lock:
            if not self.running:
                console_emit(Fore.CYAN + "[SCHEDULER] no scheduler to stop")
                return {"success": False, "message": "Auto-sync not running", **self.status()}
            scheduler = self._scheduler
            self._scheduler = None
            self.interval_seconds = None
            self.started_at = None
            try:
                scheduler.remove_job(JOB_ID)
            finally:
                scheduler.shutdown(wait=False)
            console_emit(Fore.CYAN + "[SCHEDULER] Auto-sync stopped.")
            return {"success": True, "message": "Auto-sync stopped", **self.status()}

    # -------------------------
    # Tick
    # -------------------------
    def _tick(self):
        try:
            with self.app.app_context():
                self.run_once()
        except Exception:
            # the job thread has nobody to report to; keep the next tick alive
            logger.exception("Auto-sync tick failed")

    def run_once(self):
        """Sync every eligible device sequentially. Needs an app context. Returns per-device results."""
        console_emit(Fore.MAGENTA + "[SCHEDULER] Running scheduled auto-sync...")
        run_start = time.time()
        devices = self.store.list_auto_sync_devices()
        results = []
        for device in devices:
            console_emit(Fore.BLUE + f"[SCHEDULER] Auto-syncing device: {device.device_name}",
                         host=device.ip_address, port=device.port)
            try:
                result = self.engine.sync(device.ip_address, device.port, device.protocol or "ZKTeco", device.device_id)
                results.append({"deviceId": device.device_id, **result.to_dict()})
            except Exception as e:
                logger.exception("Auto-sync failed for device %s", device.device_id)
                results.append({
                    "deviceId": device.device_id,
                    "success": False,
                    "recordsSynced": 0,
                    "message": str(e),
                    "timestamp": _now_iso(),
                })

        elapsed = time.time() - run_start
        total_new = sum(int(r.get("recordsSynced") or 0) for r in results)
        self.last_run = {
            "finishedAt": _now_iso(),
            "devices": len(devices),
            "newLogs": total_new,
            "failures": sum(1 for r in results if not r.get("success")),
            "elapsedSeconds": round(elapsed, 3),
        }
        console_emit(Fore.CYAN + f"[SCHEDULER] Completed auto-sync of {len(devices)} devices. "
                     f"Total new logs: {total_new}. Run time: {elapsed:.2f}s")
        self._write_run_summary(results)
        return results

    def _write_run_summary(self, results):
        if not self.log_dir:
            return
        try:
            os.makedirs(self.log_dir, exist_ok=True)
            fn = os.path.join(self.log_dir, f"auto_sync_{datetime.now():%Y%m%d}.log")
            summary = dict(self.last_run or {}, results=results)
            with open(fn, "a", encoding="utf-8") as fh:
                fh.write("RUN_SUMMARY_JSON: " + json.dumps(summary, default=str) + "\n")
        except OSError as e:
            tb = traceback.format_exc()
            console_emit(Fore.RED + f"[SCHEDULER LOG ERROR] {e}\n{tb}", level="error")
