# bridge/models.py
from .extensions import db
from datetime import datetime

ONLINE = "online"
OFFLINE = "offline"
STALE = "stale"


class BiometricDevice(db.Model):
    __tablename__ = 'biometric_devices'
    id               = db.Column(db.Integer, primary_key=True)
    device_id        = db.Column(db.String(64), unique=True, nullable=False, index=True)  # e.g. "K40-LOBBY"
    device_name      = db.Column(db.String(128), nullable=False)
    ip_address       = db.Column(db.String(45), nullable=False)
    port             = db.Column(db.Integer, default=4370)
    protocol         = db.Column(db.String(32), default="ZKTeco", nullable=False)
    is_online        = db.Column(db.Boolean, default=False, nullable=False)
    last_heartbeat   = db.Column(db.DateTime, nullable=True)
    last_sync        = db.Column(db.DateTime, nullable=True)
    auto_sync_enabled = db.Column(db.Boolean, default=False, nullable=False)
    sync_interval    = db.Column(db.Integer, default=300)
    firmware_version = db.Column(db.String(64), nullable=True)
    serial_number    = db.Column(db.String(128), nullable=True)
    current_users    = db.Column(db.Integer, default=0)
    current_records  = db.Column(db.Integer, default=0)
    created_at       = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at       = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    logs      = db.relationship('AttendanceLog', back_populates='device', cascade='all, delete-orphan')
    templates = db.relationship('BiometricTemplate', back_populates='device', cascade='all, delete-orphan')

    def heartbeat_status(self, stale_after_seconds, now=None):
        """online / offline / stale, judged from is_online and the age of last_heartbeat."""
        if not self.is_online:
            return OFFLINE
        if self.last_heartbeat is None:
            return STALE
        now = now or datetime.utcnow()
        if (now - self.last_heartbeat).total_seconds() > stale_after_seconds:
            return STALE
        return ONLINE

    def __repr__(self):
        return f"<BiometricDevice {self.device_name}@{self.ip_address}:{self.port} ({self.protocol})>"


class Employee(db.Model):
    __tablename__ = 'employees'
    id            = db.Column(db.Integer, primary_key=True)
    employee_code = db.Column(db.String(64), unique=True, nullable=False)  # e.g. "EMP000123"
    full_name     = db.Column(db.String(128), nullable=False)
    is_active     = db.Column(db.Boolean, default=True, nullable=False)
    created_at    = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Employee {self.full_name} ({self.employee_code})>"


class AttendanceLog(db.Model):
    __tablename__ = 'attendance_logs'

    id                  = db.Column(db.Integer, primary_key=True)
    device_id           = db.Column(db.Integer, db.ForeignKey('biometric_devices.id'), nullable=True)
    employee_id         = db.Column(db.Integer, db.ForeignKey('employees.id'), nullable=False)
    log_time            = db.Column(db.DateTime, nullable=False)
    log_type            = db.Column(db.String(16), nullable=False, default="check_in")
    verification_method = db.Column(db.String(32), nullable=False, default="fingerprint")
    match_score         = db.Column(db.Integer, nullable=True)
    temperature         = db.Column(db.Float, nullable=True)
    created_at          = db.Column(db.DateTime, default=datetime.utcnow)

    device   = db.relationship('BiometricDevice', back_populates='logs')
    employee = db.relationship('Employee')

    __table_args__ = (
        db.Index('ix_attendance_logs_employee_time', 'employee_id', 'log_time'),
    )

    def __repr__(self):
        return f"<AttendanceLog emp={self.employee_id} {self.log_type} @ {self.log_time}>"


class BiometricTemplate(db.Model):
    __tablename__ = 'biometric_templates'
    id              = db.Column(db.Integer, primary_key=True)
    employee_id     = db.Column(db.Integer, db.ForeignKey('employees.id'), nullable=False, index=True)
    device_id       = db.Column(db.Integer, db.ForeignKey('biometric_devices.id'), nullable=True)
    template_type   = db.Column(db.String(32), default="fingerprint", nullable=False)
    finger_position = db.Column(db.String(32), nullable=False)
    template_data   = db.Column(db.Text, nullable=False)  # base64
    quality_score   = db.Column(db.Integer, nullable=True)
    is_active       = db.Column(db.Boolean, default=True, nullable=False)
    created_at      = db.Column(db.DateTime, default=datetime.utcnow)

    device   = db.relationship('BiometricDevice', back_populates='templates')
    employee = db.relationship('Employee')

    def __repr__(self):
        return f"<BiometricTemplate emp={self.employee_id} {self.finger_position}>"


class DeviceSyncLog(db.Model):
    """
    Audit row written once per sync cycle, whatever the outcome.
    """
    __tablename__ = 'device_sync_logs'
    id             = db.Column(db.Integer, primary_key=True)
    device_id      = db.Column(db.Integer, db.ForeignKey('biometric_devices.id'), nullable=True, index=True)
    started_at     = db.Column(db.DateTime, nullable=False)
    finished_at    = db.Column(db.DateTime, nullable=False)
    success        = db.Column(db.Boolean, nullable=False)
    records_synced = db.Column(db.Integer, default=0, nullable=False)
    message        = db.Column(db.String(512), nullable=True)
    simulated      = db.Column(db.Boolean, default=False, nullable=False)

    def __repr__(self):
        return f"<DeviceSyncLog device={self.device_id} ok={self.success} n={self.records_synced}>"
