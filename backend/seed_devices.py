# seed_devices.py

from bridge import create_app
from bridge.extensions import db
from bridge.models import BiometricDevice, Employee


def seed_devices():
    app = create_app()

    with app.app_context():
        db.create_all()

        devices = [
            BiometricDevice(device_id="K40-LOBBY", device_name="K40 Lobby", ip_address="192.168.1.201",
                            port=4370, protocol="ZKTeco", auto_sync_enabled=True),
            # BiometricDevice(device_id="K40-WAREHOUSE", device_name="K40 Warehouse", ip_address="192.168.1.202", port=4370),
            # Add more as needed
        ]
        employees = [
            Employee(employee_code="EMP000101", full_name="Test Employee 101"),
            Employee(employee_code="EMP000102", full_name="Test Employee 102"),
        ]

        for d in devices:
            if not BiometricDevice.query.filter_by(device_id=d.device_id).first():
                db.session.add(d)
        for e in employees:
            if not Employee.query.filter_by(employee_code=e.employee_code).first():
                db.session.add(e)
        db.session.commit()
        print("✅ Devices and employees seeded.")

if __name__ == "__main__":
    seed_devices()
