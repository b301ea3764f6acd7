# bridge/views/devices.py
from flask import Blueprint, jsonify, current_app

from ..services import get_services
from . import device_address, json_body

bp = Blueprint('devices', __name__)


@bp.route('/test', methods=['POST'])
def test_device():
    data = json_body()
    ip, port = device_address(data, current_app.config.get("DEVICE_DEFAULT_PORT", 4370))
    result = get_services().devices.test_connection(
        data.get("deviceId"), ip, port, data.get("protocol"),
    )
    return jsonify(result)


@bp.route('/enroll', methods=['POST'])
def enroll_device_user():
    data = json_body()
    ip, port = device_address(data, current_app.config.get("DEVICE_DEFAULT_PORT", 4370))
    result = get_services().devices.enroll(
        data.get("deviceId"), ip, port, data.get("protocol"),
        data.get("employeeId"), data.get("fingerIndex"),
    )
    return jsonify(result)


@bp.route('/sync', methods=['POST'])
def sync_device():
    data = json_body()
    ip, port = device_address(data, current_app.config.get("DEVICE_DEFAULT_PORT", 4370))
    device_ref = data.get("deviceDbId") or data.get("deviceId")
    result = get_services().engine.sync(ip, port, data.get("protocol"), device_ref)
    return jsonify(result.to_dict())


@bp.route('/<device_ref>/status', methods=['GET'])
def device_status(device_ref):
    status = get_services().devices.device_status(device_ref)
    if status is None:
        return jsonify({"success": False, "message": "Device not found"}), 404
    return jsonify(status)
