# bridge/views/sync.py
from flask import Blueprint, jsonify

from ..errors import InvalidRequest
from ..services import get_services
from . import json_body

bp = Blueprint('sync', __name__)


@bp.route('/start', methods=['POST'])
def start_auto_sync():
    """
    Start the recurring auto-sync. Body: {"intervalSeconds": 300}.
    """
    data = json_body()
    interval = data.get("intervalSeconds")
    if interval is not None:
        try:
            interval = int(interval)
        except (TypeError, ValueError):
            raise InvalidRequest(f"Invalid intervalSeconds: {interval!r}")
        if interval <= 0:
            raise InvalidRequest("intervalSeconds must be positive")
    return jsonify(get_services().scheduler.start(interval))


@bp.route('/stop', methods=['POST'])
def stop_auto_sync():
    return jsonify(get_services().scheduler.stop())


@bp.route('/status', methods=['GET'])
def auto_sync_status():
    return jsonify(get_services().scheduler.status())
