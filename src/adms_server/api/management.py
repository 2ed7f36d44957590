"""
Push Device Management API

JSON endpoints for operators: device status and uploaded logs, capabilities,
the command queue, template resync, attendance days, runtime settings and
scheduled jobs. Every response carries ``success``; failures add ``error``
with a 4xx/5xx status.
"""

from datetime import date

from flask import Blueprint, request, jsonify

from adms_server.config.config_manager import config_manager
from adms_server.repositories import attendance_repo, device_log_repo, employee_repo, template_repo
from adms_server.services.attendance_summarizer import attendance_summarizer
from adms_server.services.capability_detector import capability_detector
from adms_server.services.command_queue import command_queue
from adms_server.services.device_registry import device_registry
from adms_server.services.template_sync import template_sync
from adms_server.shared.exceptions import CommandNotFoundError, InvalidCommandTransition
from adms_server.shared.logger import app_logger

bp = Blueprint('push_management', __name__, url_prefix='/api/push')


def _error(message: str, status: int):
    return jsonify({"success": False, "error": message}), status


def _json_body():
    return request.get_json(silent=True) or {}


def _limit(default: int) -> int:
    try:
        return max(1, min(int(request.args.get('limit', default)), 500))
    except ValueError:
        return default


# ============================================================================
# DEVICES & CAPABILITIES
# ============================================================================

@bp.route('/devices', methods=['GET'])
def list_devices():
    try:
        devices = [device.to_dict() for device in device_registry.list_devices()]
        return jsonify({"success": True, "data": devices, "total": len(devices)})
    except Exception as e:
        app_logger.error(f"Error listing devices: {e}", exc_info=True)
        return _error(str(e), 500)


@bp.route('/devices/<serial_number>/status', methods=['GET'])
def device_status(serial_number: str):
    try:
        device = device_registry.get(serial_number)
        if not device:
            return _error(f"Device {serial_number} not found", 404)

        capabilities = capability_detector.get(serial_number)
        return jsonify({
            "success": True,
            "device": device.to_dict(),
            "capabilities": capabilities.to_dict() if capabilities else None,
            "queue": command_queue.stats(serial_number),
        })
    except Exception as e:
        app_logger.error(f"Error in device_status: {e}", exc_info=True)
        return _error(str(e), 500)


@bp.route('/devices/<serial_number>/direction', methods=['PUT', 'POST'])
def set_device_direction(serial_number: str):
    try:
        device = device_registry.set_direction(serial_number, _json_body().get('direction'))
        return jsonify({"success": True, "device": device.to_dict()})
    except ValueError as e:
        return _error(str(e), 400)
    except LookupError as e:
        return _error(str(e), 404)
    except Exception as e:
        app_logger.error(f"Error in set_device_direction: {e}", exc_info=True)
        return _error(str(e), 500)


@bp.route('/devices/<serial_number>/logs', methods=['GET'])
def device_logs(serial_number: str):
    """Operation and error logs the terminal uploaded, newest first"""
    try:
        limit = _limit(100)
        return jsonify({
            "success": True,
            "operations": device_log_repo.get_operations(serial_number, limit),
            "errors": device_log_repo.get_errors(serial_number, limit),
        })
    except Exception as e:
        app_logger.error(f"Error in device_logs: {e}", exc_info=True)
        return _error(str(e), 500)


@bp.route('/capabilities', methods=['GET'])
def list_capabilities():
    try:
        data = [caps.to_dict() for caps in capability_detector.get_all()]
        return jsonify({"success": True, "data": data})
    except Exception as e:
        app_logger.error(f"Error listing capabilities: {e}", exc_info=True)
        return _error(str(e), 500)


@bp.route('/devices/<serial_number>/probe', methods=['POST'])
def probe_device(serial_number: str):
    try:
        if not device_registry.get(serial_number):
            return _error(f"Device {serial_number} not found", 404)
        ids = capability_detector.probe(serial_number)
        return jsonify({"success": True, "command_ids": ids})
    except Exception as e:
        app_logger.error(f"Error in probe_device: {e}", exc_info=True)
        return _error(str(e), 500)


# ============================================================================
# COMMAND QUEUE
# ============================================================================

@bp.route('/devices/<serial_number>/command', methods=['POST'])
def queue_device_command(serial_number: str):
    """
    Queue a command for the device's next poll.

    Request Body (JSON):
        {"command": "DATA QUERY ATTLOG", "priority": 5, "sequence": 0}
    """
    try:
        if not request.is_json:
            return _error("Content-Type must be application/json", 400)

        data = _json_body()
        command = (data.get('command') or '').strip()
        if not command:
            return _error("Missing 'command' field in request body", 400)

        queued = command_queue.enqueue(
            serial_number,
            command,
            priority=int(data['priority']) if data.get('priority') is not None else None,
            sequence=int(data.get('sequence') or 0),
        )
        app_logger.info(f"[QUEUE] Command queued via API: SN={serial_number}, command={command}")
        return jsonify({"success": True, "command": queued.to_dict()}), 201

    except (TypeError, ValueError) as e:
        return _error(str(e), 400)
    except Exception as e:
        app_logger.error(f"Error in queue_device_command: {e}", exc_info=True)
        return _error(str(e), 500)


@bp.route('/devices/<serial_number>/commands/cancel', methods=['POST'])
def cancel_device_commands(serial_number: str):
    try:
        cancelled = command_queue.cancel(serial_number, _json_body().get('filter'))
        return jsonify({"success": True, "cancelled": cancelled})
    except Exception as e:
        app_logger.error(f"Error in cancel_device_commands: {e}", exc_info=True)
        return _error(str(e), 500)


@bp.route('/queue/stats', methods=['GET'])
def queue_stats():
    try:
        return jsonify({"success": True, "stats": command_queue.stats(request.args.get('device'))})
    except Exception as e:
        app_logger.error(f"Error in queue_stats: {e}", exc_info=True)
        return _error(str(e), 500)


@bp.route('/queue/dead-letter', methods=['GET'])
def dead_letter_list():
    try:
        commands = command_queue.dead_letters(request.args.get('device'), _limit(50))
        return jsonify({"success": True, "data": [c.to_dict() for c in commands]})
    except Exception as e:
        app_logger.error(f"Error in dead_letter_list: {e}", exc_info=True)
        return _error(str(e), 500)


@bp.route('/queue/dead-letter/<int:command_id>/retry', methods=['POST'])
def dead_letter_retry(command_id: int):
    try:
        command = command_queue.retry_dead_letter(command_id)
        return jsonify({"success": True, "command": command.to_dict()})
    except CommandNotFoundError as e:
        return _error(str(e), 404)
    except InvalidCommandTransition as e:
        return _error(str(e), 409)
    except Exception as e:
        app_logger.error(f"Error in dead_letter_retry: {e}", exc_info=True)
        return _error(str(e), 500)


@bp.route('/queue/employee/<employee_code>', methods=['GET'])
def employee_command_history(employee_code: str):
    try:
        commands = command_queue.history_for_employee(employee_code, _limit(20))
        return jsonify({"success": True, "data": [c.to_dict() for c in commands]})
    except Exception as e:
        app_logger.error(f"Error in employee_command_history: {e}", exc_info=True)
        return _error(str(e), 500)


@bp.route('/queue/purge', methods=['POST'])
def purge_commands():
    try:
        days = _json_body().get('retention_days')
        purged = command_queue.purge(retention_days=int(days) if days is not None else None)
        return jsonify({"success": True, "purged": purged})
    except (TypeError, ValueError) as e:
        return _error(str(e), 400)
    except Exception as e:
        app_logger.error(f"Error in purge_commands: {e}", exc_info=True)
        return _error(str(e), 500)


# ============================================================================
# SYNC, ATTENDANCE & SETTINGS
# ============================================================================

@bp.route('/employees/<employee_code>/resync', methods=['POST'])
def resync_employee(employee_code: str):
    try:
        ids = template_sync.resync_employee(employee_code, _json_body().get('device'))
        return jsonify({"success": True, "queued": len(ids)})
    except Exception as e:
        app_logger.error(f"Error in resync_employee: {e}", exc_info=True)
        return _error(str(e), 500)


@bp.route('/employees/<employee_code>/templates', methods=['GET'])
def employee_templates(employee_code: str):
    """Stored templates of an employee (metadata only, payloads omitted)"""
    try:
        employee = employee_repo.get(employee_code)
        if not employee:
            return _error(f"Employee {employee_code} not found", 404)
        templates = template_repo.get_by_employee(employee_code)
        return jsonify({
            "success": True,
            "employee": employee.to_dict(),
            "templates": [t.to_dict() for t in templates],
        })
    except Exception as e:
        app_logger.error(f"Error in employee_templates: {e}", exc_info=True)
        return _error(str(e), 500)


@bp.route('/attendance/<employee_code>/<day>', methods=['GET'])
def attendance_day(employee_code: str, day: str):
    """Punches and daily summary of one employee, e.g. /attendance/E001/2024-01-10"""
    try:
        target = date.fromisoformat(day)
    except ValueError:
        return _error("Date must be YYYY-MM-DD", 400)

    try:
        summary = attendance_summarizer.get(employee_code, target)
        punches = attendance_repo.get_for_day(employee_code, target)
        return jsonify({
            "success": True,
            "summary": summary.to_dict() if summary else None,
            "punches": [p.to_dict() for p in punches],
        })
    except Exception as e:
        app_logger.error(f"Error in attendance_day: {e}", exc_info=True)
        return _error(str(e), 500)


@bp.route('/attendance/recompute', methods=['POST'])
def recompute_attendance():
    """
    Request Body (JSON):
        {"start": "2024-01-01", "end": "2024-01-31", "employee_code": "E001"}
    """
    try:
        data = _json_body()
        start = date.fromisoformat(data['start'])
        end = date.fromisoformat(data.get('end') or data['start'])
        count = attendance_summarizer.recompute_range(start, end, data.get('employee_code'))
        return jsonify({"success": True, "recomputed": count})
    except KeyError:
        return _error("Missing 'start' field in request body", 400)
    except ValueError as e:
        return _error(str(e), 400)
    except Exception as e:
        app_logger.error(f"Error in recompute_attendance: {e}", exc_info=True)
        return _error(str(e), 500)


@bp.route('/settings', methods=['GET'])
def get_settings():
    return jsonify({"success": True, "data": config_manager.get_config()})


@bp.route('/settings', methods=['PUT'])
def update_settings():
    try:
        config_manager.save_config(_json_body())
        return jsonify({"success": True, "data": config_manager.get_config()})
    except ValueError as e:
        return _error(str(e), 400)
    except Exception as e:
        app_logger.error(f"Error in update_settings: {e}", exc_info=True)
        return _error(str(e), 500)


@bp.route('/scheduler/jobs', methods=['GET'])
def scheduler_jobs():
    try:
        from adms_server.services.scheduler_service import scheduler_service
        return jsonify({"success": True, "data": scheduler_service.get_all_jobs()})
    except Exception as e:
        app_logger.error(f"Error in scheduler_jobs: {e}", exc_info=True)
        return _error(str(e), 500)
