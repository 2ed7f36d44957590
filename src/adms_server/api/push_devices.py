"""
Push Protocol API Controller

Device-facing endpoints of the ADMS protocol. Each path is also served with
an ``.aspx`` suffix, which some firmwares append.

Endpoints:
- GET  /iclock/cdata       - Handshake (option block)
- POST /iclock/cdata       - Data upload (ATTLOG, OPERLOG, ERRORLOG, BIODATA, ...)
- GET  /iclock/getrequest  - Poll for the next command
- POST /iclock/devicecmd   - Command result report

Terminals have no error channel: every path answers plain text and upload,
poll and result paths fall back to "OK" on any server error.
"""

from flask import Blueprint, request, Response

from adms_server.services.push_protocol_service import OK, push_protocol_service
from adms_server.shared.logger import app_logger


# ============================================================================
# BLUEPRINT SETUP
# ============================================================================

push_devices_bp = Blueprint('push_devices', __name__)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def _create_text_response(text: str) -> Response:
    """Plain text response; terminals read the body verbatim"""
    return Response(text, mimetype='text/plain')


def _serial_number():
    return (request.args.get('SN') or '').strip() or None


def _body_text() -> str:
    return request.get_data(as_text=True) or ''


# ============================================================================
# PUSH PROTOCOL ENDPOINTS (Device-facing)
# ============================================================================

@push_devices_bp.route('/iclock/cdata', methods=['GET'])
@push_devices_bp.route('/iclock/cdata.aspx', methods=['GET'])
def device_handshake():
    """
    Handshake. Returns the option block for a known SN, or a readiness
    message when SN is missing.

    Example Request:
        GET /iclock/cdata?SN=ABC123456&options=all&pushver=2.4.1
    """
    serial_number = _serial_number()
    try:
        text = push_protocol_service.handle_handshake(
            serial_number,
            ip_address=request.remote_addr,
            push_version=request.args.get('pushver'),
            info=request.args.get('INFO'),
        )
        return _create_text_response(text)

    except Exception as e:
        app_logger.error(f"Error in device_handshake: {e}", exc_info=True)
        return _create_text_response(OK)


@push_devices_bp.route('/iclock/cdata', methods=['POST'])
@push_devices_bp.route('/iclock/cdata.aspx', methods=['POST'])
def device_data_upload():
    """
    Upload of newline-delimited records for the table given in ``table``.

    Example Request:
        POST /iclock/cdata?SN=ABC123456&table=ATTLOG&Stamp=9999

        1001\t2025-01-09 08:30:00\t0\t1\t0
    """
    serial_number = _serial_number()
    try:
        text, _ = push_protocol_service.handle_upload(
            serial_number,
            request.args.get('table'),
            _body_text(),
            ip_address=request.remote_addr,
        )
        return _create_text_response(text)

    except Exception as e:
        app_logger.error(f"Error in device_data_upload: {e}", exc_info=True)
        return _create_text_response(OK)


@push_devices_bp.route('/iclock/getrequest', methods=['GET'])
@push_devices_bp.route('/iclock/getrequest.aspx', methods=['GET'])
def device_poll():
    """
    Poll. Answers ``OK`` when nothing is queued, otherwise ``C:<id>:<command>``.

    Example Request:
        GET /iclock/getrequest?SN=ABC123456&INFO=ZAM70-NF24HA-Ver3.3.12,1,1,0,10.0.0.5,10,40
    """
    serial_number = _serial_number()
    try:
        text = push_protocol_service.handle_poll(
            serial_number,
            info=request.args.get('INFO'),
            ip_address=request.remote_addr,
        )
        return _create_text_response(text)

    except Exception as e:
        app_logger.error(f"Error in device_poll: {e}", exc_info=True)
        return _create_text_response(OK)


@push_devices_bp.route('/iclock/devicecmd', methods=['POST'])
@push_devices_bp.route('/iclock/devicecmd.aspx', methods=['POST'])
def device_command_result():
    """
    Command result. Body: ``ID=<id>&Return=<code>&CMD=<verb>``, one report per line.
    """
    serial_number = _serial_number()
    try:
        text = push_protocol_service.handle_command_result(
            serial_number,
            _body_text(),
            query_id=request.args.get('ID'),
            query_return=request.args.get('Return'),
        )
        return _create_text_response(text)

    except Exception as e:
        app_logger.error(f"Error in device_command_result: {e}", exc_info=True)
        return _create_text_response(OK)


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@push_devices_bp.errorhandler(500)
def internal_error(error):
    """Terminals must never see a server error"""
    app_logger.error(f"[ADMS] 500 Internal Error on {request.path}: {error}", exc_info=True)
    return _create_text_response(OK)
