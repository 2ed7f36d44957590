import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="adms-tests-")

# Must be set before any adms_server module reads the environment
os.environ["ADMS_DB_PATH"] = os.path.join(_TMP_DIR, "adms_test.db")
os.environ["ADMS_LOG_DIR"] = _TMP_DIR
os.environ["FANOUT_MODE"] = "inline"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["SENTRY_DSN"] = ""
os.environ["LOG_LEVEL"] = "WARNING"

import pytest  # noqa: E402

from adms_server import create_app  # noqa: E402
from adms_server.database.connection import db_manager  # noqa: E402
from adms_server.services.device_registry import device_registry  # noqa: E402
import adms_server.services.push_protocol_service  # noqa: E402,F401  wires template sync


@pytest.fixture(autouse=True)
def clean_database():
    db_manager.clear_all_tables()
    yield
    db_manager.clear_all_tables()


@pytest.fixture(scope="session")
def app():
    app = create_app()
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def register_devices():
    """Register devices by serial number as if each had sent a handshake"""
    def _register(*serials):
        return [device_registry.touch(serial) for serial in serials]
    return _register


@pytest.fixture
def template_payload():
    """Base64-looking template payload of the given length"""
    def _payload(length=500, seed="Zm9v"):
        return (seed * (length // len(seed) + 1))[:length]
    return _payload
