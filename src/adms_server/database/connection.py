import sqlite3
import os
import threading
import atexit
from contextlib import contextmanager
from typing import Optional, List, Set


SCHEMA = (
    # Terminals, keyed by their immutable serial number
    """
    CREATE TABLE IF NOT EXISTS devices (
        serial_number TEXT PRIMARY KEY,
        name TEXT,
        status TEXT NOT NULL DEFAULT 'offline', -- 'online' or 'offline'
        last_activity DATETIME,
        ip_address TEXT,
        device_model TEXT,
        firmware_version TEXT,
        push_version TEXT,
        punch_direction TEXT NOT NULL DEFAULT 'both', -- 'in', 'out' or 'both'
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS device_capabilities (
        device_serial TEXT PRIMARY KEY,
        device_model TEXT,
        firmware_version TEXT,
        face_supported BOOLEAN DEFAULT FALSE,
        finger_supported BOOLEAN DEFAULT FALSE,
        palm_supported BOOLEAN DEFAULT FALSE,
        card_supported BOOLEAN DEFAULT TRUE,
        face_major_ver INTEGER DEFAULT 0,
        face_minor_ver INTEGER DEFAULT 0,
        face_format INTEGER DEFAULT 0,
        raw_info TEXT,
        detected_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS employees (
        employee_code TEXT PRIMARY KEY,
        name TEXT NOT NULL DEFAULT 'Unknown',
        privilege INTEGER DEFAULT 0,
        password TEXT DEFAULT '',
        card_number TEXT DEFAULT '',
        has_fingerprint BOOLEAN DEFAULT FALSE,
        has_face BOOLEAN DEFAULT FALSE,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # One master row per (employee, instant); re-delivery updates in place
    """
    CREATE TABLE IF NOT EXISTS attendance_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        employee_code TEXT NOT NULL,
        device_serial TEXT,
        punch_time DATETIME NOT NULL,
        punch_state TEXT,
        verification_mode TEXT,
        work_code TEXT,
        raw_data TEXT,
        upload_time DATETIME,
        sync_status TEXT DEFAULT 'pending', -- pending, synced, error
        synced_at DATETIME NULL,
        error_message TEXT NULL,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        CONSTRAINT unique_punch UNIQUE(employee_code, punch_time)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS biometric_templates (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        employee_code TEXT NOT NULL,
        template_type INTEGER NOT NULL, -- 1/2: fingerprint, 9: face
        template_no INTEGER NOT NULL DEFAULT 0,
        valid INTEGER DEFAULT 1,
        duress INTEGER DEFAULT 0,
        template_data TEXT NOT NULL,
        source_device TEXT,
        major_ver INTEGER DEFAULT 0,
        minor_ver INTEGER DEFAULT 0,
        format INTEGER DEFAULT 0,
        index_no INTEGER DEFAULT 0,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        CONSTRAINT unique_template UNIQUE(employee_code, template_type, template_no)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS device_commands (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        device_serial TEXT NOT NULL,
        command TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending', -- pending, sent, success, dead_letter, cancelled
        priority INTEGER NOT NULL DEFAULT 5,
        sequence INTEGER NOT NULL DEFAULT 0,
        retry_count INTEGER NOT NULL DEFAULT 0,
        max_retries INTEGER NOT NULL DEFAULT 3,
        next_retry_at DATETIME NULL,
        last_error TEXT NULL,
        created_at DATETIME NOT NULL,
        sent_at DATETIME NULL,
        completed_at DATETIME NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS device_operation_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        device_serial TEXT,
        operation_type TEXT,
        operator TEXT,
        log_time DATETIME,
        details TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS device_error_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        device_serial TEXT,
        error_code TEXT,
        operator TEXT,
        log_time DATETIME,
        details TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS attendance_daily_summary (
        employee_code TEXT NOT NULL,
        date TEXT NOT NULL,
        in_time DATETIME NULL,
        out_time DATETIME NULL,
        duration_minutes INTEGER DEFAULT 0,
        late_minutes INTEGER DEFAULT 0,
        status TEXT NOT NULL,
        last_calculated_at DATETIME,
        PRIMARY KEY (employee_code, date)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS app_settings (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        description TEXT,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
)

INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_commands_dequeue ON device_commands(device_serial, status, priority, sequence, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_commands_completed ON device_commands(status, completed_at)",
    "CREATE INDEX IF NOT EXISTS idx_attendance_employee_time ON attendance_logs(employee_code, punch_time)",
    "CREATE INDEX IF NOT EXISTS idx_attendance_sync_status ON attendance_logs(sync_status)",
    "CREATE INDEX IF NOT EXISTS idx_templates_employee ON biometric_templates(employee_code)",
    "CREATE INDEX IF NOT EXISTS idx_devices_status ON devices(status, last_activity)",
)

TABLES = (
    "devices",
    "device_capabilities",
    "employees",
    "attendance_logs",
    "biometric_templates",
    "device_commands",
    "device_operation_logs",
    "device_error_logs",
    "attendance_daily_summary",
    "app_settings",
)


class DatabaseManager:
    """SQLite database manager for the ADMS server"""

    def __init__(self, db_path: str = "adms_server.db"):
        env_db_path = os.environ.get("ADMS_DB_PATH")
        resolved_path = env_db_path if env_db_path else db_path

        if not os.path.isabs(resolved_path):
            resolved_path = os.path.join(os.getcwd(), resolved_path)

        db_directory = os.path.dirname(resolved_path)
        if db_directory:
            try:
                os.makedirs(db_directory, exist_ok=True)
            except OSError as exc:
                raise RuntimeError(
                    f"Unable to create database directory '{db_directory}': {exc}"
                ) from exc

        self.db_path = resolved_path
        self._local = threading.local()
        self._connections: Set[sqlite3.Connection] = set()
        self._lock = threading.Lock()

        atexit.register(self.close_all_connections)

        self.init_database()

    def get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection"""
        if not hasattr(self._local, "connection") or self._local.connection is None:
            conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30.0)
            # WAL lets request threads and scheduler jobs read while one writes
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA temp_store = MEMORY")
            conn.row_factory = sqlite3.Row

            self._local.connection = conn

            with self._lock:
                self._connections.add(conn)

        return self._local.connection

    @contextmanager
    def get_cursor(self):
        """Context manager for database operations; one transaction per block"""
        conn = self.get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
        except Exception:
            conn.rollback()
            raise
        else:
            conn.commit()
        finally:
            cursor.close()

    @contextmanager
    def transaction(self):
        """Write transaction holding the RESERVED lock from its first statement.

        Read-then-write blocks (existence checks, compare-and-set) run under
        the lock, so a concurrent writer waits instead of reading stale state.
        """
        conn = self.get_connection()
        if not conn.in_transaction:
            conn.execute("BEGIN IMMEDIATE")
        with self.get_cursor() as cursor:
            yield cursor

    def init_database(self):
        """Initialize database tables"""
        with self.get_cursor() as cursor:
            for statement in SCHEMA:
                cursor.execute(statement)
            for statement in INDEXES:
                cursor.execute(statement)

    def execute_query(self, query: str, params: tuple = ()) -> sqlite3.Cursor:
        """Execute a single query"""
        with self.get_cursor() as cursor:
            cursor.execute(query, params)
            return cursor

    def fetch_one(self, query: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        """Fetch single row"""
        with self.get_cursor() as cursor:
            cursor.execute(query, params)
            return cursor.fetchone()

    def fetch_all(self, query: str, params: tuple = ()) -> List[sqlite3.Row]:
        """Fetch all rows"""
        with self.get_cursor() as cursor:
            cursor.execute(query, params)
            return cursor.fetchall()

    def clear_all_tables(self):
        """Delete every row from every table (used by the test suite)"""
        with self.get_cursor() as cursor:
            for table in TABLES:
                cursor.execute(f"DELETE FROM {table}")
            cursor.execute("DELETE FROM sqlite_sequence")

    def close_connection(self):
        """Close thread-local connection"""
        if hasattr(self._local, "connection") and self._local.connection is not None:
            try:
                conn = self._local.connection
                conn.close()

                with self._lock:
                    self._connections.discard(conn)
            except sqlite3.Error as e:
                print(f"Error closing thread-local connection: {e}")
            finally:
                self._local.connection = None

    def close_all_connections(self):
        """Close all tracked connections - called on shutdown"""
        with self._lock:
            connections_to_close = list(self._connections)
            self._connections.clear()

        for conn in connections_to_close:
            try:
                conn.close()
            except sqlite3.Error as e:
                print(f"Error closing connection: {e}")


# Global database manager instance
db_manager = DatabaseManager()
