from typing import Dict, List, Optional
from adms_server.models.command import CommandStatus, DeviceCommand
from adms_server.database.connection import db_manager
from adms_server.utils.timefmt import from_db, now_db, to_db


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _subject_patterns(employee_code: str):
    """LIKE patterns matching a PIN=<code> token mid-line or at end of line (LIKE is case-insensitive)"""
    code = _escape_like(employee_code)
    return (f"%PIN={code}\t%", f"%PIN={code}")


SUBJECT_MATCH = "(command LIKE ? ESCAPE '\\' OR command LIKE ? ESCAPE '\\')"


class CommandRepository:
    """Durable per-device command outbox.

    State transitions are compare-and-set on the current status so that
    concurrent polls and background sweeps never act on the same row twice.
    """

    INSERT_QUERY = '''
        INSERT INTO device_commands (
            device_serial, command, status, priority, sequence,
            retry_count, max_retries, created_at
        ) VALUES (?, ?, ?, ?, ?, 0, ?, ?)
    '''

    def insert(self, command: DeviceCommand) -> DeviceCommand:
        created_at = to_db(command.created_at) or now_db()
        cursor = db_manager.execute_query(self.INSERT_QUERY, (
            command.device_serial, command.command, CommandStatus.PENDING,
            command.priority, command.sequence, command.max_retries, created_at,
        ))
        return self.get_by_id(cursor.lastrowid)

    def insert_many(self, commands: List[DeviceCommand]) -> List[int]:
        """Insert all commands in one transaction; nothing is stored if any insert fails"""
        ids = []
        with db_manager.transaction() as cursor:
            for command in commands:
                cursor.execute(self.INSERT_QUERY, (
                    command.device_serial, command.command, CommandStatus.PENDING,
                    command.priority, command.sequence, command.max_retries,
                    to_db(command.created_at) or now_db(),
                ))
                ids.append(cursor.lastrowid)
        return ids

    def get_by_id(self, command_id: int) -> Optional[DeviceCommand]:
        row = db_manager.fetch_one("SELECT * FROM device_commands WHERE id = ?", (command_id,))
        return self._row_to_command(row) if row else None

    def get_for_device(self, device_serial: str, status: str = None) -> List[DeviceCommand]:
        """Commands of a device in dequeue order"""
        if status:
            rows = db_manager.fetch_all(
                '''
                SELECT * FROM device_commands WHERE device_serial = ? AND status = ?
                ORDER BY priority ASC, sequence ASC, created_at ASC, id ASC
                ''',
                (device_serial, status),
            )
        else:
            rows = db_manager.fetch_all(
                '''
                SELECT * FROM device_commands WHERE device_serial = ?
                ORDER BY priority ASC, sequence ASC, created_at ASC, id ASC
                ''',
                (device_serial,),
            )
        return [self._row_to_command(row) for row in rows]

    def claim_next(self, device_serial: str, now=None, attempts: int = 3) -> Optional[DeviceCommand]:
        """Move the first eligible pending command of a device to 'sent' and return it"""
        timestamp = now_db(now)
        for _ in range(attempts):
            row = db_manager.fetch_one(
                '''
                SELECT id FROM device_commands
                WHERE device_serial = ? AND status = ?
                  AND (next_retry_at IS NULL OR next_retry_at <= ?)
                ORDER BY priority ASC, sequence ASC, created_at ASC, id ASC
                LIMIT 1
                ''',
                (device_serial, CommandStatus.PENDING, timestamp),
            )
            if not row:
                return None

            cursor = db_manager.execute_query(
                '''
                UPDATE device_commands SET status = ?, sent_at = ?, next_retry_at = NULL
                WHERE id = ? AND status = ?
                ''',
                (CommandStatus.SENT, timestamp, row['id'], CommandStatus.PENDING),
            )
            if cursor.rowcount == 1:
                return self.get_by_id(row['id'])
            # another poll claimed it first; look again
        return None

    def mark_success(self, command_id: int, now=None) -> bool:
        cursor = db_manager.execute_query(
            '''
            UPDATE device_commands SET status = ?, completed_at = ?, last_error = NULL
            WHERE id = ? AND status = ?
            ''',
            (CommandStatus.SUCCESS, now_db(now), command_id, CommandStatus.SENT),
        )
        return cursor.rowcount == 1

    def schedule_retry(self, command_id: int, retry_count: int, next_retry_at, error: str) -> bool:
        cursor = db_manager.execute_query(
            '''
            UPDATE device_commands
            SET status = ?, retry_count = ?, next_retry_at = ?, last_error = ?, sent_at = NULL
            WHERE id = ? AND status = ?
            ''',
            (CommandStatus.PENDING, retry_count, to_db(next_retry_at), error,
             command_id, CommandStatus.SENT),
        )
        return cursor.rowcount == 1

    def mark_dead_letter(self, command_id: int, retry_count: int, error: str, now=None) -> bool:
        cursor = db_manager.execute_query(
            '''
            UPDATE device_commands
            SET status = ?, retry_count = ?, last_error = ?, completed_at = ?, next_retry_at = NULL
            WHERE id = ? AND status = ?
            ''',
            (CommandStatus.DEAD_LETTER, retry_count, error, now_db(now),
             command_id, CommandStatus.SENT),
        )
        return cursor.rowcount == 1

    def clear_elapsed_retries(self, now=None) -> int:
        cursor = db_manager.execute_query(
            '''
            UPDATE device_commands SET next_retry_at = NULL
            WHERE status = ? AND next_retry_at IS NOT NULL AND next_retry_at <= ?
            ''',
            (CommandStatus.PENDING, now_db(now)),
        )
        return cursor.rowcount

    def get_stuck_sent(self, cutoff) -> List[DeviceCommand]:
        rows = db_manager.fetch_all(
            "SELECT * FROM device_commands WHERE status = ? AND sent_at IS NOT NULL AND sent_at < ? ORDER BY id",
            (CommandStatus.SENT, to_db(cutoff)),
        )
        return [self._row_to_command(row) for row in rows]

    def purge_completed(self, cutoff) -> int:
        cursor = db_manager.execute_query(
            "DELETE FROM device_commands WHERE status IN (?, ?) AND completed_at < ?",
            (*CommandStatus.COMPLETED, to_db(cutoff)),
        )
        return cursor.rowcount

    def cancel_pending(self, device_serial: str, command_filter: str = None, now=None) -> int:
        params = [CommandStatus.CANCELLED, now_db(now), device_serial, CommandStatus.PENDING]
        query = '''
            UPDATE device_commands SET status = ?, completed_at = ?
            WHERE device_serial = ? AND status = ?
        '''
        if command_filter:
            query += " AND command LIKE ? ESCAPE '\\'"
            params.append(f"%{_escape_like(command_filter)}%")
        cursor = db_manager.execute_query(query, tuple(params))
        return cursor.rowcount

    def count_by_status(self, device_serial: str = None) -> Dict[str, int]:
        if device_serial:
            rows = db_manager.fetch_all(
                "SELECT status, COUNT(*) AS count FROM device_commands WHERE device_serial = ? GROUP BY status",
                (device_serial,),
            )
        else:
            rows = db_manager.fetch_all(
                "SELECT status, COUNT(*) AS count FROM device_commands GROUP BY status"
            )
        return {row['status']: row['count'] for row in rows}

    def get_dead_letters(self, device_serial: str = None, limit: int = 50) -> List[DeviceCommand]:
        if device_serial:
            rows = db_manager.fetch_all(
                "SELECT * FROM device_commands WHERE status = ? AND device_serial = ? ORDER BY completed_at DESC, id DESC LIMIT ?",
                (CommandStatus.DEAD_LETTER, device_serial, limit),
            )
        else:
            rows = db_manager.fetch_all(
                "SELECT * FROM device_commands WHERE status = ? ORDER BY completed_at DESC, id DESC LIMIT ?",
                (CommandStatus.DEAD_LETTER, limit),
            )
        return [self._row_to_command(row) for row in rows]

    def revive_dead_letter(self, command_id: int, extra_budget: int) -> bool:
        cursor = db_manager.execute_query(
            '''
            UPDATE device_commands
            SET status = ?, retry_count = 0, max_retries = max_retries + ?,
                next_retry_at = NULL, completed_at = NULL, sent_at = NULL
            WHERE id = ? AND status = ?
            ''',
            (CommandStatus.PENDING, extra_budget, command_id, CommandStatus.DEAD_LETTER),
        )
        return cursor.rowcount == 1

    def get_for_employee(self, employee_code: str, limit: int = 20) -> List[DeviceCommand]:
        rows = db_manager.fetch_all(
            f'''
            SELECT * FROM device_commands
            WHERE {SUBJECT_MATCH}
            ORDER BY created_at DESC, id DESC LIMIT ?
            ''',
            (*_subject_patterns(employee_code), limit),
        )
        return [self._row_to_command(row) for row in rows]

    def has_recent_identity(self, device_serial: str, employee_code: str, since) -> bool:
        """Whether an identity command for the employee was queued on the device since ``since``"""
        row = db_manager.fetch_one(
            f'''
            SELECT id FROM device_commands
            WHERE device_serial = ? AND status IN (?, ?) AND created_at >= ?
              AND {SUBJECT_MATCH}
              AND command LIKE 'DATA UPDATE USERINFO %'
            LIMIT 1
            ''',
            (device_serial, CommandStatus.PENDING, CommandStatus.SENT, to_db(since),
             *_subject_patterns(employee_code)),
        )
        return row is not None

    def release_subject(self, device_serial: str, employee_code: str) -> int:
        """Clear backoff timers on pending commands for one employee on one device"""
        cursor = db_manager.execute_query(
            f'''
            UPDATE device_commands SET next_retry_at = NULL
            WHERE device_serial = ? AND status = ? AND next_retry_at IS NOT NULL
              AND {SUBJECT_MATCH}
            ''',
            (device_serial, CommandStatus.PENDING, *_subject_patterns(employee_code)),
        )
        return cursor.rowcount

    def _row_to_command(self, row) -> DeviceCommand:
        return DeviceCommand(
            id=row['id'],
            device_serial=row['device_serial'],
            command=row['command'],
            status=row['status'],
            priority=row['priority'],
            sequence=row['sequence'],
            retry_count=row['retry_count'],
            max_retries=row['max_retries'],
            next_retry_at=from_db(row['next_retry_at']),
            last_error=row['last_error'],
            created_at=from_db(row['created_at']),
            sent_at=from_db(row['sent_at']),
            completed_at=from_db(row['completed_at']),
        )
