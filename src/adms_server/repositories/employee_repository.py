from typing import Optional
from adms_server.models.employee import Employee
from adms_server.database.connection import db_manager
from adms_server.utils.timefmt import from_db, now_db


class EmployeeRepository:
    """Employee directory operations"""

    def get(self, employee_code: str) -> Optional[Employee]:
        row = db_manager.fetch_one(
            "SELECT * FROM employees WHERE employee_code = ?", (employee_code,)
        )
        return self._row_to_employee(row) if row else None

    def ensure_exists(self, employee_code: str) -> bool:
        """Create a placeholder row for an unseen employee; True if one was created"""
        timestamp = now_db()
        cursor = db_manager.execute_query(
            "INSERT OR IGNORE INTO employees (employee_code, name, created_at, updated_at) VALUES (?, 'Unknown', ?, ?)",
            (employee_code, timestamp, timestamp),
        )
        return cursor.rowcount > 0

    def update_identity(
        self,
        employee_code: str,
        name: str = None,
        privilege: int = None,
        card_number: str = None,
        password: str = None,
    ) -> bool:
        """Refresh directory fields reported by a terminal; None leaves a field as is"""
        self.ensure_exists(employee_code)
        query = '''
            UPDATE employees SET
                name = COALESCE(?, name),
                privilege = COALESCE(?, privilege),
                card_number = COALESCE(?, card_number),
                password = COALESCE(?, password),
                updated_at = ?
            WHERE employee_code = ?
        '''
        cursor = db_manager.execute_query(
            query, (name, privilege, card_number, password, now_db(), employee_code)
        )
        return cursor.rowcount > 0

    def set_biometric_flag(self, employee_code: str, fingerprint: bool = False, face: bool = False):
        self.ensure_exists(employee_code)
        assignments = []
        if fingerprint:
            assignments.append("has_fingerprint = 1")
        if face:
            assignments.append("has_face = 1")
        if not assignments:
            return
        assignments.append("updated_at = ?")
        db_manager.execute_query(
            f"UPDATE employees SET {', '.join(assignments)} WHERE employee_code = ?",
            (now_db(), employee_code),
        )

    def _row_to_employee(self, row) -> Employee:
        return Employee(
            employee_code=row['employee_code'],
            name=row['name'] or 'Unknown',
            privilege=row['privilege'] or 0,
            password=row['password'] or '',
            card_number=row['card_number'] or '',
            has_fingerprint=bool(row['has_fingerprint']),
            has_face=bool(row['has_face']),
            created_at=from_db(row['created_at']),
            updated_at=from_db(row['updated_at']),
        )
