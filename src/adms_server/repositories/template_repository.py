from typing import List, Optional, Tuple
from adms_server.models.biometric import BiometricTemplate, normalize_payload
from adms_server.database.connection import db_manager
from adms_server.utils.timefmt import from_db, now_db


class TemplateRepository:
    """Biometric template store keyed by (employee, type, slot)"""

    def get(self, employee_code: str, template_type: int, template_no: int) -> Optional[BiometricTemplate]:
        row = db_manager.fetch_one(
            '''
            SELECT * FROM biometric_templates
            WHERE employee_code = ? AND template_type = ? AND template_no = ?
            ''',
            (employee_code, template_type, template_no),
        )
        return self._row_to_template(row) if row else None

    def get_by_employee(self, employee_code: str) -> List[BiometricTemplate]:
        rows = db_manager.fetch_all(
            "SELECT * FROM biometric_templates WHERE employee_code = ? ORDER BY template_type, template_no",
            (employee_code,),
        )
        return [self._row_to_template(row) for row in rows]

    def upsert(self, template: BiometricTemplate, now=None) -> Tuple[BiometricTemplate, bool]:
        """Store a template; returns the stored row and whether its payload is new or changed.

        An identical normalized payload leaves the row, including updated_at, untouched.
        """
        timestamp = now_db(now)
        with db_manager.transaction() as cursor:
            cursor.execute(
                '''
                SELECT template_data FROM biometric_templates
                WHERE employee_code = ? AND template_type = ? AND template_no = ?
                ''',
                (template.employee_code, template.template_type, template.template_no),
            )
            existing = cursor.fetchone()
            changed = existing is None or (
                normalize_payload(existing['template_data']) != template.normalized_data
            )
            if changed:
                cursor.execute(
                    '''
                    INSERT INTO biometric_templates (
                        employee_code, template_type, template_no, valid, duress,
                        template_data, source_device, major_ver, minor_ver, format,
                        index_no, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(employee_code, template_type, template_no) DO UPDATE SET
                        valid = excluded.valid,
                        duress = excluded.duress,
                        template_data = excluded.template_data,
                        source_device = excluded.source_device,
                        major_ver = excluded.major_ver,
                        minor_ver = excluded.minor_ver,
                        format = excluded.format,
                        index_no = excluded.index_no,
                        updated_at = excluded.updated_at
                    ''',
                    (
                        template.employee_code, template.template_type, template.template_no,
                        template.valid, template.duress, template.normalized_data,
                        template.source_device, template.major_ver, template.minor_ver,
                        template.format, template.index_no, timestamp, timestamp,
                    ),
                )
        stored = self.get(template.employee_code, template.template_type, template.template_no)
        return stored, changed

    def _row_to_template(self, row) -> BiometricTemplate:
        return BiometricTemplate(
            id=row['id'],
            employee_code=row['employee_code'],
            template_type=row['template_type'],
            template_no=row['template_no'],
            valid=row['valid'],
            duress=row['duress'],
            template_data=row['template_data'],
            source_device=row['source_device'],
            major_ver=row['major_ver'] or 0,
            minor_ver=row['minor_ver'] or 0,
            format=row['format'] or 0,
            index_no=row['index_no'] or 0,
            created_at=from_db(row['created_at']),
            updated_at=from_db(row['updated_at']),
        )
