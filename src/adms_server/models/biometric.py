from dataclasses import dataclass
from typing import Optional
from datetime import datetime


class TemplateType:
    """Biometric template type codes used on the wire"""
    FINGERPRINT = 1
    FINGERPRINT_ALT = 2
    FACE = 9

    FINGERPRINT_TYPES = (FINGERPRINT, FINGERPRINT_ALT)


def normalize_payload(payload: Optional[str]) -> str:
    """Trimmed payload with line endings removed; used for change detection"""
    if not payload:
        return ""
    return payload.strip().replace("\r", "").replace("\n", "")


@dataclass
class BiometricTemplate:
    """Enrolled template; (employee_code, template_type, template_no) is unique"""
    employee_code: str
    template_type: int
    template_no: int
    template_data: str
    valid: int = 1
    duress: int = 0
    source_device: Optional[str] = None
    major_ver: int = 0
    minor_ver: int = 0
    format: int = 0
    index_no: int = 0
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_face(self) -> bool:
        return self.template_type == TemplateType.FACE

    @property
    def normalized_data(self) -> str:
        return normalize_payload(self.template_data)

    def to_dict(self, include_data: bool = False):
        data = {
            'id': self.id,
            'employee_code': self.employee_code,
            'template_type': self.template_type,
            'template_no': self.template_no,
            'valid': self.valid,
            'duress': self.duress,
            'source_device': self.source_device,
            'major_ver': self.major_ver,
            'minor_ver': self.minor_ver,
            'format': self.format,
            'index_no': self.index_no,
            'template_length': len(self.template_data or ''),
            'updated_at': self.updated_at.strftime('%Y-%m-%d %H:%M:%S') if self.updated_at else None,
        }
        if include_data:
            data['template_data'] = self.template_data
        return data
