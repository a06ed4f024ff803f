# sync/audit_sink.py

from typing import List, Optional

from utils.csv_utils import append_csv
from .models import AUDIT_HEADERS, AuditRecord


def append_audit_records(path: Optional[str], records: List[AuditRecord]) -> int:
    """Appends one wave of audit rows. The header goes in only when the file is new."""
    if not path or not records:
        return 0
    return append_csv(path, [r.as_row() for r in records], AUDIT_HEADERS)
