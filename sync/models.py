# sync/models.py

import json
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field

from utils import config

# --- Property mappings ---

class SingleMapping(BaseModel):
    """One target property fed by one warehouse column."""
    kind: Literal["single"] = "single"
    target_property: str
    source_column: str

    def as_pairs(self) -> List[Tuple[str, str]]:
        return [(self.target_property, self.source_column)]

class MultiMapping(BaseModel):
    """Several target properties, each fed by its own warehouse column."""
    kind: Literal["multi"] = "multi"
    pairs: List[Tuple[str, str]]

    def as_pairs(self) -> List[Tuple[str, str]]:
        return list(self.pairs)

PropertyMapping = Union[SingleMapping, MultiMapping]


# --- Run configuration ---

class SyncRequest(BaseModel):
    object_type: Optional[str] = None
    query: Optional[str] = None  # SQL text, or a path ending in .sql
    property_map: Union[str, Dict[str, str], None] = None
    column_name: Optional[str] = None  # source column when property_map is a single property name
    id_column: Optional[str] = None
    match_key_type: str = "id"
    page_size: int = Field(default_factory=lambda: config.SYNC_PAGE_SIZE)
    wave_size: int = Field(default_factory=lambda: config.SYNC_WAVE_SIZE)
    concurrency: int = Field(default_factory=lambda: config.SYNC_CONCURRENCY)
    drop_blanks: bool = True
    apply: bool = False
    skip_already_processed: bool = True
    checkpoint_path: Optional[str] = Field(default_factory=lambda: config.SYNC_CHECKPOINT_PATH)
    audit_path: Optional[str] = None
    update_timeout: Optional[float] = Field(default_factory=lambda: config.SYNC_UPDATE_TIMEOUT)


# --- Per-record data ---

class PendingUpdate(BaseModel):
    identifier: str
    properties: Dict[str, Any]

class OutcomeStatus(str, Enum):
    DRY_RUN = "DRY_RUN"
    UPDATED = "UPDATED"
    ERROR = "ERROR"

class UpdateOutcome(BaseModel):
    identifier: str
    properties: Dict[str, Any]
    status: OutcomeStatus
    error: str = ""


def properties_json(properties: Dict[str, Any]) -> str:
    return json.dumps(properties, separators=(",", ":"), default=str)


AUDIT_HEADERS = ["matchVal", "status", "properties_json", "error"]

class AuditRecord(BaseModel):
    match_val: str
    status: OutcomeStatus
    properties_json: str
    error: str = ""

    @classmethod
    def from_outcome(cls, outcome: UpdateOutcome) -> "AuditRecord":
        return cls(
            match_val=outcome.identifier,
            status=outcome.status,
            properties_json=properties_json(outcome.properties),
            error=outcome.error,
        )

    def as_row(self) -> Dict[str, str]:
        return {
            "matchVal": self.match_val,
            "status": self.status.value,
            "properties_json": self.properties_json,
            "error": self.error,
        }


# --- Results ---

class SyncErrorRecord(BaseModel):
    match_val: str
    error: str
    properties: Dict[str, Any]

class RunSummary(BaseModel):
    fetched: int = 0
    attempted: int = 0
    updated: int = 0
    skipped: int = 0    # already processed, duplicated in this run, or discarded as blank-only
    discarded: int = 0  # blank-only rows (also counted in skipped)
    invalid: int = 0    # rows without a usable identifier
    errors: List[SyncErrorRecord] = []
    checkpoint_path: Optional[str] = None
    audit_path: Optional[str] = None
    note: str = ""

class ProgressEvent(BaseModel):
    page: int
    wave: int
    wave_size: int
    fetched: int
    attempted: int
    updated: int
    skipped: int
    errors: int
