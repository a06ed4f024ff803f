# sync/record_mapper.py

from typing import Any, Dict, Optional

from .errors import SyncConfigurationError
from .models import MultiMapping, PendingUpdate, PropertyMapping, SingleMapping, SyncRequest


def resolve_mapping(request: SyncRequest) -> PropertyMapping:
    """Turns the request's property_map into a SingleMapping or a MultiMapping."""
    property_map = request.property_map
    if isinstance(property_map, dict):
        if not property_map:
            raise SyncConfigurationError("property_map must map at least one property")
        return MultiMapping(pairs=list(property_map.items()))
    if isinstance(property_map, str) and property_map.strip():
        if not request.column_name:
            raise SyncConfigurationError("Missing required arg: column_name (when property_map is a single property)")
        return SingleMapping(target_property=property_map, source_column=request.column_name)
    raise SyncConfigurationError("Missing required arg: property_map")


def is_blank(value: Any, drop_blanks: bool = True) -> bool:
    if value is None:
        return True
    return drop_blanks and str(value).strip() == ""


def map_row(row: Dict[str, Any], id_column: str, mapping: PropertyMapping, drop_blanks: bool = True) -> Optional[PendingUpdate]:
    """
    Builds the update for one warehouse row.

    Returns None when the row has no usable identifier. The returned update
    may carry no properties at all (every mapped value was blank).
    """
    raw_id = row.get(id_column)
    identifier = "" if raw_id is None else str(raw_id).strip()
    if not identifier:
        return None

    properties = {}
    for target_property, source_column in mapping.as_pairs():
        value = row.get(source_column)
        if not is_blank(value, drop_blanks):
            properties[target_property] = value
    return PendingUpdate(identifier=identifier, properties=properties)
