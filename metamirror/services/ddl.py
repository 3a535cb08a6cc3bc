"""Helpers over table definitions as returned by SHOW CREATE TABLE (one list entry per line)."""
from __future__ import annotations
import re
from typing import Dict, List, Optional

TRANSACTIONAL = "transactional"
TRANSACTIONAL_PROPERTIES = "transactional_properties"
EXTERNAL_PURGE = "external.table.purge"
BUCKETING_VERSION = "bucketing_version"
STORAGE_MIGRATED_FLAG = "metamirror.storage_migrated"
DOWNGRADED_FROM_ACID = "metamirror.downgraded_from_acid"

_TBLPROPERTY = re.compile(r"^\s*'([^']+)'\s*=\s*'([^']*)'\s*[,)]?\s*$")
_CREATE = re.compile(r"^CREATE\s+(EXTERNAL\s+|TEMPORARY\s+)?TABLE\s+(`?[\w.]+`?)", re.IGNORECASE)
_COLUMN = re.compile(r"^\s*`([^`]+)`\s+([^,)\s]+(?:\([^)]*\))?)")


def _strip_quotes(value: str) -> str:
    value = value.strip().rstrip(",")
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return value[1:-1]
    return value


def get_location(definition: List[str]) -> Optional[str]:
    for i, line in enumerate(definition):
        if line.strip().upper() == "LOCATION" and i + 1 < len(definition):
            return _strip_quotes(definition[i + 1])
    return None


def update_location(definition: List[str], location: str) -> bool:
    for i, line in enumerate(definition):
        if line.strip().upper() == "LOCATION" and i + 1 < len(definition):
            definition[i + 1] = f"  '{location}'"
            return True
    return False


def set_location(definition: List[str], location: str) -> None:
    """Update the LOCATION clause, adding one ahead of TBLPROPERTIES when missing."""
    if update_location(definition, location):
        return
    idx = len(definition)
    for i, line in enumerate(definition):
        if line.strip().upper().startswith("TBLPROPERTIES"):
            idx = i
            break
    definition[idx:idx] = ["LOCATION", f"  '{location}'"]


def remove_location(definition: List[str]) -> None:
    for i, line in enumerate(definition):
        if line.strip().upper() == "LOCATION" and i + 1 < len(definition):
            del definition[i:i + 2]
            return


def is_view(definition: List[str]) -> bool:
    return bool(definition) and definition[0].upper().startswith("CREATE VIEW")


def is_external(definition: List[str]) -> bool:
    return bool(definition) and "CREATE EXTERNAL TABLE" in definition[0].upper()


def is_managed(definition: List[str]) -> bool:
    return bool(definition) and not is_external(definition) and not is_view(definition)


def is_acid(definition: List[str]) -> bool:
    return (get_tbl_property(definition, TRANSACTIONAL) or "").lower() == "true"


def is_partitioned(definition: List[str]) -> bool:
    return any(line.strip().upper().startswith("PARTITIONED BY") for line in definition)


def is_hive_native(definition: List[str]) -> bool:
    return not any(line.strip().upper().startswith("STORED BY") for line in definition)


def is_storage_migrated(definition: List[str]) -> bool:
    return get_tbl_property(definition, STORAGE_MIGRATED_FLAG) is not None


def table_name(definition: List[str]) -> Optional[str]:
    if not definition:
        return None
    match = _CREATE.match(definition[0].strip())
    return match.group(2).strip("`") if match else None


def change_table_name(definition: List[str], new_name: str) -> None:
    if not definition:
        return
    match = _CREATE.match(definition[0].strip())
    if match:
        definition[0] = definition[0].replace(match.group(2), f"`{new_name}`", 1)


def partition_columns(definition: List[str]) -> List[str]:
    columns: List[str] = []
    inside = False
    for line in definition:
        stripped = line.strip()
        if stripped.upper().startswith("PARTITIONED BY"):
            inside = True
            continue
        if inside:
            match = _COLUMN.match(line)
            if match:
                columns.append(match.group(1))
            if stripped.endswith(")"):
                break
    return columns


def file_format(definition: List[str]) -> Optional[str]:
    text = " ".join(definition).lower()
    if "orcinputformat" in text:
        return "ORC"
    if "parquet" in text:
        return "PARQUET"
    if "avro" in text:
        return "AVRO"
    if "textinputformat" in text:
        return "TEXTFILE"
    if "sequencefile" in text:
        return "SEQUENCEFILE"
    return None


def _tblproperties_range(definition: List[str]):
    for i, line in enumerate(definition):
        if line.strip().upper().startswith("TBLPROPERTIES"):
            end = i + 1
            while end < len(definition) and not definition[end].rstrip().endswith(")"):
                end += 1
            return i, min(end, len(definition) - 1)
    return None


def tbl_properties(definition: List[str]) -> Dict[str, str]:
    props: Dict[str, str] = {}
    span = _tblproperties_range(definition)
    if not span:
        return props
    for line in definition[span[0] + 1:span[1] + 1]:
        match = _TBLPROPERTY.match(line)
        if match:
            props[match.group(1)] = match.group(2)
    return props


def get_tbl_property(definition: List[str], key: str) -> Optional[str]:
    return tbl_properties(definition).get(key)


def _write_tbl_properties(definition: List[str], props: Dict[str, str]) -> None:
    span = _tblproperties_range(definition)
    if span:
        del definition[span[0]:span[1] + 1]
    if not props:
        return
    items = list(props.items())
    definition.append("TBLPROPERTIES (")
    for idx, (k, v) in enumerate(items):
        tail = ")" if idx == len(items) - 1 else ","
        definition.append(f"  '{k}'='{v}'{tail}")


def upsert_tbl_property(definition: List[str], key: str, value: str) -> None:
    props = tbl_properties(definition)
    props[key] = value
    _write_tbl_properties(definition, props)


def remove_tbl_property(definition: List[str], key: str) -> None:
    props = tbl_properties(definition)
    if key in props:
        del props[key]
        _write_tbl_properties(definition, props)


def make_external(definition: List[str], purge: bool = True) -> None:
    """Turn a managed (possibly transactional) definition into an external one."""
    if not definition or is_external(definition):
        return
    definition[0] = re.sub(r"CREATE\s+TABLE", "CREATE EXTERNAL TABLE", definition[0], count=1, flags=re.IGNORECASE)
    for key in (TRANSACTIONAL, TRANSACTIONAL_PROPERTIES, BUCKETING_VERSION):
        remove_tbl_property(definition, key)
    if purge:
        upsert_tbl_property(definition, EXTERNAL_PURGE, "true")


def partition_spec_to_sql(spec: str) -> str:
    """'dt=2020-01-01/hr=1' -> "dt='2020-01-01', hr='1'"."""
    parts = []
    for kv in spec.split("/"):
        if "=" not in kv:
            continue
        key, value = kv.split("=", 1)
        parts.append(f"{key}='{value}'")
    return ", ".join(parts)


def create_statement(definition: List[str]) -> str:
    return "\n".join(definition)
