import json
from typing import Optional

from pydantic import ValidationError

from src.core.models import RebalanceGroupSnapshot


def parse_group_snapshots(snapshots_json: Optional[str]) -> dict[str, RebalanceGroupSnapshot]:
    """
    Accepts a JSON list of snapshots or an object keyed by group id.
    Malformed entries are skipped.
    """
    normalized_json = (snapshots_json or "").strip()
    if not normalized_json:
        return {}
    try:
        raw = json.loads(normalized_json)
    except json.JSONDecodeError:
        return {}

    if isinstance(raw, dict):
        entries = [
            {**definition, "group_id": str(group_id).strip()}
            for group_id, definition in raw.items()
            if isinstance(definition, dict)
        ]
    elif isinstance(raw, list):
        entries = [entry for entry in raw if isinstance(entry, dict)]
    else:
        return {}

    catalog: dict[str, RebalanceGroupSnapshot] = {}
    for entry in entries:
        try:
            parsed = RebalanceGroupSnapshot.model_validate(entry)
        except ValidationError:
            continue
        if not parsed.group_id.strip():
            continue
        catalog[parsed.group_id] = parsed
    return catalog
