import hashlib
import json
from typing import Any

RUN_ID_PREFIX = "rb_"


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def hash_canonical_payload(payload: Any) -> str:
    digest = hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()
    return f"sha256:{digest}"


def run_id_from_hash(request_hash: str) -> str:
    digest = request_hash.split(":", 1)[-1]
    return f"{RUN_ID_PREFIX}{digest[:12]}"
