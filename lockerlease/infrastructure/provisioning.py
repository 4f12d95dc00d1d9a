from __future__ import annotations

from pathlib import Path

import yaml

from lockerlease.core.entities.locker import validate_locker_id


def load_locker_ids(path: str | Path) -> list[str]:
    """
    Read the locker identities from a YAML document of the form:

        lockers:
          - LOCKER_001
          - LOCKER_002
    """
    with Path(path).open("r", encoding="utf-8") as f:
        doc = yaml.safe_load(f) or {}

    if not isinstance(doc, dict) or not isinstance(doc.get("lockers"), list):
        raise ValueError(f"{path}: expected a mapping with a 'lockers' list")

    locker_ids: list[str] = []
    for entry in doc["lockers"]:
        locker_id = validate_locker_id(str(entry) if isinstance(entry, (str, int)) else entry)
        if locker_id in locker_ids:
            raise ValueError(f"{path}: duplicate locker id {locker_id!r}")
        locker_ids.append(locker_id)
    return locker_ids
