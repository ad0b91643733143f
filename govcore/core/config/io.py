from __future__ import annotations

import json
import os
import shutil
import tempfile
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ReadResult:
    ok: bool
    data: Dict[str, Any]
    error: Optional[str] = None


def read_json_file(path: str) -> ReadResult:
    """
    Never raises. `error` is "missing", "not_object", "corrupt_json:..." or the OS error text.
    """
    if not os.path.exists(path):
        return ReadResult(ok=False, data={}, error="missing")
    try:
        with open(path, "r", encoding="utf-8") as f:
            obj = json.load(f)
    except json.JSONDecodeError as e:
        return ReadResult(ok=False, data={}, error=f"corrupt_json:{e}")
    except OSError as e:
        return ReadResult(ok=False, data={}, error=str(e))
    if not isinstance(obj, dict):
        return ReadResult(ok=False, data={}, error="not_object")
    return ReadResult(ok=True, data=obj)


def atomic_write_json(path: str, data: Dict[str, Any]) -> None:
    """
    Write to a temp file in the target directory, fsync, then os.replace over `path`.
    Used for config files and the ledger head.
    """
    parent = os.path.dirname(path) or "."
    os.makedirs(parent, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, sort_keys=True)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)


def quarantine_corrupt(path: str, backups_dir: str) -> Optional[str]:
    """
    Move a corrupt file to backups/<name>.<ts>.corrupt.json so it can be inspected.
    """
    if not os.path.exists(path):
        return None
    os.makedirs(backups_dir, exist_ok=True)
    stamp = time.strftime("%Y%m%d_%H%M%S", time.gmtime())
    out = os.path.join(backups_dir, f"{os.path.basename(path)}.{stamp}.corrupt.json")
    try:
        shutil.move(path, out)
    except OSError:
        return None
    return out
