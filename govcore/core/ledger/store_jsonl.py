from __future__ import annotations

import json
import os
import threading
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from filelock import FileLock

from govcore.core.config.io import atomic_write_json, read_json_file
from govcore.core.ledger.hasher import GENESIS_HASH, chain_record
from govcore.core.logger import get_logger

_TAIL_CHUNK = 4096


class LedgerJsonlStore:
    """
    Append-only JSONL log plus a small head file (last hash + last sequence).

    The store exposes no rewrite/delete operation. `append` is the only writer.
    It holds a thread lock and a `<log>.lock` file lock, so sequence assignment
    and chain extension are atomic across threads and across processes sharing
    the same files (the HTTP server and the sweep script).
    """

    def __init__(self, *, path: str, head_path: str, lock_timeout: float = 30.0):
        self.path = path
        self.head_path = head_path
        self._lock = threading.Lock()
        self._file_lock = FileLock(path + ".lock", timeout=lock_timeout)
        self.log = get_logger("ledger")
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        os.makedirs(os.path.dirname(head_path) or ".", exist_ok=True)

    def read_head(self) -> Tuple[str, int]:
        rr = read_json_file(self.head_path)
        if not rr.ok:
            return GENESIS_HASH, 0
        return str(rr.data.get("head_hash") or GENESIS_HASH), int(rr.data.get("sequence") or 0)

    def _write_head(self, head_hash: str, sequence: int) -> None:
        atomic_write_json(self.head_path, {"head_hash": head_hash, "sequence": int(sequence)})

    def _last_record(self) -> Optional[Dict[str, Any]]:
        """
        Last non-empty line of the log, read from the end. Raises OSError if it
        does not parse.
        """
        if not os.path.exists(self.path):
            return None
        with open(self.path, "rb") as f:
            f.seek(0, os.SEEK_END)
            pos = f.tell()
            buf = b""
            while pos > 0:
                step = min(_TAIL_CHUNK, pos)
                pos -= step
                f.seek(pos)
                buf = f.read(step) + buf
                if b"\n" in buf.rstrip(b"\r\n"):
                    break
        lines = [ln for ln in buf.splitlines() if ln.strip()]
        if not lines:
            return None
        try:
            obj = json.loads(lines[-1].decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise OSError(f"ledger tail unreadable: {e}") from e
        if not isinstance(obj, dict):
            raise OSError("ledger tail is not an object")
        return obj

    def _resolve_head(self) -> Tuple[str, int]:
        """
        The head to extend, checked against the log tail. A head exactly one
        entry behind a tail that links to it (append reached the log, head write
        did not) is rolled forward. Any other disagreement refuses the append,
        since extending from it would fork the chain.
        """
        rr = read_json_file(self.head_path)
        tail = self._last_record()
        if not rr.ok:
            if tail is not None:
                raise OSError(f"ledger head unreadable while {self.path} has entries")
            return GENESIS_HASH, 0

        head_hash, head_seq = self.read_head()
        if tail is None:
            if head_seq != 0:
                raise OSError(f"ledger head at sequence {head_seq} but {self.path} is empty")
            return head_hash, head_seq

        tail_seq = int(tail.get("sequence") or 0)
        tail_hash = str(tail.get("entry_hash") or "")
        if tail_seq == head_seq and tail_hash == head_hash:
            return head_hash, head_seq
        if tail_seq == head_seq + 1 and str(tail.get("previous_hash") or "") == head_hash:
            self.log.warning("Ledger head lagged the log by one entry; rolling forward to sequence %s", tail_seq)
            self._write_head(tail_hash, tail_seq)
            return tail_hash, tail_seq
        raise OSError(f"ledger head (sequence {head_seq}) does not match log tail (sequence {tail_seq})")

    def append(self, make_payload: Callable[[int], Dict[str, Any]]) -> Dict[str, Any]:
        """
        make_payload(sequence) must return the entry fields without previous_hash/entry_hash.
        Returns the stored record.
        """
        with self._lock, self._file_lock:
            prev_hash, last_seq = self._resolve_head()
            seq = last_seq + 1
            rec = chain_record(payload=make_payload(seq), previous_hash=prev_hash)
            line = json.dumps(rec, ensure_ascii=False, sort_keys=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
                f.flush()
                os.fsync(f.fileno())
            try:
                self._write_head(str(rec["entry_hash"]), seq)
            except OSError as e:
                # The entry is durable; the next append rolls the head forward from the tail.
                self.log.error("Ledger head write failed after sequence %s: %s", seq, e)
            return rec

    def iter_raw(self) -> Iterator[Tuple[int, Optional[Dict[str, Any]]]]:
        """
        Yields (line_number, record). Unparseable lines yield None so integrity
        checks can report them instead of silently skipping them.
        """
        if not os.path.exists(self.path):
            return
        with open(self.path, "r", encoding="utf-8") as f:
            n = 0
            for line in f:
                line = line.strip()
                if not line:
                    continue
                n += 1
                try:
                    obj = json.loads(line)
                except json.JSONDecodeError:
                    yield n, None
                    continue
                yield n, (obj if isinstance(obj, dict) else None)

    def read_all(self) -> List[Dict[str, Any]]:
        return [obj for _, obj in self.iter_raw() if obj is not None]
