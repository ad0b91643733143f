"""
Periodic governance sweeps (retention deletions, consent expiry, offboarding timeline).

Meant to be triggered by an external scheduler (cron, systemd timer).

Usage:
  python scripts/run_sweeps.py [--root .] [--only retention|consent|offboarding]
"""

from __future__ import annotations

import argparse
import json

from govcore.core.errors import AuditWriteError, SweepInProgressError
from govcore.core.config.paths import ConfigFsPaths
from govcore.core.logger import setup_logging
from govcore.core.runtime import GovernanceRuntime


def main() -> int:
    ap = argparse.ArgumentParser(description="govcore governance sweeps")
    ap.add_argument("--root", default=".", help="Repository root holding config/ and runtime state.")
    ap.add_argument("--only", choices=["retention", "consent", "offboarding"], default=None)
    args = ap.parse_args()

    rt = GovernanceRuntime.load(args.root)
    setup_logging(ConfigFsPaths(args.root).resolve(rt.config.log_dir))
    out = {}
    try:
        if args.only in (None, "retention"):
            out["retention"] = rt.retention.process_scheduled_deletions().model_dump()
        if args.only in (None, "consent"):
            out["consent_expired"] = rt.consent.process_expired()
        if args.only in (None, "offboarding"):
            out["offboarding"] = rt.offboarding.process_timeline().model_dump()
    except SweepInProgressError as e:
        print(json.dumps({"ok": False, **e.to_dict()}))
        return 3
    except AuditWriteError as e:
        print(json.dumps({"ok": False, **e.to_dict()}))
        return 2
    print(json.dumps({"ok": True, **out}, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
