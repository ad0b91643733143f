from __future__ import annotations

import argparse
import json

from govcore.core.ledger import Actor, AuditEventType
from govcore.core.config.paths import ConfigFsPaths
from govcore.core.logger import setup_logging
from govcore.core.runtime import GovernanceRuntime


def main() -> int:
    ap = argparse.ArgumentParser(description="govcore ledger integrity check")
    ap.add_argument("--root", default=".")
    ap.add_argument("--record", action="store_true", help="Append an integrity_check entry with the result.")
    ap.add_argument("--export", default=None, help="Also export the ledger to this JSON path.")
    args = ap.parse_args()

    rt = GovernanceRuntime.load(args.root, read_only=True)
    setup_logging(ConfigFsPaths(args.root).resolve(rt.config.log_dir))
    report = rt.ledger.verify_chain_integrity()
    if args.record:
        rt.ledger.append(
            AuditEventType.integrity_check,
            Actor.system("verify_ledger"),
            "Ledger integrity verified" if report.valid else "Ledger integrity check failed",
            metadata={"valid": report.valid, "checked": report.checked},
        )
    if args.export:
        rt.ledger.export(args.export)
    print(json.dumps(report.model_dump(), indent=2))
    return 0 if report.valid else 2


if __name__ == "__main__":
    raise SystemExit(main())
