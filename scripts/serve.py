from __future__ import annotations

import argparse

import uvicorn

from govcore.core.config.paths import ConfigFsPaths
from govcore.core.logger import setup_logging
from govcore.core.runtime import GovernanceRuntime
from govcore.web.api import create_app


def main() -> None:
    ap = argparse.ArgumentParser(description="govcore HTTP enforcement API")
    ap.add_argument("--root", default=".")
    ap.add_argument("--host", default="127.0.0.1")
    ap.add_argument("--port", type=int, default=8765)
    args = ap.parse_args()

    rt = GovernanceRuntime.load(args.root)
    logger = setup_logging(ConfigFsPaths(args.root).resolve(rt.config.log_dir))
    logger.info("Starting govcore API on http://%s:%s", args.host, args.port)
    uvicorn.run(create_app(rt), host=args.host, port=args.port, log_level="info")


if __name__ == "__main__":
    main()
