#!/usr/bin/env python3
"""Probe the embedding provider and retrieval pipeline for one company.

Usage:
    python scripts/rag_health.py --company <COMPANY_ID>
    python scripts/rag_health.py --company <COMPANY_ID> --sector Projetos

Prints the health report as JSON. Exit code is 1 when a probe fails.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

_project_root = Path(__file__).resolve().parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    parser = argparse.ArgumentParser(description="RAG health check")
    parser.add_argument("--company", default=os.environ.get("COMPANY_ID"),
                        help="Company (tenant) id; defaults to $COMPANY_ID")
    parser.add_argument("--sector", help="Probe in sector mode for this sector")
    args = parser.parse_args(argv)

    if not args.company:
        print("error: --company or COMPANY_ID is required", file=sys.stderr)
        return 1

    from context_engine.rag.health import check_health

    report = asyncio.run(check_health(args.company, args.sector))
    print(json.dumps(report, indent=2, ensure_ascii=False, default=str))
    return 0 if report["success"] else 1


if __name__ == "__main__":
    sys.exit(main())
