"""
Batch pass runner for cron.

Usage:
    python -m agency_desk.cli escalation
    python -m agency_desk.cli auto-close
    python -m agency_desk.cli sla-check

Prints the pass summary as JSON and exits non-zero when a ticket failed.
"""

import argparse
import asyncio
import json
import sys
from dataclasses import asdict

from agency_desk.config import settings
from agency_desk.container import EngineContainer
from agency_desk.infrastructure.database import close_database, get_session_maker, init_database
from agency_desk.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)

PASSES = ("escalation", "auto-close", "sla-check")


async def run_pass(name: str) -> dict:
    init_database()
    container = EngineContainer(get_session_maker(), settings)
    try:
        if name == "escalation":
            result = await container.escalation_scanner.run_escalation_pass()
        elif name == "auto-close":
            result = await container.auto_close_scanner.run_auto_close_pass()
        else:
            result = await container.sla_check_scanner.run_sla_check_pass()
    finally:
        await container.close()
        await close_database()
    return asdict(result)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run one ticket engine batch pass")
    parser.add_argument("pass_name", choices=PASSES, help="Pass to run")
    args = parser.parse_args(argv)

    setup_logging(settings.log_level, settings.environment)
    summary = asyncio.run(run_pass(args.pass_name))

    print(json.dumps(summary, ensure_ascii=False))
    return 1 if summary.get("failures") else 0


if __name__ == "__main__":
    sys.exit(main())
