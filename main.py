"""
Entry point for the booking orchestrator.

The speech pipeline (telephony, STT, TTS) lives outside this package and
talks to ``SessionManager``. Locally, the orchestrator is exercised through
the offline console demo.

Usage:
    Interactive:  python main.py console
    Scenario:     python main.py console --scenario booking
    Health check: python main.py health
"""

import asyncio
import json
import logging
import sys

from receptionist.config import settings

logger = logging.getLogger(__name__)


async def _health() -> dict:
    from console_demo import build_integrations
    from receptionist.session.manager import SessionManager

    manager = SessionManager(build_integrations())
    report = manager.health_check()
    await manager.shutdown()
    return report


def _run_console_mode(argv: list[str]) -> None:
    """Start the offline console demo (no API keys required)."""
    import console_demo

    sys.argv = [sys.argv[0], *argv]
    console_demo.main()


if __name__ == "__main__":
    command = sys.argv[1] if len(sys.argv) > 1 else "console"
    if command == "health":
        print(json.dumps(asyncio.run(_health()), indent=2))
    elif command == "console":
        logger.info("Starting console mode for %s", settings.business.name)
        _run_console_mode(sys.argv[2:])
    else:
        print(f"Unknown command: {command}. Use 'console' or 'health'.")
        sys.exit(2)
