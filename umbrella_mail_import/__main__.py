"""Entry point for the email import service.

Usage::

    python -m umbrella_mail_import worker              # Kafka requests → pipeline → results
    python -m umbrella_mail_import import <id> [<id>]  # import provider message ids once
"""

from __future__ import annotations

import asyncio
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config import ImportServiceConfig

USAGE = "Usage: python -m umbrella_mail_import <worker | import <provider_message_id>...>"


async def _import_once(config: ImportServiceConfig, message_ids: list[str]) -> int:
    from .worker import ImportWorker

    worker = ImportWorker(config)
    await worker.start_services()
    failures = 0
    try:
        for message_id in message_ids:
            result = await worker.orchestrator.import_message(message_id)
            print(result.model_dump_json())
            if not result.success:
                failures += 1
    finally:
        await worker.stop_services()
    return 1 if failures else 0


def main() -> None:
    if len(sys.argv) < 2 or sys.argv[1] not in ("worker", "import"):
        print(USAGE, file=sys.stderr)
        sys.exit(1)

    from .config import ImportServiceConfig
    from .logging import setup_logging_from_config

    config = ImportServiceConfig()
    setup_logging_from_config(config.logging)
    mode = sys.argv[1]

    if mode == "worker":
        from .worker import ImportWorker

        asyncio.run(ImportWorker(config).run())

    elif mode == "import":
        message_ids = sys.argv[2:]
        if not message_ids:
            print(USAGE, file=sys.stderr)
            sys.exit(1)
        sys.exit(asyncio.run(_import_once(config, message_ids)))


if __name__ == "__main__":
    main()
