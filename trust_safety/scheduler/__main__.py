from __future__ import annotations

import asyncio
import logging

from trust_safety.config import get_settings
from trust_safety.db.connection import get_sessionmaker
from trust_safety.ops.events import configure_ops_event_logging
from trust_safety.scheduler.main import scheduler_loop

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()
    configure_ops_event_logging(max_size=settings.ops_event_buffer_size)
    logger.info(
        "Starting moderation sweep (every %.1f minutes, escalation after %.1fh)",
        settings.escalation_sweep_interval_minutes,
        settings.escalation_age_hours,
    )
    asyncio.run(
        scheduler_loop(
            session_factory=get_sessionmaker(),
            interval_minutes=settings.escalation_sweep_interval_minutes,
        )
    )


main()
