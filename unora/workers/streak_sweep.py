"""Daily streak sweep job: closes yesterday (UTC) for every open streak."""
import logging

from unora.core.config import settings
from unora.core.logging import configure_logging
from unora.features.streaks.sweep import close_day

logger = logging.getLogger("unora.workers.streak_sweep")


def run_streak_sweep() -> dict:
    result = close_day()
    logger.info("[sweep] streak day closed", extra={"event_type": "streak.sweep_complete"})
    return result


if __name__ == "__main__":
    configure_logging(settings.ENV)
    result = run_streak_sweep()
    print(result)
