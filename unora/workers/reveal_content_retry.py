"""Retry job for reveal content that failed or never ran after unlock."""
import logging
from typing import Optional

from unora.core.config import settings
from unora.core.logging import configure_logging
from unora.features.reveals.content import RevealContentService

logger = logging.getLogger("unora.workers.reveal_content")


def run_reveal_content_retry(service: Optional[RevealContentService] = None, limit: int = 50) -> dict:
    svc = service or RevealContentService()
    result = svc.retry_due(limit=limit)
    logger.info("[reveal-content] retry pass finished", extra={"event_type": "reveal.content_retry"})
    return result


if __name__ == "__main__":
    configure_logging(settings.ENV)
    result = run_reveal_content_retry()
    print(result)
