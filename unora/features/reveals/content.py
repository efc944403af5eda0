"""
Reveal content generation.

Content is produced by an opaque generator after the unlock commits. Groq is
used when GROQ_API_KEY is configured, otherwise a deterministic template
generator. Failures are recorded on the reveal row and retried with
exponential backoff (floor 30s, cap 1 hour) by the reveal content worker until
REVEAL_CONTENT_MAX_ATTEMPTS is reached.
"""
from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol
from uuid import uuid4

import groq
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from unora.core.config import Settings, settings
from unora.core.database import get_db_session, reveals, reveal_contents
from unora.core.logging import log_event
from unora.features.reveals.milestones import load_milestone
from unora.models.common import utc_now
from unora.models.reveal import GeneratedContent, RevealMilestone, RevealStatus, RevealType

logger = logging.getLogger("unora.reveals.content")

DIMENSIONS = {
    RevealType.PERSONALITY: ("openness", "energy", "humour", "spontaneity"),
    RevealType.VALUES: ("family", "ambition", "honesty", "independence"),
    RevealType.LIFESTYLE: ("activity", "social_life", "routine", "adventure"),
}


class ContentGenerationError(Exception):
    """Generator returned something unusable."""


class RevealContentGenerator(Protocol):
    """Produces reveal content for one connection and milestone."""

    def generate(self, connection_id: str, milestone: RevealMilestone) -> GeneratedContent:
        ...


def _scores(connection_id: str, reveal_type: RevealType) -> Dict[str, float]:
    digest = hashlib.sha256(f"{connection_id}:{reveal_type.value}".encode()).digest()
    return {
        name: round(0.5 + digest[i] / 510, 2)
        for i, name in enumerate(DIMENSIONS[reveal_type])
    }


class TemplateRevealContentGenerator:
    """Deterministic content for environments without an LLM key."""

    _TEMPLATES = {
        RevealType.PERSONALITY: (
            "You both bring steady, curious energy to conversations.",
            "Your check-ins show you follow through on small promises.",
            ["What's a plan you'd happily drop for something spontaneous?", "What always makes you laugh?"],
        ),
        RevealType.VALUES: (
            "You put similar weight on honesty and time with people you love.",
            "Shared values tend to matter more than shared hobbies over time.",
            ["What did your family get right that you'd keep?", "What are you working towards this year?"],
        ),
        RevealType.LIFESTYLE: (
            "Your days run on compatible rhythms, with room for each other's routines.",
            "Fifteen days of showing up is a good sign for everyday life together.",
            ["What does a perfect Sunday look like?", "Where would you go on a week off tomorrow?"],
        ),
    }

    def generate(self, connection_id: str, milestone: RevealMilestone) -> GeneratedContent:
        summary, insight, starters = self._TEMPLATES[milestone.reveal_type]
        return GeneratedContent(
            summary=summary,
            insight=insight,
            starters=list(starters),
            dimension_scores=_scores(connection_id, milestone.reveal_type),
        )


class GroqRevealContentGenerator:
    """Chat-completion backed generator returning a JSON object."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, client: Any = None):
        self.client = client or groq.Groq(api_key=api_key or settings.GROQ_API_KEY)
        self.model = model or settings.GROQ_MODEL

    def generate(self, connection_id: str, milestone: RevealMilestone) -> GeneratedContent:
        dimensions = ", ".join(DIMENSIONS[milestone.reveal_type])
        response = self.client.chat.completions.create(
            messages=[
                {
                    "role": "system",
                    "content": (
                        "You write warm, specific compatibility reveals for two people on a dating app. "
                        "Reply with a JSON object with keys: summary (string), insight (string), "
                        "starters (array of 2-3 questions), dimension_scores (object of numbers 0-1)."
                    ),
                },
                {
                    "role": "user",
                    "content": (
                        f"Reveal: {milestone.title} ({milestone.reveal_type.value}). "
                        f"The pair reached day {milestone.day_required} of their streak. "
                        f"Score these dimensions: {dimensions}."
                    ),
                },
            ],
            model=self.model,
            temperature=0.7,
            max_tokens=600,
            response_format={"type": "json_object"},
        )
        return self._parse(response.choices[0].message.content)

    @staticmethod
    def _parse(raw: Optional[str]) -> GeneratedContent:
        try:
            data = json.loads(raw or "")
        except json.JSONDecodeError as exc:
            raise ContentGenerationError(f"invalid JSON from model: {exc}")
        if not isinstance(data, dict) or not data.get("summary") or not data.get("insight"):
            raise ContentGenerationError("model response missing summary or insight")
        starters = [str(item) for item in data.get("starters") or [] if str(item).strip()]
        scores = {}
        for name, value in (data.get("dimension_scores") or {}).items():
            try:
                scores[str(name)] = max(0.0, min(1.0, float(value)))
            except (TypeError, ValueError):
                continue
        return GeneratedContent(
            summary=str(data["summary"]),
            insight=str(data["insight"]),
            starters=starters,
            dimension_scores=scores,
        )


def default_generator(settings_obj: Optional[Settings] = None) -> RevealContentGenerator:
    cfg = settings_obj or settings
    if cfg.GROQ_API_KEY:
        return GroqRevealContentGenerator(api_key=cfg.GROQ_API_KEY, model=cfg.GROQ_MODEL)
    return TemplateRevealContentGenerator()


def _compute_backoff(attempt_count: int) -> timedelta:
    """Exponential backoff with floor 30s and cap 1 hour."""
    base = max(30, 2 ** attempt_count)
    seconds = min(base, 3600)
    return timedelta(seconds=seconds)


class RevealContentService:
    def __init__(self, generator: Optional[RevealContentGenerator] = None, settings_obj: Optional[Settings] = None):
        self.settings = settings_obj or settings
        self.generator = generator or default_generator(self.settings)

    def populate(self, reveal_id: str, now: Optional[datetime] = None) -> bool:
        """Generate and store content for an unlocked reveal. Never raises for generator failures."""
        ts = now or utc_now()
        with get_db_session() as session:
            row = session.execute(select(reveals).where(reveals.c.id == reveal_id)).first()
            if row is None or row.status == RevealStatus.LOCKED.value:
                return False
            has_content = session.execute(
                select(reveal_contents.c.id).where(reveal_contents.c.reveal_id == reveal_id)
            ).first()
            if has_content:
                return True
            milestone = load_milestone(session, row.milestone_id, include_inactive=True)
            connection_id = row.connection_id
            attempts = int(row.content_attempts or 0) + 1

        try:
            content = self.generator.generate(connection_id, milestone)
        except Exception as exc:
            self._record_failure(reveal_id, attempts, exc, ts)
            log_event(
                "warning",
                "reveal.content_failed",
                request_id=None,
                connection_id=connection_id,
                event_type="reveal.content_failed",
                error_code=type(exc).__name__,
                extra={"reveal_id": reveal_id, "attempt": attempts, "error": exc},
            )
            return False

        try:
            with get_db_session() as session:
                session.execute(
                    insert(reveal_contents).values(
                        id=str(uuid4()),
                        reveal_id=reveal_id,
                        ai_summary=content.summary,
                        compatibility_insight=content.insight,
                        conversation_starters="\n".join(content.starters),
                        dimension_scores=content.dimension_scores,
                        created_at=ts,
                        updated_at=ts,
                    )
                )
                session.execute(
                    update(reveals)
                    .where(reveals.c.id == reveal_id)
                    .values(content_attempts=attempts, content_next_attempt_at=None, content_last_error=None)
                )
        except IntegrityError:
            # Another worker stored content first
            return True

        log_event(
            "info",
            "reveal.content_ready",
            request_id=None,
            connection_id=connection_id,
            event_type="reveal.content_ready",
            extra={"reveal_id": reveal_id, "attempt": attempts},
        )
        return True

    def _record_failure(self, reveal_id: str, attempts: int, exc: Exception, ts: datetime) -> None:
        exhausted = attempts >= self.settings.REVEAL_CONTENT_MAX_ATTEMPTS
        next_attempt = None if exhausted else ts + _compute_backoff(attempts)
        with get_db_session() as session:
            session.execute(
                update(reveals)
                .where(reveals.c.id == reveal_id)
                .values(
                    content_attempts=attempts,
                    content_next_attempt_at=next_attempt,
                    content_last_error=str(exc)[:500],
                )
            )

    def due_reveal_ids(self, now: Optional[datetime] = None, limit: int = 50) -> List[str]:
        ts = now or utc_now()
        with get_db_session() as session:
            return list(
                session.execute(
                    select(reveals.c.id)
                    .where(
                        reveals.c.content_next_attempt_at.is_not(None),
                        reveals.c.content_next_attempt_at <= ts,
                        reveals.c.status != RevealStatus.LOCKED.value,
                    )
                    .order_by(reveals.c.content_next_attempt_at, reveals.c.id)
                    .limit(limit)
                ).scalars().all()
            )

    def retry_due(self, now: Optional[datetime] = None, limit: int = 50) -> Dict[str, int]:
        ts = now or utc_now()
        succeeded = failed = 0
        for reveal_id in self.due_reveal_ids(ts, limit):
            if self.populate(reveal_id, ts):
                succeeded += 1
            else:
                failed += 1
        logger.info("reveal.content_retry", extra={"event_type": "reveal.content_retry"})
        return {"processed": succeeded + failed, "succeeded": succeeded, "failed": failed}
