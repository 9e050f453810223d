import logging
from typing import Callable

from pydantic import ValidationError
from sqlalchemy.orm import Session

from analytics_cache import AnalyticsCache
from config import Settings
from database import SessionFactory, session_scope
from jobs import ANY_JOB, Job, JobQueue
from schemas import GenerateInsightPayload
from services import (
    GENERATE_JOB,
    AnalyticsService,
    InsightJobState,
    InsightService,
    TransactionReader,
    log_job_state,
)
from text_generation import TextGenerationClient

logger = logging.getLogger(__name__)

InsightServiceFactory = Callable[[Session], InsightService]


def insight_service_factory(
    cache: AnalyticsCache, text_client: TextGenerationClient, settings: Settings
) -> InsightServiceFactory:
    def build(session: Session) -> InsightService:
        analytics = AnalyticsService(TransactionReader(session), cache)
        return InsightService(
            session,
            analytics,
            text_client,
            top_expenses_limit=settings.insight_top_expenses,
        )

    return build


class InsightWorker:
    """Processes ``generate`` jobs, one user per job."""

    def __init__(
        self, session_factory: SessionFactory, service_factory: InsightServiceFactory
    ) -> None:
        self.session_factory = session_factory
        self.service_factory = service_factory

    def attach(self, queue: JobQueue) -> None:
        queue.consume(ANY_JOB, self.process)

    def process(self, job: Job) -> None:
        if job.name != GENERATE_JOB:
            logger.debug(f"insight_job: ignored job_id={job.id} name={job.name}")
            return
        try:
            payload = GenerateInsightPayload.model_validate(job.data or {})
        except ValidationError:
            logger.debug(f"insight_job: ignored job_id={job.id} reason=invalid_payload")
            return

        log_job_state(
            payload.user_id, InsightJobState.received, job_id=job.id, attempt=job.attempts_made
        )
        try:
            with session_scope(self.session_factory) as session:
                self.service_factory(session).generate(payload.user_id)
        except Exception as exc:
            log_job_state(
                payload.user_id, InsightJobState.failed, job_id=job.id, reason=type(exc).__name__
            )
            raise
