import logging
from typing import Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from analytics_cache import AnalyticsCache, get_analytics_cache
from config import Settings, get_settings
from database import SessionFactory, SessionLocal, session_scope
from jobs import Job, JobQueue
from services import INSIGHTS_QUEUE, enqueue_monthly_insights
from text_generation import OpenAIResponsesClient, TextGenerationClient
from worker import InsightWorker, insight_service_factory


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def run_monthly_insights(
    queue: JobQueue,
    session_factory: SessionFactory,
    min_count: int,
    source: str = "manual",
    period_label: Optional[str] = None,
) -> list[Job]:
    logger.info(f"scheduler_run: source={source}")
    with session_scope(session_factory) as session:
        jobs = enqueue_monthly_insights(session, queue, min_count, period_label)
    logger.info(f"scheduler_run: source={source} jobs_enqueued={len(jobs)}")
    return jobs


class SchedulerManager:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_factory: SessionFactory = SessionLocal,
        cache: Optional[AnalyticsCache] = None,
        text_client: Optional[TextGenerationClient] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.scheduler = BackgroundScheduler(
            timezone=self.settings.timezone,
            executors={"default": ThreadPoolExecutor(self.settings.worker_concurrency)},
        )
        self.queue = JobQueue(INSIGHTS_QUEUE, scheduler=self.scheduler)
        self.worker = InsightWorker(
            session_factory,
            insight_service_factory(
                cache or get_analytics_cache(),
                text_client or OpenAIResponsesClient.from_settings(self.settings),
                self.settings,
            ),
        )
        self.worker.attach(self.queue)

    def _run_job(self, source: str = "manual") -> list[Job]:
        return run_monthly_insights(
            self.queue,
            self.session_factory,
            self.settings.min_insight_transactions,
            source,
        )

    def start(self) -> None:
        trigger = CronTrigger(day=1, hour=0, minute=0)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["monthly_first_day"],
            id="insights_monthly",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info("Scheduler started with monthly insight generation on day 1 at 00:00")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
