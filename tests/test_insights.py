from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from database import session_scope
from jobs import JobQueue, JobStatus
from models import Insight, TransactionCategory, TransactionType
from services import (
    INSIGHT_INSTRUCTIONS,
    INSIGHT_JOB_OPTIONS,
    AnalyticsService,
    InsightAlreadyExists,
    InsightNotFound,
    InsightService,
    TransactionReader,
)
from text_generation import GenerationResult, TextGenerationClient, TextGenerationError
from worker import InsightWorker

from helpers import add_transaction, add_user, utc

NOW = datetime(2024, 1, 25, 9, tzinfo=timezone.utc)


class FakeTextClient(TextGenerationClient):
    def __init__(self, *results) -> None:
        self.results = list(results) or [
            GenerationResult(id="resp_1", model="gpt-4o-mini", output_text="Nice month.")
        ]
        self.calls: list[tuple[str, str]] = []

    def generate(self, instructions: str, input_text: str) -> GenerationResult:
        self.calls.append((instructions, input_text))
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


def _seed(session_factory) -> str:
    with session_scope(session_factory) as session:
        user = add_user(session, "ana@example.com")
        add_transaction(session, user, TransactionType.income, 10_000_000, "250", utc(2024, 1, 3))
        add_transaction(
            session,
            user,
            TransactionType.expense,
            4_000_000,
            "100",
            utc(2024, 1, 10),
            category=TransactionCategory.entertainment,
            note="concert",
        )
        add_transaction(session, user, TransactionType.expense, 500, "0.01", utc(2023, 12, 10))
        return user.id


def _service(session, cache, client) -> InsightService:
    return InsightService(
        session,
        AnalyticsService(TransactionReader(session), cache),
        client,
        top_expenses_limit=20,
        clock=lambda: NOW,
    )


def _insights(session_factory) -> list[Insight]:
    with session_factory() as session:
        return list(session.scalars(select(Insight)).all())


def _worker_setup(session_factory, cache, client):
    queue = JobQueue("insights", clock=lambda: NOW)
    worker = InsightWorker(
        session_factory, lambda session: _service(session, cache, client)
    )
    worker.attach(queue)
    return queue


def test_generate_persists_insight_for_current_period(session_factory, cache) -> None:
    user_id = _seed(session_factory)
    client = FakeTextClient()

    with session_scope(session_factory) as session:
        _service(session, cache, client).generate(user_id)

    [insight] = _insights(session_factory)
    assert (insight.user_id, insight.period) == (user_id, "2024-01")
    assert insight.content == "Nice month."
    assert (insight.llm_model, insight.llm_request_id) == ("gpt-4o-mini", "resp_1")

    instructions, input_text = client.calls[0]
    assert instructions == INSIGHT_INSTRUCTIONS
    assert input_text.startswith("period: 2024-01, ")
    assert '"localCurrency": 6000000' in input_text
    assert '"note": "concert"' in input_text
    assert '"amount": 500' not in input_text


def test_generation_reads_go_through_the_cache(session_factory, cache) -> None:
    user_id = _seed(session_factory)

    with session_scope(session_factory) as session:
        _service(session, cache, FakeTextClient()).generate(user_id)

    assert cache.store.get(cache.key("netBalance", user_id, "2024-01")) is not None
    assert cache.store.get(cache.key("topExpenses", user_id, "2024-01", 20)) is not None


def test_degraded_generation_is_still_persisted(session_factory, cache, caplog) -> None:
    user_id = _seed(session_factory)
    client = FakeTextClient(
        GenerationResult(
            id="resp_2",
            model="gpt-4o-mini",
            output_text="",
            incomplete="max_output_tokens",
        )
    )

    with session_scope(session_factory) as session:
        _service(session, cache, client).generate(user_id)

    [insight] = _insights(session_factory)
    assert insight.content == ""
    assert "degraded_generation" in caplog.text


def test_second_generation_for_same_period_fails(session_factory, cache) -> None:
    user_id = _seed(session_factory)

    with session_scope(session_factory) as session:
        _service(session, cache, FakeTextClient()).generate(user_id)

    with pytest.raises(InsightAlreadyExists):
        with session_scope(session_factory) as session:
            _service(session, cache, FakeTextClient()).generate(user_id)
    assert len(_insights(session_factory)) == 1


def test_worker_processes_generate_job(session_factory, cache) -> None:
    user_id = _seed(session_factory)
    client = FakeTextClient()
    queue = _worker_setup(session_factory, cache, client)

    job = queue.enqueue("generate", {"userId": user_id}, INSIGHT_JOB_OPTIONS)
    queue.drain()

    assert queue.get(job.id) is None
    assert len(_insights(session_factory)) == 1


@pytest.mark.parametrize(
    "name, payload",
    [
        ("other-job", {"userId": "x"}),
        ("generate", {}),
        ("generate", {"userId": ""}),
        ("generate", {"user": "x"}),
    ],
)
def test_worker_ignores_malformed_or_foreign_jobs(session_factory, cache, name, payload) -> None:
    client = FakeTextClient()
    queue = _worker_setup(session_factory, cache, client)

    job = queue.enqueue(name, payload, INSIGHT_JOB_OPTIONS)
    queue.drain()

    assert client.calls == []
    assert queue.get(job.id) is None
    assert queue.failed_jobs() == []


def test_worker_retries_after_generation_timeout(session_factory, cache) -> None:
    user_id = _seed(session_factory)
    client = FakeTextClient(
        TextGenerationError("Text generation timed out after 60.0s"),
        GenerationResult(id="resp_3", model="gpt-4o-mini", output_text="Recovered."),
    )
    queue = _worker_setup(session_factory, cache, client)

    job = queue.enqueue("generate", {"userId": user_id}, INSIGHT_JOB_OPTIONS)
    queue.drain(NOW)
    assert queue.get(job.id).status == JobStatus.delayed
    assert _insights(session_factory) == []

    queue.drain(NOW + timedelta(seconds=5))

    assert queue.get(job.id) is None
    assert [i.content for i in _insights(session_factory)] == ["Recovered."]


def test_worker_keeps_job_after_exhausting_retries(session_factory, cache) -> None:
    user_id = _seed(session_factory)
    client = FakeTextClient(TextGenerationError("unreachable"))
    queue = _worker_setup(session_factory, cache, client)

    job = queue.enqueue("generate", {"userId": user_id}, INSIGHT_JOB_OPTIONS)
    for seconds in (0, 5, 15):
        queue.drain(NOW + timedelta(seconds=seconds))

    assert len(client.calls) == 3
    assert [j.id for j in queue.failed_jobs()] == [job.id]


def test_one_failing_user_does_not_block_others(session_factory, cache) -> None:
    user_id = _seed(session_factory)
    queue = _worker_setup(session_factory, cache, FakeTextClient())

    missing = queue.enqueue("generate", {"userId": "no-such-user"}, INSIGHT_JOB_OPTIONS)
    queue.enqueue("generate", {"userId": user_id}, INSIGHT_JOB_OPTIONS)
    queue.drain()

    assert [i.user_id for i in _insights(session_factory)] == [user_id]
    assert queue.get(missing.id).status == JobStatus.delayed


def test_find_queries(session_factory, cache) -> None:
    with session_scope(session_factory) as session:
        user = add_user(session, "finn@example.com")
        for period in ("2023-11", "2024-01", "2023-12"):
            session.add(
                Insight(
                    user_id=user.id,
                    period=period,
                    content=f"review {period}",
                    llm_model="gpt-4o-mini",
                    llm_request_id=f"req-{period}",
                )
            )
        user_id = user.id

    with session_factory() as session:
        service = _service(session, cache, FakeTextClient())

        assert [i.period for i in service.find_all(user_id)] == ["2024-01", "2023-12", "2023-11"]
        assert [i.period for i in service.find_all(user_id, page=2, take=2)] == ["2023-11"]

        by_period = service.find_by_period(user_id, "2023-12")
        assert by_period.content == "review 2023-12"
        assert service.find_one(by_period.id, user_id).id == by_period.id

        with pytest.raises(InsightNotFound):
            service.find_by_period(user_id, "2022-01")
        with pytest.raises(InsightNotFound):
            service.find_one(by_period.id, "someone-else")
