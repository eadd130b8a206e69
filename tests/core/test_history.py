"""Tests for the SQLite job history store."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from core.errors import DuplicateIdError, NotFoundError, StoreError
from core.history import JobHistoryStore
from core.models import JobStatus, RenderJob, VoiceMode

T0 = datetime(2026, 10, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)


@pytest.fixture
def store():
    history = JobHistoryStore()
    yield history
    history.close()


def make_job(job_id="vid_1", created_at=T0, **kwargs):
    return RenderJob(
        id=job_id,
        created_at=created_at,
        persona_label=kwargs.pop("persona_label", "Anna"),
        voice_label=kwargs.pop("voice_label", "Sara"),
        **kwargs,
    )


def test_create_then_get_round_trips_all_fields(store):
    job = make_job(
        persona_id="Anna_public_3",
        voice_mode=VoiceMode.PRESET,
        transcript_text="Hallo, dit is een test.",
    )

    store.create(job)

    assert store.get_by_id("vid_1") == job


def test_get_unknown_returns_none(store):
    assert store.get_by_id("missing") is None


def test_duplicate_create_keeps_first_write(store):
    store.create(make_job(persona_label="First"))

    with pytest.raises(DuplicateIdError):
        store.create(make_job(persona_label="Second"))

    assert store.get_by_id("vid_1").persona_label == "First"
    assert len(store.list_all()) == 1


def test_update_sets_outcome_fields(store):
    store.create(make_job())

    store.update(
        "vid_1",
        status=JobStatus.COMPLETED,
        result_url="https://cdn.example.com/v.mp4",
        thumbnail_url="https://cdn.example.com/v.jpg",
        duration_seconds=9.75,
    )

    job = store.get_by_id("vid_1")
    assert job.status is JobStatus.COMPLETED
    assert job.result_url == "https://cdn.example.com/v.mp4"
    assert job.thumbnail_url == "https://cdn.example.com/v.jpg"
    assert job.duration_seconds == 9.75
    assert job.created_at == T0
    assert job.persona_label == "Anna"


def test_update_twice_is_idempotent(store):
    store.create(make_job())
    fields = {"status": JobStatus.COMPLETED, "result_url": "https://cdn.example.com/v.mp4"}

    store.update("vid_1", **fields)
    once = store.get_by_id("vid_1")
    store.update("vid_1", **fields)

    assert store.get_by_id("vid_1") == once


def test_update_accepts_plain_status_strings(store):
    store.create(make_job())

    store.update("vid_1", status="failed")

    assert store.get_by_id("vid_1").status is JobStatus.FAILED


def test_update_unknown_id_raises_not_found(store):
    with pytest.raises(NotFoundError):
        store.update("missing", status=JobStatus.FAILED)


@pytest.mark.parametrize("field", ["created_at", "persona_label", "voice_label", "transcript_text", "id", "bogus"])
def test_update_rejects_immutable_fields(store, field):
    store.create(make_job())

    with pytest.raises(StoreError):
        store.update("vid_1", **{field: "changed"})

    assert store.get_by_id("vid_1") == make_job()


def test_update_rejects_invalid_status(store):
    store.create(make_job())

    with pytest.raises(StoreError):
        store.update("vid_1", status="exploded")


def test_list_all_is_newest_first(store):
    store.create(make_job("vid_old", T0 - timedelta(hours=1)))
    store.create(make_job("vid_mid", T0))
    store.create(make_job("vid_new", T0 + timedelta(seconds=1)))

    assert [job.id for job in store.list_all()] == ["vid_new", "vid_mid", "vid_old"]


def test_later_insert_goes_first(store):
    store.create(make_job("vid_a", T0))
    assert [job.id for job in store.list_all()] == ["vid_a"]

    store.create(make_job("vid_b", T0 + timedelta(microseconds=1)))

    assert store.list_all()[0].id == "vid_b"


def test_list_pending_only_returns_processing(store):
    store.create(make_job("vid_a", T0))
    store.create(make_job("vid_b", T0 + timedelta(seconds=1)))
    store.update("vid_a", status=JobStatus.COMPLETED, result_url="https://cdn.example.com/a.mp4")

    assert [job.id for job in store.list_pending()] == ["vid_b"]


def test_delete_and_clear(store):
    store.create(make_job("vid_a"))
    store.create(make_job("vid_b"))

    assert store.delete("vid_a") is True
    assert store.delete("vid_a") is False
    assert [job.id for job in store.list_all()] == ["vid_b"]

    store.clear()
    assert store.list_all() == []


def test_records_survive_reopening(tmp_path):
    db_path = str(tmp_path / "nested" / "history.db")
    first = JobHistoryStore(db_path)
    first.create(make_job())
    first.close()

    second = JobHistoryStore(db_path)
    try:
        assert second.get_by_id("vid_1") == make_job()
    finally:
        second.close()


def test_naive_timestamps_are_treated_as_utc(store):
    store.create(make_job(created_at=datetime(2026, 10, 1, 12, 0, 0)))

    assert store.get_by_id("vid_1").created_at == datetime(2026, 10, 1, 12, 0, 0, tzinfo=timezone.utc)


def test_concurrent_creates_with_distinct_ids(store):
    errors = []

    def worker(index):
        try:
            store.create(make_job(f"vid_{index}", T0 + timedelta(seconds=index)))
            store.update(f"vid_{index}", status=JobStatus.COMPLETED)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    jobs = store.list_all()
    assert len(jobs) == 20
    assert all(job.status is JobStatus.COMPLETED for job in jobs)


def test_concurrent_creates_with_same_id_only_one_wins(store):
    outcomes = []

    def worker(label):
        try:
            store.create(make_job("vid_same", persona_label=label))
            outcomes.append("created")
        except DuplicateIdError:
            outcomes.append("duplicate")

    threads = [threading.Thread(target=worker, args=(f"p{i}",)) for i in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("created") == 1
    assert outcomes.count("duplicate") == 9
