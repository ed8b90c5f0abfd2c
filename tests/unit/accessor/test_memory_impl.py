import datetime
import threading

import pytest

from drudge import domain
from drudge import enums
from drudge import exceptions as exc
from drudge.accessor.memory_impl import MemoryAccessor


class _Clock:

    def __init__(self):
        self.now = datetime.datetime(2030, 1, 1, tzinfo=datetime.timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += datetime.timedelta(seconds=seconds)


class TestMemoryAccessor:

    def setup_method(self):
        self.clock = _Clock()
        self.acc = MemoryAccessor(clock=self.clock)

    def _enqueue(self, worker_id=None, run_after=None, name="foo") -> str:
        job_id = self.acc.generate_job_id()
        self.acc.enqueue_job(worker_id, domain.DistributedJob(
            job_id=job_id,
            queue_name="general",
            job_name=name,
            job_context={"n": 1},
            run_after=run_after,
        ))
        return job_id

    def test_enqueue_unowned_is_scheduled(self):
        # arrange

        # act
        job_id = self._enqueue()

        # assert
        job = self.acc.get_job(job_id)
        assert self.acc.get_job_status(job_id) == enums.Status.SCHEDULED
        assert job.worker_id is None
        assert job.retry_attempts == 0
        assert job.created_at == self.clock.now

    def test_enqueue_owned_is_processing(self):
        # arrange
        worker = self.acc.register_worker()

        # act
        job_id = self._enqueue(worker_id=worker)

        # assert
        assert self.acc.get_job_status(job_id) == enums.Status.PROCESSING
        assert self.acc.get_job(job_id).worker_id == worker

    def test_enqueue_duplicate_raises(self):
        # arrange
        job_id = self._enqueue()

        # act & assert
        with pytest.raises(exc.WriteFailError):
            self.acc.enqueue_job(None, domain.DistributedJob(job_id=job_id, job_name="foo"))

    def test_unknown_job(self):
        # arrange

        # act
        status = self.acc.get_job_status("nope")
        job = self.acc.get_job("nope")

        # assert
        assert status is None
        assert job is None

    def test_get_job_returns_copy(self):
        # arrange
        job_id = self._enqueue()

        # act
        job = self.acc.get_job(job_id)
        job.job_context["n"] = 100

        # assert
        assert self.acc.get_job(job_id).job_context == {"n": 1}

    def test_claim_respects_limit_and_order(self):
        # arrange
        worker = self.acc.register_worker()
        ids = [self._enqueue() for _ in range(5)]

        # act
        result = self.acc.claim_ownership(worker, 3)

        # assert
        assert [j.job_id for j in result] == ids[:3]
        for j in result:
            assert j.worker_id == worker
            assert j.status == enums.Status.PROCESSING.value
            assert j.updated_at == self.clock.now
            assert j.job_context == {"n": 1}
            assert j.retry_attempts == 0
            assert j.latest_error is None

    def test_claim_zero_limit(self):
        # arrange
        worker = self.acc.register_worker()
        self._enqueue()

        # act
        result = self.acc.claim_ownership(worker, 0)

        # assert
        assert result == []

    def test_claim_skips_future_jobs(self):
        # arrange
        worker = self.acc.register_worker()
        job_id = self._enqueue(run_after=self.clock.now + datetime.timedelta(seconds=10))

        # act
        early = self.acc.claim_ownership(worker, 10)
        self.clock.advance(10)
        late = self.acc.claim_ownership(worker, 10)

        # assert
        assert early == []
        assert [j.job_id for j in late] == [job_id]

    def test_claim_skips_owned_fresh_jobs(self):
        # arrange
        a = self.acc.register_worker()
        b = self.acc.register_worker()
        self._enqueue()
        self.acc.claim_ownership(a, 10)

        # act
        result = self.acc.claim_ownership(b, 10, stale_after_seconds=30)

        # assert
        assert result == []

    def test_claim_stale_job(self):
        # arrange
        a = self.acc.register_worker()
        b = self.acc.register_worker()
        job_id = self._enqueue()
        self.acc.claim_ownership(a, 10)
        self.clock.advance(31)

        # act
        result = self.acc.claim_ownership(b, 10, stale_after_seconds=30)

        # assert
        assert [j.job_id for j in result] == [job_id]
        assert self.acc.get_job(job_id).worker_id == b

    def test_refresh_keeps_job_fresh(self):
        # arrange
        a = self.acc.register_worker()
        b = self.acc.register_worker()
        job_id = self._enqueue()
        self.acc.claim_ownership(a, 10)
        self.clock.advance(20)

        # act
        self.acc.refresh_ownership(a, [job_id])
        self.acc.refresh_ownership(b, [job_id])  # not b's, ignored
        self.clock.advance(20)
        result = self.acc.claim_ownership(b, 10, stale_after_seconds=30)

        # assert
        assert result == []

    def test_concurrent_claims_are_disjoint(self):
        # arrange
        ids = {self._enqueue() for _ in range(50)}
        workers = [self.acc.register_worker() for _ in range(5)]
        claimed = {w: [] for w in workers}
        start = threading.Event()

        def claim(worker):
            start.wait()
            for _ in range(10):
                claimed[worker].extend(self.acc.claim_ownership(worker, 3))

        threads = [threading.Thread(target=claim, args=(w,)) for w in workers]
        for t in threads:
            t.start()

        # act
        start.set()
        for t in threads:
            t.join()

        # assert
        all_ids = [j.job_id for jobs in claimed.values() for j in jobs]
        assert len(all_ids) == len(set(all_ids))
        assert set(all_ids) == ids

    def test_delete_scoped_to_owner(self):
        # arrange
        a = self.acc.register_worker()
        b = self.acc.register_worker()
        job_id = self._enqueue()
        self.acc.claim_ownership(a, 10)

        # act
        self.acc.delete_job(None, job_id)
        self.acc.delete_job(b, job_id)
        still_there = self.acc.get_job(job_id)
        self.acc.delete_job(a, job_id)

        # assert
        assert still_there is not None
        assert self.acc.get_job(job_id) is None

    def test_delete_unowned(self):
        # arrange
        job_id = self._enqueue()

        # act
        self.acc.delete_job(None, job_id)

        # assert
        assert self.acc.get_job_status(job_id) is None

    def test_backoff_owned_job(self):
        # arrange
        worker = self.acc.register_worker()
        job_id = self._enqueue()
        self.acc.claim_ownership(worker, 10)
        reason = {"error": {"message": "boom"}}

        # act
        self.acc.backoff_owned_job(worker, job_id, 1, 5, reason=reason)

        # assert
        job = self.acc.get_job(job_id)
        assert job.status == enums.Status.SCHEDULED.value
        assert job.worker_id is None
        assert job.retry_attempts == 1
        assert job.latest_error == reason
        assert job.run_after == self.clock.now + datetime.timedelta(seconds=5)
        assert self.acc.claim_ownership(worker, 10) == []

    def test_backoff_not_owned_is_noop(self):
        # arrange
        a = self.acc.register_worker()
        b = self.acc.register_worker()
        job_id = self._enqueue()
        self.acc.claim_ownership(a, 10)

        # act
        self.acc.backoff_owned_job(b, job_id, 1, 5)

        # assert
        job = self.acc.get_job(job_id)
        assert job.worker_id == a
        assert job.retry_attempts == 0

    def test_error_then_retry(self):
        # arrange
        worker = self.acc.register_worker()
        job_id = self._enqueue()
        self.acc.claim_ownership(worker, 10)
        self.acc.backoff_owned_job(worker, job_id, 3, 0)
        self.acc.claim_ownership(worker, 10)

        # act
        self.acc.error_owned_job(worker, job_id, {"error": {"message": "boom"}})
        errored = self.acc.get_job(job_id)
        unclaimable = self.acc.claim_ownership(worker, 10)
        self.acc.retry_errored_job(job_id)

        # assert
        assert errored.status == enums.Status.ERRORED.value
        assert errored.worker_id is None
        assert errored.latest_error == {"error": {"message": "boom"}}
        assert unclaimable == []

        job = self.acc.get_job(job_id)
        assert job.status == enums.Status.SCHEDULED.value
        assert job.retry_attempts == 0
        assert job.latest_error is None

    def test_retry_only_errored(self):
        # arrange
        worker = self.acc.register_worker()
        job_id = self._enqueue()
        self.acc.claim_ownership(worker, 10)

        # act
        self.acc.retry_errored_job(job_id)

        # assert
        assert self.acc.get_job_status(job_id) == enums.Status.PROCESSING

    def test_deregister_releases_jobs(self):
        # arrange
        worker = self.acc.register_worker()
        job_id = self._enqueue()
        self.acc.claim_ownership(worker, 10)

        # act
        self.acc.deregister_worker(worker)

        # assert
        job = self.acc.get_job(job_id)
        assert job.status == enums.Status.SCHEDULED.value
        assert job.worker_id is None
        assert worker not in self.acc.workers

    def test_unknown_status_raises(self):
        # arrange
        job_id = self._enqueue()
        self.acc._jobs[job_id].status = "bogus"

        # act & assert
        with pytest.raises(exc.InvalidState):
            self.acc.get_job_status(job_id)

    def test_deregister_keeps_listed_jobs(self):
        # arrange
        worker = self.acc.register_worker()
        running = self._enqueue()
        idle = self._enqueue()
        self.acc.claim_ownership(worker, 10)

        # act
        self.acc.deregister_worker(worker, keep_job_ids=[running])

        # assert
        kept = self.acc.get_job(running)
        released = self.acc.get_job(idle)
        assert kept.status == enums.Status.PROCESSING.value
        assert kept.worker_id == worker
        assert released.status == enums.Status.SCHEDULED.value
        assert released.worker_id is None
