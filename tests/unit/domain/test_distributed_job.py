import datetime
import uuid

import pytest

from drudge import domain
from drudge import enums


class TestDistributedJob:

    def test_encode_decode(self):
        # arrange
        now = datetime.datetime.now(datetime.timezone.utc)
        expected = {
            "job_id": str(uuid.uuid4()),
            "queue_name": "general",
            "job_name": "send-email",
            "job_context": {"to": ["a", "b"], "retry": True, "count": 12},
            "group_key": None,
            "run_after": now,
            "worker_id": str(uuid.uuid4()),
            "status": enums.Status.PROCESSING.value,
            "retry_attempts": 2,
            "latest_error": {"error": {"name": "ValueError"}},
            "updated_at": now,
            "created_at": now,
        }

        # act
        j = domain.DistributedJob.decode(expected)

        result = j.encode()

        # assert
        assert result == expected
        assert isinstance(j, domain.DistributedJob)

    def test_decode_requires_id_and_name(self):
        # arrange
        cases = [
            {"job_name": "foo"},
            {"job_id": str(uuid.uuid4())},
        ]

        for data in cases:
            # act & assert
            with pytest.raises(ValueError):
                domain.DistributedJob.decode(data)

    def test_decode_stringifies_ids(self):
        # arrange
        job_id = uuid.uuid4()
        worker_id = uuid.uuid4()

        # act
        j = domain.DistributedJob.decode(
            {"job_id": job_id, "job_name": "foo", "worker_id": worker_id}
        )

        # assert
        assert j.job_id == str(job_id)
        assert j.worker_id == str(worker_id)

    def test_naive_times_treated_as_utc(self):
        # arrange
        naive = datetime.datetime(2030, 1, 1, 12, 0, 0)

        # act
        j = domain.DistributedJob(job_id="1", job_name="foo", run_after=naive)

        # assert
        assert j.run_after.tzinfo == datetime.timezone.utc
        assert j.run_after.hour == 12

    def test_defaults(self):
        # arrange

        # act
        j = domain.DistributedJob(job_id="1", job_name="foo")

        # assert
        assert j.status == enums.Status.SCHEDULED.value
        assert j.worker_id is None
        assert j.retry_attempts == 0
        assert j.latest_error is None


class TestJob:

    def test_encode(self):
        # arrange
        j = domain.Job(id="1", name="foo", context={"a": 1})

        # act
        result = j.encode()

        # assert
        assert result == {"id": "1", "name": "foo", "context": {"a": 1}}

    def test_queue_backend_defaults_to_none(self):
        # arrange

        # act
        q = domain.Queue("general")

        # assert
        assert q.backend is None
