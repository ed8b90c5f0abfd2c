import collections
import copy
import datetime
import threading
import uuid

from drudge import domain
from drudge import enums
from drudge import exceptions as exc
from drudge import utils
from drudge.accessor.base import Base


class MemoryAccessor(Base):
    """Keeps everything in a dict in this process.

    Workers sharing the same instance (ie. threads / backends in one process) coordinate
    exactly as they would over a real store; one lock guards every read & write.

    """

    def __init__(self, clock=None):
        """

        :param clock: no arg callable returning an aware UTC datetime, defaults to utils.utcnow

        """
        self._clock = clock or utils.utcnow
        self._lock = threading.Lock()
        self._jobs = collections.OrderedDict()  # job_id -> domain.DistributedJob
        self._workers = {}  # worker_id -> worker key

    @staticmethod
    def _copy(job: domain.DistributedJob) -> domain.DistributedJob:
        return copy.deepcopy(job)

    @property
    def workers(self) -> list:
        """Ids of all currently registered workers.

        :return: list

        """
        with self._lock:
            return list(self._workers.keys())

    def register_worker(self) -> str:
        """

        :return: str

        """
        worker_id = str(uuid.uuid4())
        with self._lock:
            self._workers[worker_id] = utils.random_name_worker()
        return worker_id

    def deregister_worker(self, worker_id: str, keep_job_ids=None):
        """Remove worker & release any jobs it still owns, bar those in keep_job_ids.

        :param worker_id:
        :param keep_job_ids:

        """
        with self._lock:
            keep = set(keep_job_ids or [])
            self._workers.pop(worker_id, None)

            now = self._clock()
            for job in self._jobs.values():
                if job.worker_id != worker_id or job.job_id in keep:
                    continue

                job.worker_id = None
                job.status = enums.Status.SCHEDULED.value
                job.updated_at = now

    def generate_job_id(self) -> str:
        """

        :return: str

        """
        return str(uuid.uuid4())

    def get_job_status(self, job_id: str):
        """

        :param job_id:
        :return: enums.Status or None

        """
        with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return None
            return self._status(job.status)

    def get_job(self, job_id: str):
        """

        :param job_id:
        :return: domain.DistributedJob or None

        """
        with self._lock:
            job = self._jobs.get(job_id)
            return self._copy(job) if job else None

    def enqueue_job(self, worker_id, job: domain.DistributedJob):
        """

        :param worker_id:
        :param job:
        :raises WriteFailError: if the job id is in use

        """
        row = self._copy(job)

        now = self._clock()
        row.worker_id = worker_id
        row.status = enums.Status.PROCESSING.value if worker_id else enums.Status.SCHEDULED.value
        row.retry_attempts = 0
        row.latest_error = None
        row.updated_at = now
        row.created_at = now

        with self._lock:
            if row.job_id in self._jobs:
                raise exc.WriteFailError(f"job exists already: {row.job_id}")
            self._jobs[row.job_id] = row

    def _eligible(self, job: domain.DistributedJob, now, stale_before) -> bool:
        if job.status == enums.Status.SCHEDULED.value and job.worker_id is None:
            return job.run_after is None or job.run_after <= now

        if job.status == enums.Status.PROCESSING.value:
            return job.updated_at <= stale_before

        return False

    def claim_ownership(
        self,
        worker_id: str,
        limit: int,
        stale_after_seconds: int=Base._DEFAULT_STALE_AFTER_SECONDS,
    ) -> list:
        """

        :param worker_id:
        :param limit:
        :param stale_after_seconds:
        :return: []domain.DistributedJob

        """
        claimed = []
        if limit <= 0:
            return claimed

        with self._lock:
            now = self._clock()
            stale_before = now - datetime.timedelta(seconds=stale_after_seconds)

            for job in self._jobs.values():
                if len(claimed) >= limit:
                    break

                if not self._eligible(job, now, stale_before):
                    continue

                job.worker_id = worker_id
                job.status = enums.Status.PROCESSING.value
                job.updated_at = now
                claimed.append(self._copy(job))

        return claimed

    def refresh_ownership(self, worker_id: str, job_ids: list):
        """

        :param worker_id:
        :param job_ids:

        """
        with self._lock:
            now = self._clock()
            for job_id in job_ids:
                job = self._jobs.get(job_id)
                if job and job.worker_id == worker_id:
                    job.updated_at = now

    def delete_job(self, worker_id, job_id: str):
        """

        :param worker_id:
        :param job_id:

        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job and job.worker_id == worker_id:
                del self._jobs[job_id]

    def _owned(self, worker_id: str, job_id: str):
        job = self._jobs.get(job_id)
        if not job or job.worker_id != worker_id:
            return None
        if job.status != enums.Status.PROCESSING.value:
            return None
        return job

    def backoff_owned_job(
        self, worker_id: str, job_id: str, attempt: int, offset_seconds: int, reason=None
    ):
        """

        :param worker_id:
        :param job_id:
        :param attempt:
        :param offset_seconds:
        :param reason:

        """
        with self._lock:
            job = self._owned(worker_id, job_id)
            if not job:
                return

            now = self._clock()
            job.worker_id = None
            job.status = enums.Status.SCHEDULED.value
            job.run_after = now + datetime.timedelta(seconds=offset_seconds)
            job.retry_attempts = attempt
            job.updated_at = now
            if reason is not None:
                job.latest_error = copy.deepcopy(reason)

    def error_owned_job(self, worker_id: str, job_id: str, reason: dict):
        """

        :param worker_id:
        :param job_id:
        :param reason:

        """
        with self._lock:
            job = self._owned(worker_id, job_id)
            if not job:
                return

            job.worker_id = None
            job.status = enums.Status.ERRORED.value
            job.run_after = None
            job.latest_error = copy.deepcopy(reason)
            job.updated_at = self._clock()

    def retry_errored_job(self, job_id: str):
        """

        :param job_id:

        """
        with self._lock:
            job = self._jobs.get(job_id)
            if not job or job.status != enums.Status.ERRORED.value:
                return

            job.status = enums.Status.SCHEDULED.value
            job.retry_attempts = 0
            job.latest_error = None
            job.run_after = None
            job.updated_at = self._clock()
