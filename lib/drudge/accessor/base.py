import abc

from drudge import domain
from drudge import enums
from drudge import exceptions as exc


class Base(metaclass=abc.ABCMeta):
    """Everything a distributed backend needs from some shared store.

    Each call is expected to be atomic as far as job ownership goes; in particular
    claim_ownership must never hand the same job to two workers at once.

    """

    _DEFAULT_STALE_AFTER_SECONDS = 30

    @staticmethod
    def _status(value) -> enums.Status:
        """

        :param value: status as written in the store
        :return: enums.Status
        :raises InvalidState: if the store holds a status we don't know

        """
        try:
            return enums.Status(value)
        except ValueError:
            raise exc.InvalidState(f"unknown job status: {value}")

    @abc.abstractmethod
    def register_worker(self) -> str:
        """Register a new worker.

        :return: str worker id to be used wherever a worker_id is needed

        """
        pass

    @abc.abstractmethod
    def deregister_worker(self, worker_id: str, keep_job_ids=None):
        """Deregister a worker. Jobs it still owns are released to be claimed again, apart
        from those in keep_job_ids, which stay owned by it.

        :param worker_id:
        :param keep_job_ids: ids of jobs the worker is still running

        """
        pass

    @abc.abstractmethod
    def generate_job_id(self) -> str:
        """Return a new job id to be used with enqueue_job.

        :return: str

        """
        pass

    @abc.abstractmethod
    def get_job_status(self, job_id: str):
        """Return the status of the job, or None if we don't know about it.

        :param job_id:
        :return: enums.Status or None

        """
        pass

    @abc.abstractmethod
    def get_job(self, job_id: str):
        """Return the job with the given id, or None.

        :param job_id:
        :return: domain.DistributedJob or None

        """
        pass

    @abc.abstractmethod
    def enqueue_job(self, worker_id, job: domain.DistributedJob):
        """Write a new job. If worker_id is given the job is created already owned by it
        (& in the PROCESSING state).

        :param worker_id: worker id to assign the job to, or None
        :param job:

        """
        pass

    @abc.abstractmethod
    def claim_ownership(
        self, worker_id: str, limit: int, stale_after_seconds: int=_DEFAULT_STALE_AFTER_SECONDS
    ) -> list:
        """Take ownership of up to 'limit' jobs that are either
         - not owned & due to run
         - owned, but haven't been updated in the last 'stale_after_seconds'

        Rows come back as they are after the claim, so worker_id & status show the new owner.
        The job fields & retry_attempts are untouched by a claim.

        :param worker_id: worker to assign ownership to
        :param limit: max number of jobs to claim
        :param stale_after_seconds: how long since a job's last update before it's up for grabs
        :return: []domain.DistributedJob

        """
        pass

    @abc.abstractmethod
    def refresh_ownership(self, worker_id: str, job_ids: list):
        """Bump the update time of the given jobs, iff they're owned by worker_id, so they
        aren't considered stale.

        :param worker_id:
        :param job_ids:

        """
        pass

    @abc.abstractmethod
    def delete_job(self, worker_id, job_id: str):
        """Delete job with matching id & worker id.

        :param worker_id: worker owning the job, or None for unowned jobs
        :param job_id:

        """
        pass

    @abc.abstractmethod
    def backoff_owned_job(
        self, worker_id: str, job_id: str, attempt: int, offset_seconds: int, reason=None
    ):
        """Release a job owned by worker_id back to the pool, to be run no sooner than
        'offset_seconds' from now.

        :param worker_id: worker owning the job
        :param job_id:
        :param attempt: the retry attempt the job is now on
        :param offset_seconds: how far in the future to push the job
        :param reason: optional error data to record against the job

        """
        pass

    @abc.abstractmethod
    def error_owned_job(self, worker_id: str, job_id: str, reason: dict):
        """Mark job owned by worker_id as errored. It won't be run again until retried.

        :param worker_id: worker owning the job
        :param job_id:
        :param reason: error data to record against the job

        """
        pass

    @abc.abstractmethod
    def retry_errored_job(self, job_id: str):
        """Put an errored job back on the schedule, resetting its retry count.

        :param job_id:

        """
        pass
