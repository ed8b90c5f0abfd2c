from drudge.domain.base import Serializable
from drudge import enums
from drudge import utils


class DistributedJob(Serializable):
    """A job as written down by a distributed backend accessor.

    """

    def __init__(
        self,
        job_id: str=None,
        queue_name: str="",
        job_name: str=None,
        job_context=None,
        group_key: str=None,
        run_after=None,
    ):
        # set by whoever enqueues the job
        self.job_id = job_id
        self.queue_name = queue_name
        self.job_name = job_name
        self.job_context = job_context
        self.group_key = group_key
        self.run_after = utils.to_utc(run_after)

        # owned by the store
        self.worker_id = None
        self.status = enums.Status.SCHEDULED.value
        self.retry_attempts = 0
        self.latest_error = None
        self.updated_at = None
        self.created_at = None

    def encode(self) -> dict:
        """

        :return: dict

        """
        return {
            "job_id": self.job_id,
            "queue_name": self.queue_name,
            "job_name": self.job_name,
            "job_context": self.job_context,
            "group_key": self.group_key,
            "run_after": self.run_after,
            "worker_id": self.worker_id,
            "status": self.status,
            "retry_attempts": self.retry_attempts,
            "latest_error": self.latest_error,
            "updated_at": self.updated_at,
            "created_at": self.created_at,
        }

    @classmethod
    def decode(cls, data: dict):
        """

        :param data:
        :return: DistributedJob
        :raises ValueError: if data represents an invalid job

        """
        me = cls(
            job_id=data.get("job_id"),
            queue_name=data.get("queue_name", ""),
            job_name=data.get("job_name"),
            job_context=data.get("job_context"),
            group_key=data.get("group_key"),
            run_after=data.get("run_after"),
        )
        me.worker_id = data.get("worker_id")
        me.status = data.get("status", enums.Status.SCHEDULED.value)
        me.retry_attempts = data.get("retry_attempts", 0)
        me.latest_error = data.get("latest_error")
        me.updated_at = utils.to_utc(data.get("updated_at"))
        me.created_at = utils.to_utc(data.get("created_at"))

        if not all([me.job_id, me.job_name]):
            raise ValueError('require all of job_id, job_name to inflate obj')

        if me.worker_id is not None:
            me.worker_id = str(me.worker_id)
        me.job_id = str(me.job_id)

        return me

    def __repr__(self):
        return (
            f"DistributedJob(job_id={self.job_id!r}, job_name={self.job_name!r}, "
            f"status={self.status!r}, worker_id={self.worker_id!r})"
        )
