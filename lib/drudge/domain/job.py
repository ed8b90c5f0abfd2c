import collections


class Job(collections.namedtuple("Job", ["id", "name", "context"])):
    """A single unit of work. 'name' is the key of the handler that'll run it & 'context'
    is whatever the caller wants handed to that handler.

    Nb. Context is carried end to end without being looked at, but distributed backends
    need to write it down somewhere, so keep it JSON serializable.

    """
    __slots__ = ()

    def encode(self) -> dict:
        """

        :return: dict

        """
        return {"id": self.id, "name": self.name, "context": self.context}


class Queue(collections.namedtuple("Queue", ["name", "backend"], defaults=[None])):
    """A named place to put jobs. 'backend' is the name of the backend that runs the queue,
    None implies "whatever the scheduler default is".

    """
    __slots__ = ()


class QueuedJob:
    """Handle given back to callers after scheduling a job.

    It's bound to the backend that accepted the job, so asking it questions always goes to
    the right place.

    """

    def __init__(self, id_: str, queue: Queue, backend):
        self._id = id_
        self._queue = queue
        self._backend = backend

    @property
    def id(self) -> str:
        return self._id

    @property
    def queue(self) -> Queue:
        return self._queue

    def is_scheduled(self) -> bool:
        """Return if the job is still waiting to run (or is running).

        :return: bool

        """
        return self._backend.is_scheduled(self._id)

    def cancel(self):
        """Stop the job from running, if it hasn't been picked up already.

        """
        self._backend.cancel(self._id)

    def __repr__(self):
        return f"QueuedJob(id={self._id!r}, queue={self._queue.name!r})"
