import types
import uuid

from drudge import domain
from drudge import exceptions as exc
from drudge import utils
from drudge.registry import Registry


logger = utils.logger()


_DEFAULT_QUEUE = "general"


class JobBuilder:
    """A job with its context filled in, waiting to be scheduled.

    """

    def __init__(self, manager, context):
        self._manager = manager
        self._context = context

    def schedule(self, on=None, after=None) -> domain.QueuedJob:
        """Schedule the job.

        :param on: queue (or queue name) to run on, defaults to the job's default queue
        :param after: datetime the job should not run before, None implies asap
        :return: domain.QueuedJob

        """
        return self._manager._schedule(self._context, on=on, after=after)


class JobManager:
    """Returned by QueueSchedulerService.register_job; the way to create & schedule jobs of
    one kind.

    """

    def __init__(self, service, name: str, handler, default_queue: domain.Queue):
        self._service = service
        self._name = name
        self._handler = handler
        self._default_queue = default_queue

    @property
    def name(self) -> str:
        return self._name

    @property
    def default_queue(self) -> domain.Queue:
        return self._default_queue

    def make(self, context) -> JobBuilder:
        """

        :param context: data handed to the handler when the job runs
        :return: JobBuilder

        """
        return JobBuilder(self, context)

    def schedule(self, context, on=None, after=None) -> domain.QueuedJob:
        """Shorthand for make(context).schedule(on=on, after=after)

        :param context:
        :param on:
        :param after:
        :return: domain.QueuedJob

        """
        return self.make(context).schedule(on=on, after=after)

    def execute(self, job: domain.Job):
        """Run the handler for the given job.

        :param job:

        """
        return self._handler(job)

    def _schedule(self, context, on=None, after=None) -> domain.QueuedJob:
        """

        :param context:
        :param on:
        :param after:
        :return: domain.QueuedJob
        :raises QueueNotRegisteredError:
        :raises BackendNotRegisteredError:
        :raises NoDefaultBackendError:

        """
        queue = self._service._resolve_queue(on) if on else self._default_queue
        backend = self._service._resolve_backend(queue)

        job = domain.Job(id=str(uuid.uuid4()), name=self._name, context=context)
        id_ = backend.submit(job, after=after, queue=queue.name)

        logger.info(f"job scheduled: id:{id_} job_name:{self._name} queue:{queue.name}")
        return domain.QueuedJob(id_, queue, backend)


class QueueSchedulerService:
    """Ties jobs, queues & backends together.

    - Jobs are run on queues, a job runs on its default queue unless told otherwise.
    - Queues are run by backends, a queue runs on the default backend unless told otherwise.
    - The default backend is the first one registered.

    """

    def __init__(self, default_queue: str=_DEFAULT_QUEUE):
        self._queues = Registry()
        self._jobs = Registry()
        self._backends = Registry()
        self._default_backend_name = None

        self._default_queue = self.register_queue(default_queue)

    @classmethod
    def from_config(cls, config: dict):
        """Build service from the [scheduler] section of a config dict.

        :param config:
        :return: QueueSchedulerService

        """
        conf = config.get("scheduler", {})
        return cls(default_queue=conf.get("default_queue", _DEFAULT_QUEUE))

    @property
    def default_queue(self) -> domain.Queue:
        return self._default_queue

    @property
    def default_backend_name(self):
        return self._default_backend_name

    @property
    def registered_queues(self) -> types.MappingProxyType:
        return self._queues.all()

    @property
    def registered_jobs(self) -> list:
        return self._jobs.all_names()

    @property
    def registered_backends(self) -> types.MappingProxyType:
        return self._backends.all()

    def register_backend(self, name: str, backend):
        """Register a backend. The first one registered becomes the default.

        :param name:
        :param backend: a drudge.backend.Base
        :return: backend
        :raises BackendAlreadyRegisteredError:

        """
        if self._backends.register(name, lambda: backend) is None:
            raise exc.BackendAlreadyRegisteredError(name)

        if self._default_backend_name is None:
            self._default_backend_name = name

        logger.info(f"backend registered: name:{name} type:{type(backend).__name__}")
        return backend

    def register_queue(self, name: str, backend: str=None) -> domain.Queue:
        """Register a queue.

        :param name:
        :param backend: name of the backend to run on, None implies the default backend
        :return: domain.Queue
        :raises QueueAlreadyRegisteredError:

        """
        queue = self._queues.register(name, lambda: domain.Queue(name=name, backend=backend))
        if queue is None:
            raise exc.QueueAlreadyRegisteredError(name)
        return queue

    def register_job(self, name: str, handler, default_queue=None) -> JobManager:
        """Register a job handler.

        :param name:
        :param handler: callable taking a domain.Job
        :param default_queue: queue (or queue name) jobs run on when not told otherwise
        :return: JobManager
        :raises JobAlreadyRegisteredError:
        :raises QueueNotRegisteredError:

        """
        if name in self._jobs:
            raise exc.JobAlreadyRegisteredError(name)

        queue = self._resolve_queue(default_queue)

        manager = self._jobs.register(name, lambda: JobManager(self, name, handler, queue))
        if manager is None:
            raise exc.JobAlreadyRegisteredError(name)
        return manager

    def start(self):
        """Start every backend.

        """
        for name, backend in self._backends.all().items():
            logger.info(f"starting backend: name:{name}")
            backend.start(self.dispatch)

    def shutdown(self):
        """Shutdown every backend. All of them are asked even if some fail, the first
        error is raised after.

        """
        first_error = None

        for name, backend in self._backends.all().items():
            logger.info(f"stopping backend: name:{name}")
            try:
                backend.shutdown()
            except Exception as e:
                logger.error(f"failed to stop backend: name:{name} error:{e}")
                first_error = first_error or e

        if first_error:
            raise first_error

    def dispatch(self, job: domain.Job):
        """Hand a job to its handler. Backends are started with this.

        :param job:
        :raises UnknownJobError: if no handler is registered under job.name

        """
        manager = self._jobs.get(job.name)
        if manager is None:
            raise exc.UnknownJobError(job.name)
        return manager.execute(job)

    def _resolve_queue(self, queue=None) -> domain.Queue:
        """

        :param queue: domain.Queue, queue name or None (None & "" mean the default queue)
        :return: domain.Queue
        :raises QueueNotRegisteredError:

        """
        if not queue:
            return self._default_queue

        name = queue.name if isinstance(queue, domain.Queue) else queue

        resolved = self._queues.get(name)
        if resolved is None:
            raise exc.QueueNotRegisteredError(name)
        return resolved

    def _resolve_backend(self, queue: domain.Queue):
        """

        :param queue:
        :return: drudge.backend.Base
        :raises BackendNotRegisteredError:
        :raises NoDefaultBackendError:

        """
        name = queue.backend or self._default_backend_name
        if name is None:
            raise exc.NoDefaultBackendError(
                f"queue '{queue.name}' has no backend & no default backend is registered"
            )

        backend = self._backends.get(name)
        if backend is None:
            raise exc.BackendNotRegisteredError(name)
        return backend

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
