import threading
import time
import traceback

from drudge import domain
from drudge import enums
from drudge import exceptions as exc
from drudge import utils
from drudge.accessor.base import Base as AccessorBase
from drudge.backend.base import Base


logger = utils.logger()


DEFAULT_MAX_CONCURRENT = 20
DEFAULT_CLAIM_RATE = 1.0  # seconds between claims
DEFAULT_RETRIES = 5
DEFAULT_BACKOFF_SECONDS = 5
DEFAULT_STALE_AFTER_SECONDS = 30
DEFAULT_HEARTBEAT_SECONDS = 10
DEFAULT_ACCESSOR_ATTEMPTS = 3
DEFAULT_SHUTDOWN_TIMEOUT = 0  # seconds to wait for running jobs on shutdown, 0 waits for good


class Distributed(Base):
    """Runs jobs written down in some shared store, alongside any number of other workers
    (other instances of this backend, usually in other processes or on other hosts).

    Each started instance is one worker. Every tick it claims jobs from the store & runs
    each claimed job in its own thread. Ownership of a job is only ever decided by the
    accessor's claim, so the store is the one place workers coordinate.

      - jobs that finish are deleted
      - jobs that fail are released & retried after some backoff, up to max_retries times
      - jobs that fail more than that are marked errored & left alone until retried by hand
      - jobs whose worker stops refreshing them (ie. it died) are reclaimed by someone else

    Delivery is at least once: a job can run again if its worker vanishes mid-run.

    """

    def __init__(
        self,
        accessor: AccessorBase,
        claim_rate: float=DEFAULT_CLAIM_RATE,
        max_concurrent: int=DEFAULT_MAX_CONCURRENT,
        max_retries: int=DEFAULT_RETRIES,
        backoff_seconds: int=DEFAULT_BACKOFF_SECONDS,
        stale_after_seconds: int=DEFAULT_STALE_AFTER_SECONDS,
        heartbeat_seconds: int=DEFAULT_HEARTBEAT_SECONDS,
        notifier=None,
        accessor_attempts: int=DEFAULT_ACCESSOR_ATTEMPTS,
        shutdown_timeout: float=DEFAULT_SHUTDOWN_TIMEOUT,
    ):
        """

        :param accessor: the store shared between workers
        :param claim_rate: seconds between attempts to claim more work
        :param max_concurrent: max jobs this worker will run at once
        :param max_retries: how many times a failing job is rescheduled before it's errored
        :param backoff_seconds: how long a failed job waits before it can be retried
        :param stale_after_seconds: how long a job can go without being refreshed before
            another worker is allowed to claim it
        :param heartbeat_seconds: how often we refresh jobs we're running, 0 to disable.
            Must be less than stale_after_seconds.
        :param notifier: optional notify.RedisNotifier to announce & listen for new work
        :param accessor_attempts: how many times we try to record a job's outcome
        :param shutdown_timeout: seconds shutdown waits for running jobs to finish, 0 to wait
            however long they take. Jobs still running after that are left owned by us.
        :raises InvalidArg: if the heartbeat is too slow to keep our jobs from going stale

        """
        if heartbeat_seconds and heartbeat_seconds >= stale_after_seconds:
            raise exc.InvalidArg(
                f"heartbeat_seconds {heartbeat_seconds} must be less than "
                f"stale_after_seconds {stale_after_seconds}"
            )

        self._accessor = accessor
        self._claim_rate = claim_rate
        self._max_concurrent = max_concurrent
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds
        self._stale_after_seconds = stale_after_seconds
        self._heartbeat_seconds = heartbeat_seconds
        self._notifier = notifier
        self._accessor_attempts = accessor_attempts
        self._shutdown_timeout = shutdown_timeout

        # jobs we've claimed that haven't finished yet: job_id -> domain.DistributedJob
        self._jobs = {}
        self._jobs_lock = threading.Lock()
        self._job_threads = []

        self._worker_id = None
        self._execute_handler = None

        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._heartbeat_stop_event = threading.Event()
        self._threads = []
        self._heartbeat_thread = None

    @classmethod
    def from_config(cls, accessor: AccessorBase, config: dict, notifier=None):
        """Build backend from the [backend] section of a config dict.

        :param accessor:
        :param config:
        :param notifier:
        :return: Distributed

        """
        conf = config.get("backend", {})
        return cls(
            accessor,
            claim_rate=float(conf.get("claim_rate", DEFAULT_CLAIM_RATE)),
            max_concurrent=int(conf.get("max_concurrent", DEFAULT_MAX_CONCURRENT)),
            max_retries=int(conf.get("max_retries", DEFAULT_RETRIES)),
            backoff_seconds=int(conf.get("backoff_seconds", DEFAULT_BACKOFF_SECONDS)),
            stale_after_seconds=int(
                conf.get("stale_after_seconds", DEFAULT_STALE_AFTER_SECONDS)
            ),
            heartbeat_seconds=int(conf.get("heartbeat_seconds", DEFAULT_HEARTBEAT_SECONDS)),
            notifier=notifier,
            shutdown_timeout=float(conf.get("shutdown_timeout", DEFAULT_SHUTDOWN_TIMEOUT)),
        )

    @property
    def worker_id(self):
        """Our id as given by the accessor, or None if we're not started.

        :return: str or None

        """
        return self._worker_id

    @property
    def in_flight(self) -> int:
        """Number of jobs we've claimed & not yet finished.

        :return: int

        """
        with self._jobs_lock:
            return len(self._jobs)

    def start(self, execute_handler):
        """Register as a worker & begin claiming jobs.

        :param execute_handler:

        """
        if self._threads or self._worker_id:
            self.shutdown()

        self._execute_handler = execute_handler
        self._worker_id = self._accessor.register_worker()

        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._heartbeat_stop_event = threading.Event()

        targets = [("claim", self._thread_process_queue)]
        if self._notifier:
            targets.append(("listen", self._thread_listen))

        for name, target in targets:
            self._threads.append(self._start_thread(name, target, self._stop_event))

        if self._heartbeat_seconds:
            # has its own stop event, it outlives the claim loop so jobs we wait on at
            # shutdown stay ours
            self._heartbeat_thread = self._start_thread(
                "heartbeat", self._thread_heartbeat, self._heartbeat_stop_event
            )

        logger.info(
            f"distributed backend started: worker_id:{self._worker_id} "
            f"max_concurrent:{self._max_concurrent} claim_rate:{self._claim_rate}"
        )

    def _start_thread(self, name: str, target, stop_event: threading.Event) -> threading.Thread:
        t = threading.Thread(
            target=target,
            args=(stop_event, self._wake_event),
            name=f"drudge-{name}",
            daemon=True,
        )
        t.start()
        return t

    def shutdown(self):
        """Stop claiming jobs, wait for running jobs to finish & deregister as a worker.

        Jobs still running after shutdown_timeout are left alone; they keep running & record
        their outcome as usual, but as nothing refreshes them anymore they may go stale &
        be run again by someone else.

        """
        self._stop_event.set()
        self._wake_event.set()

        for t in self._threads:
            if t is not threading.current_thread():
                t.join()
        self._threads = []

        # nothing new can be claimed now
        self._join_jobs()

        self._heartbeat_stop_event.set()
        if self._heartbeat_thread and self._heartbeat_thread is not threading.current_thread():
            self._heartbeat_thread.join()
        self._heartbeat_thread = None

        self._execute_handler = None

        worker_id, self._worker_id = self._worker_id, None
        if not worker_id:
            return

        with self._jobs_lock:
            running = list(self._jobs.keys())

        if running:
            logger.warning(
                f"jobs still running at shutdown: worker_id:{worker_id} job_ids:{running}"
            )

        self._accessor.deregister_worker(worker_id, keep_job_ids=running)
        logger.info(f"distributed backend stopped: worker_id:{worker_id}")

    def _join_jobs(self):
        """Wait for job threads to finish, up to shutdown_timeout in total.

        """
        with self._jobs_lock:
            threads, self._job_threads = self._job_threads, []

        deadline = time.monotonic() + self._shutdown_timeout if self._shutdown_timeout else None

        for t in threads:
            if t is threading.current_thread():
                continue

            if deadline is None:
                t.join()
            else:
                t.join(max(0.0, deadline - time.monotonic()))

    def submit(self, job: domain.Job, after=None, queue: str=None) -> str:
        """Write the job to the store for some worker to pick up.

        :param job:
        :param after:
        :param queue:
        :return: str

        """
        job_id = self._accessor.generate_job_id()

        self._accessor.enqueue_job(None, domain.DistributedJob(
            job_id=job_id,
            queue_name=queue or "",
            job_name=job.name,
            job_context=job.context,
            group_key=None,
            run_after=after,
        ))

        if self._notifier:
            try:
                self._notifier.announce(queue=queue)
            except Exception as e:
                logger.warning(f"failed to announce work: job_id:{job_id} error:{e}")

        return job_id

    def is_scheduled(self, id_: str) -> bool:
        """

        :param id_:
        :return: bool

        """
        return self._accessor.get_job_status(id_) in (
            enums.Status.SCHEDULED,
            enums.Status.PROCESSING,
        )

    def cancel(self, id_: str):
        """Delete the job, iff no worker has claimed it.

        :param id_:

        """
        self._accessor.delete_job(None, id_)

    def retry(self, id_: str):
        """Reschedule an errored job.

        :param id_:

        """
        self._accessor.retry_errored_job(id_)

    def _thread_process_queue(self, stop_event: threading.Event, wake_event: threading.Event):
        """Claim jobs every tick (or sooner if woken) until told to stop.

        :param stop_event:
        :param wake_event: set when someone announces new work

        """
        while True:
            wake_event.wait(self._claim_rate)
            wake_event.clear()

            if stop_event.is_set():
                break

            self._process_queue()

    def _should_claim(self, in_flight: int) -> bool:
        """We only top up once at least half our slots are free, to keep the number of
        claim calls down.

        :param in_flight:
        :return: bool

        """
        return in_flight <= self._max_concurrent / 2

    def _process_queue(self) -> list:
        """Claim as many jobs as we have room for & start a thread for each.

        :return: []threading.Thread started

        """
        worker_id = self._worker_id
        handler = self._execute_handler
        if not worker_id or not handler:
            return []

        in_flight = self.in_flight
        capacity = max(0, self._max_concurrent - in_flight)
        if not self._should_claim(in_flight) or capacity <= 0:
            return []

        try:
            claimed = self._accessor.claim_ownership(
                worker_id, capacity, self._stale_after_seconds
            )
        except Exception as e:
            logger.warning(f"failed to claim jobs: worker_id:{worker_id} error:{e}")
            return []

        with self._jobs_lock:
            new_jobs = [j for j in claimed if j.job_id not in self._jobs]
            for j in new_jobs:
                self._jobs[j.job_id] = j

        if not new_jobs:
            return []

        logger.info(f"claimed jobs: worker_id:{worker_id} count:{len(new_jobs)}")

        threads = []
        for j in new_jobs:
            t = threading.Thread(
                target=self._process_job,
                args=(worker_id, handler, j),
                name=f"drudge-job-{j.job_id[:8]}",
                daemon=True,
            )
            t.start()
            threads.append(t)

        with self._jobs_lock:
            self._job_threads = [t for t in self._job_threads if t.is_alive()] + threads

        return threads

    def _process_job(self, worker_id: str, handler, job: domain.DistributedJob):
        """Run a single claimed job & record how it went.

        :param worker_id: the worker that claimed the job
        :param handler:
        :param job:

        """
        try:
            handler(domain.Job(id=job.job_id, name=job.job_name, context=job.job_context))
        except Exception as e:
            self._job_failed(worker_id, job, e)
        else:
            self._job_completed(worker_id, job)
        finally:
            with self._jobs_lock:
                self._jobs.pop(job.job_id, None)

    def _job_completed(self, worker_id: str, job: domain.DistributedJob):
        """

        :param worker_id:
        :param job:

        """
        logger.info(f"job complete: job_id:{job.job_id} job_name:{job.job_name}")
        self._call_accessor(
            "delete job", self._accessor.delete_job, worker_id, job.job_id
        )

    def _job_failed(self, worker_id: str, job: domain.DistributedJob, error: Exception):
        """Backoff the job if it has retries left, otherwise error it.

        :param worker_id:
        :param job:
        :param error:

        """
        reason = {
            "error": {
                "name": type(error).__name__,
                "message": str(error),
                "stack": "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                ),
            },
        }

        if job.retry_attempts >= self._max_retries:
            logger.error(
                f"job errored: job_id:{job.job_id} job_name:{job.job_name} "
                f"attempts:{job.retry_attempts} error:{error}"
            )
            self._call_accessor(
                "error job", self._accessor.error_owned_job, worker_id, job.job_id, reason
            )
            return

        logger.warning(
            f"job failed, backing off: job_id:{job.job_id} job_name:{job.job_name} "
            f"attempt:{job.retry_attempts + 1} error:{error}"
        )
        self._call_accessor(
            "backoff job",
            self._accessor.backoff_owned_job,
            worker_id,
            job.job_id,
            job.retry_attempts + 1,
            self._backoff_seconds,
            reason=reason,
        )

    def _call_accessor(self, description: str, func, *args, **kwargs) -> bool:
        """Call into the accessor a few times before giving up.

        If we give up the job is left owned by us in the store; once it goes stale another
        claim will pick it up again.

        :param description: what we're doing, for the logs
        :param func:
        :return: bool if the call succeeded

        """
        try:
            utils.with_retries(
                func, self._accessor_attempts, *args, description=description, **kwargs
            )
        except Exception as e:
            logger.error(f"giving up: action:{description} args:{args} error:{e}")
            return False
        return True

    def _thread_heartbeat(self, stop_event: threading.Event, wake_event: threading.Event):
        """Refresh the jobs we're running every so often so they don't go stale.

        :param stop_event:
        :param wake_event: unused

        """
        while not stop_event.wait(self._heartbeat_seconds):
            self._heartbeat()

    def _heartbeat(self):
        """

        """
        worker_id = self._worker_id
        with self._jobs_lock:
            job_ids = list(self._jobs.keys())

        if not worker_id or not job_ids:
            return

        try:
            self._accessor.refresh_ownership(worker_id, job_ids)
        except Exception as e:
            logger.warning(f"failed to refresh jobs: worker_id:{worker_id} error:{e}")

    def _thread_listen(self, stop_event: threading.Event, wake_event: threading.Event):
        """Wake the claim loop whenever new work is announced.

        :param stop_event:
        :param wake_event:

        """
        try:
            self._notifier.listen(wake_event.set, stop_event)
        except Exception as e:
            # we still poll, so losing the listener only costs us latency
            logger.error(f"stopped listening for announcements: error:{e}")
