import collections
import threading
import uuid

from drudge import domain
from drudge import utils
from drudge.backend.base import Base


logger = utils.logger()


_Entry = collections.namedtuple("entry", ["id", "job", "after"])


class Local(Base):
    """Runs jobs in this process, straight out of a list in memory.

    Nothing is written down anywhere, so anything not yet run when the process exits is lost.
    Failed jobs are logged & dropped.

    """

    _DEFAULT_RATE = 1.0  # seconds between scans of the list

    def __init__(self, rate: float=_DEFAULT_RATE, clock=None):
        """

        :param rate: seconds between checks for due jobs
        :param clock: no arg callable returning an aware UTC datetime, defaults to utils.utcnow

        """
        self._rate = rate
        self._clock = clock or utils.utcnow

        self._lock = threading.Lock()
        self._entries = []

        self._execute_handler = None
        self._thread = None
        self._stop_event = threading.Event()

    def start(self, execute_handler):
        """

        :param execute_handler:

        """
        if self._thread:
            self.shutdown()

        self._execute_handler = execute_handler
        self._stop_event = threading.Event()

        self._thread = threading.Thread(
            target=self._thread_process_queue,
            args=(self._stop_event,),
            name="drudge-local",
            daemon=True,
        )
        self._thread.start()

        logger.info(f"local backend started: rate:{self._rate}")

    def shutdown(self):
        """Stop the loop. Pending jobs stay pending until we're started again.

        """
        if self._thread:
            self._stop_event.set()
            if self._thread is not threading.current_thread():
                self._thread.join()
            self._thread = None
            logger.info("local backend stopped")

        self._execute_handler = None

    def submit(self, job: domain.Job, after=None, queue: str=None) -> str:
        """

        :param job:
        :param after:
        :param queue: unused, all queues share the one list
        :return: str

        """
        id_ = str(uuid.uuid4())
        with self._lock:
            self._entries.append(_Entry(id_, job, utils.to_utc(after)))
        return id_

    def is_scheduled(self, id_: str) -> bool:
        """

        :param id_:
        :return: bool

        """
        with self._lock:
            return any(e.id == id_ for e in self._entries)

    def cancel(self, id_: str):
        """

        :param id_:

        """
        with self._lock:
            self._entries = [e for e in self._entries if e.id != id_]

    def _thread_process_queue(self, stop_event: threading.Event):
        """Scan for due jobs every so often until told to stop.

        :param stop_event:

        """
        while not stop_event.wait(self._rate):
            self._process_queue()

    def _process_queue(self) -> list:
        """Pull every due job off the list & kick each off in its own thread.

        :return: []threading.Thread started

        """
        handler = self._execute_handler
        if not handler:
            return []

        now = self._clock()

        with self._lock:
            due = [e for e in self._entries if e.after is None or e.after <= now]
            if due:
                due_ids = {e.id for e in due}
                self._entries = [e for e in self._entries if e.id not in due_ids]

        threads = []
        for entry in due:
            t = threading.Thread(
                target=self._execute,
                args=(handler, entry),
                name=f"drudge-job-{entry.id[:8]}",
                daemon=True,
            )
            t.start()
            threads.append(t)

        return threads

    @staticmethod
    def _execute(handler, entry: _Entry):
        """Run one job, logging (& swallowing) whatever it raises.

        :param handler:
        :param entry:

        """
        try:
            handler(entry.job)
        except Exception as e:
            logger.error(
                f"local job failed: id:{entry.id} job_name:{entry.job.name} error:{e}"
            )
