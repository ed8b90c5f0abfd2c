import datetime
import logging
import os
import random
import sys
import tempfile
import time


_LIST_ADJ = [
    "sleepy",
    "grumpy",
    "tireless",
    "dutiful",
    "weary",
    "stubborn",
    "patient",
    "plodding",
    "humble",
    "diligent",
    "sulky",
]
_LIST_THINGS = [
    "ox",
    "mule",
    "donkey",
    "ant",
    "beaver",
    "badger",
    "packhorse",
    "camel",
    "yak",
]


_logger = None
_ENV_LOG_PATH = "DRUDGE_LOG_PATH"


def logger(name="drudge", filename=None, logpath=None):
    """Build a new logger.

    Nb. There is only ever one: the first call decides where it writes.

    :param name:
    :param filename:
    :param logpath: dir to write into, defaults to $DRUDGE_LOG_PATH or the system temp dir

    """
    global _logger

    if not _logger:
        if not filename:
            filename = name + ".log"

        if not logpath:
            logpath = os.environ.get(_ENV_LOG_PATH) or tempfile.gettempdir()

        fmt = logging.Formatter(
            "%(asctime)s | %(threadName)-12.12s | %(levelname)-5.5s | %(message)s"
        )
        fullpath = os.path.join(logpath, filename)

        _logger = logging.getLogger(name)

        fh = logging.FileHandler(fullpath)
        fh.setFormatter(fmt)
        _logger.addHandler(fh)

        sh = logging.StreamHandler(sys.stdout)
        sh.setFormatter(fmt)
        _logger.addHandler(sh)

        _logger.setLevel(logging.DEBUG)

        _logger.info(f"logpath: {fullpath}")

    return _logger


def random_name_worker(suffix=None) -> str:
    """Return random garbage name for a worker.

    :return: str

    """
    adj = random.choice(_LIST_ADJ)
    thing = random.choice(_LIST_THINGS)

    if not suffix:
        suffix = random.randint(0, 99)

    return f'{adj}-{thing}-{suffix}'


def utcnow() -> datetime.datetime:
    """Return the current time as a timezone aware UTC datetime.

    :return: datetime.datetime

    """
    return datetime.datetime.now(datetime.timezone.utc)


def to_utc(value):
    """Return the given datetime as timezone aware UTC. Naive datetimes are assumed to
    already be in UTC.

    :param value: datetime or None
    :return: datetime.datetime or None

    """
    if value is None:
        return None

    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)

    return value.astimezone(datetime.timezone.utc)


def backoff_sleep(attempt: int):
    """Sleep for an exponentially increasing time with a little jitter.

    :param attempt: zero indexed attempt number

    """
    time.sleep((2 ** attempt) + (random.randint(0, 1000) / 1000.0))


def with_retries(func, attempts: int, *args, description="", **kwargs):
    """Call func until it doesn't raise or we run out of attempts, sleeping a little longer
    between each go. The last exception is raised if all attempts fail.

    :param func: some callable
    :param attempts: how many times we'll try (at least once)
    :param description: what we're doing, for the logs
    :return: whatever func returns

    """
    attempts = max([1, attempts])

    for i in range(0, attempts):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if i + 1 >= attempts:
                raise

            logger().warning(f"attempt failed: action:{description} attempt:{i + 1} error:{e}")
            backoff_sleep(i)
