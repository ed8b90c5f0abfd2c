import enum


class Status(enum.Enum):
    # the job is waiting for a worker to claim it (possibly not before some 'run_after' time)
    SCHEDULED = "scheduled"

    # some worker has claimed the job & is running it. If the worker stops refreshing it the
    # job goes stale & is up for grabs again
    PROCESSING = "processing"

    # the job failed more times than we're willing to retry it. It'll sit here until
    # someone retries it by hand (or purges it).
    ERRORED = "errored"


class Driver(enum.Enum):
    """Which store a distributed backend should talk to.

    """
    POSTGRES = "postgres"

    MONGO = "mongo"

    # everything lives in this process, handy for tests & single host setups
    MEMORY = "memory"
