"""The drudge domain objects are dumb straight forward data containers.

Job:
A single unit of work; a name (which handler should run it), an id & some context that is
handed to the handler. Jobs are immutable.

Queue:
A named place jobs are scheduled onto. A queue is bound to a backend by name, or to nothing
(in which case it runs on whatever the scheduler's default backend is).

QueuedJob:
What callers get back after scheduling; a thin handle that can ask the backend that took the
job whether it's still scheduled, or cancel it.

DistributedJob:
A job as it's written down by a distributed backend, along with who owns it, how many times
it's been tried & what went wrong last time.

"""

from drudge.domain.job import Job, Queue, QueuedJob
from drudge.domain.distributed_job import DistributedJob


__all__ = [
    "Job",
    "Queue",
    "QueuedJob",
    "DistributedJob",
]
