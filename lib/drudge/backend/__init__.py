"""A 'backend' is any job execution engine that can fulfill the base contract in
drudge.backend.base.Base.

Essentially it's responsible for
 - accepting jobs to run now, or after some time
 - telling us if a job is still scheduled, and cancelling it if it's not been picked up
 - running due jobs by handing them to the execute handler it was started with
 - deciding what happens to jobs that fail

Local runs everything in memory in the current process.
Distributed shares jobs between any number of workers via an accessor (see drudge.accessor).

"""

from drudge.backend.base import Base
from drudge.backend.distributed_impl import Distributed
from drudge.backend.local_impl import Local
from drudge.backend.notify import RedisNotifier


__all__ = [
    "Base",
    "Distributed",
    "Local",
    "RedisNotifier",
]
