import importlib
import time

from argparse import ArgumentParser

from drudge import accessor
from drudge import backend
from drudge import config
from drudge import service


ps = ArgumentParser()
ps.add_argument(
    "jobs",
    nargs="+",
    help="modules to import, each must define register(service) to register its jobs",
)
args = ps.parse_args()

conf = config.read_default_config()

svc = service.QueueSchedulerService.from_config(conf)
svc.register_backend(
    "distributed",
    backend.Distributed.from_config(
        accessor.open_accessor(conf),
        conf,
        notifier=backend.RedisNotifier.from_config(conf),
    ),
)

for name in args.jobs:
    importlib.import_module(name).register(svc)

try:
    svc.start()
    while True:
        time.sleep(60)
except KeyboardInterrupt:
    pass
finally:
    svc.shutdown()
