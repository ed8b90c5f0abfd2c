from argparse import ArgumentParser

from drudge import accessor
from drudge import config
from drudge import enums


conf = config.read_default_config()
acc = accessor.open_accessor(conf)

ps = ArgumentParser()
ps.add_argument("job_ids", nargs="+", help="ids of errored jobs to retry")
args = ps.parse_args()

for job_id in args.job_ids:
    job = acc.get_job(job_id)
    if not job:
        print(f"{job_id}: not found")
        continue

    if job.status != enums.Status.ERRORED.value:
        print(f"{job_id}: not errored ({job.status})")
        continue

    acc.retry_errored_job(job_id)
    print(f"{job_id}: rescheduled, last error: {(job.latest_error or {}).get('error')}")
