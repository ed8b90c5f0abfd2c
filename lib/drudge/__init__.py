"""drudge: register jobs & queues, schedule work, and have it run on a local or distributed
backend.

    from drudge import accessor, backend

    svc = QueueSchedulerService()
    svc.register_backend("pg", backend.Distributed(accessor.PostgresAccessor()))

    emails = svc.register_job("send-email", send_email)
    emails.schedule({"to": "someone@example.com"})

    with svc:
        ...

"""

from drudge.service import QueueSchedulerService, JobManager, JobBuilder


__all__ = [
    "QueueSchedulerService",
    "JobManager",
    "JobBuilder",
]
