import datetime
import uuid

import pymongo
from pymongo import errors as mongo_err

from drudge import domain
from drudge import enums
from drudge import exceptions as exc
from drudge import utils
from drudge.accessor.base import Base


logger = utils.logger()


class MongoAccessor(Base):
    """MongoDB backed accessor.

    Mongo has no 'skip locked', but find_one_and_update is atomic per document, so claiming
    is done one document at a time. Two workers racing for the same document can't both win;
    the loser simply matches the next eligible document.

    """

    # database
    _DB = "drudge"

    # collections
    _T_JOB = "jobs"

    def __init__(self, host='database', port=27017, database=_DB, table_prefix="", clock=None):
        self._host = host
        self._port = port
        self._clock = clock or utils.utcnow

        self._conn = pymongo.MongoClient(host=host, port=port, tz_aware=True)
        self._jobs = self._conn[database][f"{table_prefix}{self._T_JOB}"]

    @classmethod
    def from_config(cls, config: dict):
        """Build accessor from the [database] section of a config dict.

        :param config:
        :return: MongoAccessor

        """
        db = config.get("database", {})
        return cls(
            host=db.get("host", "localhost"),
            port=int(db.get("port", 27017)),
            database=db.get("name", cls._DB),
            table_prefix=db.get("table_prefix", ""),
        )

    def create_indexes(self):
        """Create the indexes our claim queries lean on.

        """
        self._jobs.create_index([
            ("status", pymongo.ASCENDING),
            ("worker_id", pymongo.ASCENDING),
            ("run_after", pymongo.ASCENDING),
        ])
        self._jobs.create_index([
            ("worker_id", pymongo.ASCENDING),
            ("updated_at", pymongo.ASCENDING),
        ])

    @staticmethod
    def _decode(doc: dict) -> domain.DistributedJob:
        """

        :param doc:
        :return: domain.DistributedJob

        """
        data = dict(doc)
        data["job_id"] = data.pop("_id")
        return domain.DistributedJob.decode(data)

    def register_worker(self) -> str:
        """

        :return: str

        """
        worker_id = str(uuid.uuid4())
        logger.info(f"registered worker: worker_id:{worker_id} collection:{self._jobs.name}")
        return worker_id

    def deregister_worker(self, worker_id: str, keep_job_ids=None):
        """

        :param worker_id:
        :param keep_job_ids:

        """
        result = self._jobs.update_many(
            {
                "_id": {"$nin": list(keep_job_ids or [])},
                "worker_id": worker_id,
                "status": enums.Status.PROCESSING.value,
            },
            {"$set": {
                "worker_id": None,
                "status": enums.Status.SCHEDULED.value,
                "updated_at": self._clock(),
            }}
        )
        logger.info(
            f"deregistered worker: worker_id:{worker_id} released:{result.modified_count}"
        )

    def generate_job_id(self) -> str:
        """

        :return: str

        """
        return str(uuid.uuid4())

    def get_job_status(self, job_id: str):
        """

        :param job_id:
        :return: enums.Status or None

        """
        doc = self._jobs.find_one({"_id": job_id}, {"status": 1})
        if not doc:
            return None
        return self._status(doc["status"])

    def get_job(self, job_id: str):
        """

        :param job_id:
        :return: domain.DistributedJob or None

        """
        doc = self._jobs.find_one({"_id": job_id})
        return self._decode(doc) if doc else None

    def enqueue_job(self, worker_id, job: domain.DistributedJob):
        """

        :param worker_id:
        :param job:
        :raises WriteFailError: if the job id is in use

        """
        now = self._clock()

        data = job.encode()
        data["_id"] = data.pop("job_id")
        data["run_after"] = utils.to_utc(job.run_after)
        data["worker_id"] = worker_id
        data["status"] = (
            enums.Status.PROCESSING.value if worker_id else enums.Status.SCHEDULED.value
        )
        data["retry_attempts"] = 0
        data["latest_error"] = None
        data["updated_at"] = now
        data["created_at"] = now

        try:
            result = self._jobs.insert_one(data)
        except mongo_err.DuplicateKeyError:
            raise exc.WriteFailError(f"job exists already: {job.job_id}")

        if not result.inserted_id:
            raise exc.WriteFailError(f"failed to enqueue job: {job.job_id}")

    def claim_ownership(
        self,
        worker_id: str,
        limit: int,
        stale_after_seconds: int=Base._DEFAULT_STALE_AFTER_SECONDS,
    ) -> list:
        """

        :param worker_id:
        :param limit:
        :param stale_after_seconds:
        :return: []domain.DistributedJob

        """
        claimed = []

        while len(claimed) < limit:
            now = self._clock()
            stale_before = now - datetime.timedelta(seconds=stale_after_seconds)

            # with a small enough stale window we'd otherwise match what we just claimed
            doc = self._jobs.find_one_and_update(
                {"_id": {"$nin": [j.job_id for j in claimed]}, "$or": [
                    {
                        "worker_id": None,
                        "status": enums.Status.SCHEDULED.value,
                        "$or": [{"run_after": None}, {"run_after": {"$lte": now}}],
                    },
                    {
                        "status": enums.Status.PROCESSING.value,
                        "updated_at": {"$lte": stale_before},
                    },
                ]},
                {"$set": {
                    "worker_id": worker_id,
                    "status": enums.Status.PROCESSING.value,
                    "updated_at": now,
                }},
                sort=[("created_at", pymongo.ASCENDING)],
                return_document=pymongo.ReturnDocument.AFTER,
            )
            if not doc:
                break

            claimed.append(self._decode(doc))

        return claimed

    def refresh_ownership(self, worker_id: str, job_ids: list):
        """

        :param worker_id:
        :param job_ids:

        """
        if not job_ids:
            return

        self._jobs.update_many(
            {"_id": {"$in": list(job_ids)}, "worker_id": worker_id},
            {"$set": {"updated_at": self._clock()}},
        )

    def delete_job(self, worker_id, job_id: str):
        """

        :param worker_id:
        :param job_id:

        """
        self._jobs.delete_one({"_id": job_id, "worker_id": worker_id})

    def backoff_owned_job(
        self, worker_id: str, job_id: str, attempt: int, offset_seconds: int, reason=None
    ):
        """

        :param worker_id:
        :param job_id:
        :param attempt:
        :param offset_seconds:
        :param reason:

        """
        now = self._clock()
        update = {
            "worker_id": None,
            "status": enums.Status.SCHEDULED.value,
            "run_after": now + datetime.timedelta(seconds=offset_seconds),
            "retry_attempts": attempt,
            "updated_at": now,
        }
        if reason is not None:
            update["latest_error"] = reason

        self._jobs.update_one(
            {"_id": job_id, "worker_id": worker_id, "status": enums.Status.PROCESSING.value},
            {"$set": update},
        )

    def error_owned_job(self, worker_id: str, job_id: str, reason: dict):
        """

        :param worker_id:
        :param job_id:
        :param reason:

        """
        self._jobs.update_one(
            {"_id": job_id, "worker_id": worker_id, "status": enums.Status.PROCESSING.value},
            {"$set": {
                "worker_id": None,
                "status": enums.Status.ERRORED.value,
                "run_after": None,
                "latest_error": reason,
                "updated_at": self._clock(),
            }},
        )

    def retry_errored_job(self, job_id: str):
        """

        :param job_id:

        """
        self._jobs.update_one(
            {"_id": job_id, "status": enums.Status.ERRORED.value},
            {"$set": {
                "status": enums.Status.SCHEDULED.value,
                "retry_attempts": 0,
                "latest_error": None,
                "run_after": None,
                "updated_at": self._clock(),
            }},
        )
