import uuid

import psycopg2
from psycopg2 import pool
from psycopg2.extras import DictCursor, Json

from drudge import domain
from drudge import enums
from drudge import exceptions as exc
from drudge import utils
from drudge.accessor.base import Base


logger = utils.logger()


_MAX_POOL_SIZE = 32


class _Transaction:
    """Borrows a connection from the pool for the duration of a 'with' block. Commits on
    a clean exit, rolls back otherwise.

    """

    def __init__(self, conn_pool):
        self._pool = conn_pool
        self._conn = None
        self._cur = None

    def __enter__(self):
        self._conn = self._pool.getconn()
        self._cur = self._conn.cursor()
        return self._cur

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type:
                self._conn.rollback()
            else:
                self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise
        finally:
            self._cur.close()
            self._pool.putconn(self._conn)


class PostgresAccessor(Base):
    """Postgres backed accessor. Everything lives in a single table.

    Claiming relies on 'SELECT .. FOR UPDATE SKIP LOCKED' so that workers racing each other
    split the available jobs between them rather than queuing up behind each others locks.

    """

    _CONNECT_ATTEMPTS = 3

    def __init__(
        self,
        host='database',
        port=5432,
        user="postgres",
        password="",
        database="drudge",
        table_prefix="",
        max_connections=_MAX_POOL_SIZE,
    ):
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._database = database
        self._max_connections = max_connections

        self.table_prefix = table_prefix
        self.table_name = f"{table_prefix}jobs"
        self.status_type = f"{table_prefix}job_status"

        self.__pool = None

    @classmethod
    def from_config(cls, config: dict):
        """Build accessor from the [database] section of a config dict.

        :param config:
        :return: PostgresAccessor

        """
        db = config.get("database", {})
        return cls(
            host=db.get("host", "localhost"),
            port=int(db.get("port", 5432)),
            user=db.get("user", "postgres"),
            password=db.get("password", ""),
            database=db.get("name", "drudge"),
            table_prefix=db.get("table_prefix", ""),
        )

    @property
    def _pool(self):
        if not self.__pool:
            err = None
            for i in range(0, max([1, self._CONNECT_ATTEMPTS])):
                try:
                    self.__pool = pool.ThreadedConnectionPool(
                        1,
                        self._max_connections,
                        host=self._host,
                        port=self._port,
                        database=self._database,
                        user=self._user,
                        password=self._password,
                        cursor_factory=DictCursor,
                    )
                    break
                except Exception as e:
                    err = e
                    logger.warning(f"error connecting to database: host:{self._host} error:{e}")
                    utils.backoff_sleep(i)

            if not self.__pool:
                raise exc.WriteFailError(f"unable to connect to database: {err}")

        return self.__pool

    def transaction(self) -> _Transaction:
        """

        :return: _Transaction

        """
        return _Transaction(self._pool)

    def close(self):
        """Close all pooled connections.

        """
        if self.__pool:
            self.__pool.closeall()
            self.__pool = None

    @staticmethod
    def migrations(table_prefix: str="") -> list:
        """Return the statements required to create our table & indexes.

        All of them are safe to run more than once.

        :param table_prefix:
        :return: []str

        """
        table = f"{table_prefix}jobs"
        status_type = f"{table_prefix}job_status"
        statuses = ", ".join(f"'{s.value}'" for s in enums.Status)

        return [
            (
                "DO $$ BEGIN "
                f"CREATE TYPE {status_type} AS ENUM ({statuses}); "
                "EXCEPTION WHEN duplicate_object THEN null; "
                "END $$;"
            ),
            f"""CREATE TABLE IF NOT EXISTS {table} (
              job_id uuid PRIMARY KEY,
              queue_name varchar NOT NULL,
              job_name varchar NOT NULL,
              group_key varchar,
              job_context jsonb,
              run_after timestamptz,
              worker_id uuid,
              status {status_type} NOT NULL,
              latest_error jsonb,
              retry_attempts integer NOT NULL DEFAULT 0 CHECK (retry_attempts >= 0),
              updated_at timestamptz NOT NULL DEFAULT NOW(),
              created_at timestamptz NOT NULL DEFAULT NOW()
            );""",
            (
                f"CREATE INDEX IF NOT EXISTS {table}_claim_idx "
                f"ON {table} (status, worker_id, run_after);"
            ),
            (
                f"CREATE INDEX IF NOT EXISTS {table}_stale_idx "
                f"ON {table} (worker_id, updated_at);"
            ),
        ]

    def create_schema(self):
        """Run our migrations against the database.

        """
        with self.transaction() as cur:
            for statement in self.migrations(self.table_prefix):
                cur.execute(statement)

    @staticmethod
    def _decode(row) -> domain.DistributedJob:
        """Turn a db row into a DistributedJob.

        :param row:
        :return: domain.DistributedJob

        """
        return domain.DistributedJob.decode(dict(row))

    def register_worker(self) -> str:
        """Workers aren't written down anywhere, they're implied by the jobs they own.

        :return: str

        """
        worker_id = str(uuid.uuid4())
        logger.info(f"registered worker: worker_id:{worker_id} table:{self.table_name}")
        return worker_id

    def deregister_worker(self, worker_id: str, keep_job_ids=None):
        """Release any jobs still owned by the given worker, bar those in keep_job_ids.

        :param worker_id:
        :param keep_job_ids:

        """
        with self.transaction() as cur:
            cur.execute(
                (
                    f"UPDATE {self.table_name} "
                    "SET worker_id=NULL, status=%s, updated_at=NOW() "
                    "WHERE worker_id=%s AND status=%s "
                    "AND NOT (job_id = ANY(%s::uuid[]));"
                ),
                (
                    enums.Status.SCHEDULED.value,
                    worker_id,
                    enums.Status.PROCESSING.value,
                    list(keep_job_ids or []),
                )
            )
            released = cur.rowcount

        logger.info(f"deregistered worker: worker_id:{worker_id} released:{released}")

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
        try:
            with self.transaction() as cur:
                cur.execute(
                    f"SELECT status FROM {self.table_name} WHERE job_id=%s;", (job_id,)
                )
                row = cur.fetchone()
        except psycopg2.DataError:
            return None  # not a uuid, so certainly not one of ours

        if not row:
            return None

        return self._status(row[0])

    def get_job(self, job_id: str):
        """

        :param job_id:
        :return: domain.DistributedJob or None

        """
        try:
            with self.transaction() as cur:
                cur.execute(f"SELECT * FROM {self.table_name} WHERE job_id=%s;", (job_id,))
                row = cur.fetchone()
        except psycopg2.DataError:
            return None

        return self._decode(row) if row else None

    def enqueue_job(self, worker_id, job: domain.DistributedJob):
        """

        :param worker_id:
        :param job:
        :raises WriteFailError: if the job id is in use

        """
        status = enums.Status.PROCESSING.value if worker_id else enums.Status.SCHEDULED.value

        try:
            with self.transaction() as cur:
                cur.execute(
                    (
                        f"INSERT INTO {self.table_name} ("
                        "job_id, "
                        "queue_name, "
                        "job_name, "
                        "group_key, "
                        "job_context, "
                        "run_after, "
                        "worker_id, "
                        "status, "
                        "retry_attempts) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, 0);"
                    ),
                    (
                        job.job_id,
                        job.queue_name,
                        job.job_name,
                        job.group_key,
                        Json(job.job_context),
                        utils.to_utc(job.run_after),
                        worker_id,
                        status,
                    )
                )
        except psycopg2.IntegrityError:
            raise exc.WriteFailError(f"job exists already: {job.job_id}")

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
        if limit <= 0:
            return []

        with self.transaction() as cur:
            cur.execute(
                (
                    "WITH picked AS ("
                    f"  SELECT job_id FROM {self.table_name} WHERE "
                    "    (worker_id IS NULL AND status=%s "
                    "      AND (run_after IS NULL OR run_after <= NOW())) "
                    "    OR (status=%s AND updated_at <= NOW() - make_interval(secs => %s)) "
                    "  ORDER BY created_at "
                    "  LIMIT %s "
                    "  FOR UPDATE SKIP LOCKED"
                    ") "
                    f"UPDATE {self.table_name} AS j "
                    "SET worker_id=%s, status=%s, updated_at=NOW() "
                    "FROM picked WHERE j.job_id = picked.job_id "
                    "RETURNING j.*;"
                ),
                (
                    enums.Status.SCHEDULED.value,
                    enums.Status.PROCESSING.value,
                    stale_after_seconds,
                    limit,
                    worker_id,
                    enums.Status.PROCESSING.value,
                )
            )
            rows = cur.fetchall()

        return [self._decode(r) for r in rows]

    def refresh_ownership(self, worker_id: str, job_ids: list):
        """

        :param worker_id:
        :param job_ids:

        """
        if not job_ids:
            return

        with self.transaction() as cur:
            cur.execute(
                (
                    f"UPDATE {self.table_name} SET updated_at=NOW() "
                    "WHERE worker_id=%s AND job_id = ANY(%s::uuid[]);"
                ),
                (worker_id, list(job_ids))
            )

    def delete_job(self, worker_id, job_id: str):
        """

        :param worker_id:
        :param job_id:

        """
        if worker_id is None:
            sql, values = (
                f"DELETE FROM {self.table_name} WHERE job_id=%s AND worker_id IS NULL;",
                (job_id,)
            )
        else:
            sql, values = (
                f"DELETE FROM {self.table_name} WHERE job_id=%s AND worker_id=%s;",
                (job_id, worker_id)
            )

        try:
            with self.transaction() as cur:
                cur.execute(sql, values)
        except psycopg2.DataError:
            logger.warning(f"ignoring delete of invalid job id: job_id:{job_id}")

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
        with self.transaction() as cur:
            cur.execute(
                (
                    f"UPDATE {self.table_name} SET "
                    "worker_id=NULL, "
                    "status=%s, "
                    "run_after=NOW() + make_interval(secs => %s), "
                    "retry_attempts=%s, "
                    "latest_error=COALESCE(%s, latest_error), "
                    "updated_at=NOW() "
                    "WHERE job_id=%s AND worker_id=%s AND status=%s;"
                ),
                (
                    enums.Status.SCHEDULED.value,
                    offset_seconds,
                    attempt,
                    Json(reason) if reason is not None else None,
                    job_id,
                    worker_id,
                    enums.Status.PROCESSING.value,
                )
            )

    def error_owned_job(self, worker_id: str, job_id: str, reason: dict):
        """

        :param worker_id:
        :param job_id:
        :param reason:

        """
        with self.transaction() as cur:
            cur.execute(
                (
                    f"UPDATE {self.table_name} SET "
                    "worker_id=NULL, "
                    "status=%s, "
                    "run_after=NULL, "
                    "latest_error=%s, "
                    "updated_at=NOW() "
                    "WHERE job_id=%s AND worker_id=%s AND status=%s;"
                ),
                (
                    enums.Status.ERRORED.value,
                    Json(reason),
                    job_id,
                    worker_id,
                    enums.Status.PROCESSING.value,
                )
            )

    def retry_errored_job(self, job_id: str):
        """

        :param job_id:

        """
        with self.transaction() as cur:
            cur.execute(
                (
                    f"UPDATE {self.table_name} SET "
                    "status=%s, "
                    "retry_attempts=0, "
                    "latest_error=NULL, "
                    "run_after=NULL, "
                    "updated_at=NOW() "
                    "WHERE job_id=%s AND status=%s;"
                ),
                (enums.Status.SCHEDULED.value, job_id, enums.Status.ERRORED.value)
            )
