import time

from drudge import domain
from drudge import enums
from drudge.accessor.postgres_impl import PostgresAccessor

from integration import utils
from integration.accessor_contract import AccessorTest


class TestPostgres(AccessorTest):
    """Standard accessor tests, using Postgres
    """

    _PREFIX = "test_"

    @classmethod
    def setup_class(cls):
        # start ourselves a new container w/ our schema applied
        client = utils.Client()
        cls.db_container = client.postgres_container(table_prefix=cls._PREFIX)

        cls.acc = PostgresAccessor(host="localhost", password="drudge", table_prefix=cls._PREFIX)

    @classmethod
    def teardown_class(cls):
        cls.acc.close()
        cls.db_container.stop()
        time.sleep(3)  # wait for db to shutdown

    @classmethod
    def clear_db(cls):
        """Helper func to drop everything in the db.

        """
        with cls.acc.transaction() as cur:
            cur.execute(f"DELETE FROM {cls.acc.table_name};")

    def test_create_schema_is_repeatable(self):
        # arrange
        job_id = self._enqueue()

        # act
        self.acc.create_schema()

        # assert
        assert self.acc.get_job_status(job_id) == enums.Status.SCHEDULED

    def test_invalid_job_id(self):
        # arrange

        # act
        status = self.acc.get_job_status("not-a-uuid")
        job = self.acc.get_job("not-a-uuid")
        self.acc.delete_job(None, "not-a-uuid")

        # assert
        assert status is None
        assert job is None

    def test_claim_oldest_first(self):
        # arrange
        worker = self.acc.register_worker()
        ids = [self._enqueue() for _ in range(3)]

        # act
        result = self.acc.claim_ownership(worker, 1)

        # assert
        assert [j.job_id for j in result] == ids[:1]

    def test_rolls_back_on_error(self):
        # arrange
        job_id = self.acc.generate_job_id()

        # act
        try:
            with self.acc.transaction() as cur:
                cur.execute(
                    (
                        f"INSERT INTO {self.acc.table_name} (job_id, queue_name, job_name, status) "
                        "VALUES (%s, %s, %s, %s);"
                    ),
                    (job_id, "general", "foo", enums.Status.SCHEDULED.value)
                )
                raise RuntimeError("abort")
        except RuntimeError:
            pass

        # assert
        assert self.acc.get_job(job_id) is None

    def test_decodes_row(self):
        # arrange
        job_id = self._enqueue(context={"x": {"y": [1, 2, 3]}})

        # act
        job = self.acc.get_job(job_id)

        # assert
        assert isinstance(job, domain.DistributedJob)
        assert job.job_context == {"x": {"y": [1, 2, 3]}}
        assert job.updated_at.tzinfo is not None
