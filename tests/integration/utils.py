import time

import docker
import pymongo
import redis
import psycopg2

from docker import errors

from drudge.accessor.postgres_impl import PostgresAccessor


_DEFAULT_URL = "unix:///var/run/docker.sock"
_CONNECT_ATTEMPTS = 10


def _wait_for(connect):
    """Call connect() until it stops raising, containers take a while to accept connections.

    :param connect: no arg callable
    :raises: whatever connect() last raised, if it never succeeds

    """
    err = None
    for i in range(0, _CONNECT_ATTEMPTS):
        try:
            return connect()
        except Exception as e:
            err = e
            time.sleep(2)
    raise err


class _Container:

    def __init__(self, container):
        self._container = container

    def stop(self):
        """Stop the container, it's started with auto remove so this also removes it.

        """
        try:
            self._container.stop(timeout=3)
        except errors.APIError:
            pass


class Client:
    """Starts throwaway store containers, each published on its usual port on localhost.

    """

    _postgres = 'docker.io/postgres:16'
    _redis = 'docker.io/redis:7'
    _mongo = 'docker.io/mongo:7'

    def __init__(self, url=_DEFAULT_URL):
        self._client = docker.DockerClient(base_url=url)

    def postgres_container(self, table_prefix="") -> _Container:
        """Postgres with our schema applied.

        :param table_prefix:
        :return: _Container

        """
        pg = self._start(
            self._postgres,
            lambda: psycopg2.connect(
                host="localhost", user="postgres", password="drudge", database="drudge",
            ).close(),
            ports={5432: 5432},
            environment={"POSTGRES_PASSWORD": "drudge", "POSTGRES_DB": "drudge"},
        )

        try:
            acc = PostgresAccessor(
                host="localhost", password="drudge", table_prefix=table_prefix,
            )
            acc.create_schema()
            acc.close()
        except Exception:
            pg.stop()
            raise

        return pg

    def redis_container(self) -> _Container:
        return self._start(
            self._redis,
            lambda: redis.Redis(host="localhost").ping(),
            ports={6379: 6379},
        )

    def mongo_container(self) -> _Container:
        return self._start(
            self._mongo,
            lambda: pymongo.MongoClient(
                host="localhost", serverSelectionTimeoutMS=2000
            ).admin.command("ping"),
            ports={27017: 27017},
        )

    def _start(self, image, ready, **kwargs) -> _Container:
        """Run a detached, auto removed container & wait until ready() passes.

        :param image:
        :param ready: no arg callable, raises until the container is usable
        :param kwargs: passed to docker's containers.run
        :return: _Container

        """
        container = _Container(
            self._client.containers.run(image, detach=True, auto_remove=True, **kwargs)
        )

        try:
            _wait_for(ready)
        except Exception:
            container.stop()
            raise

        return container
