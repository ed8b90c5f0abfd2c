"""An accessor is the storage layer behind the distributed backend. It provides exactly the
operations the backend needs to coordinate many workers over one shared store.

See drudge.accessor.base.Base for the contract.

"""

from drudge import enums
from drudge import exceptions as exc
from drudge.accessor.base import Base
from drudge.accessor.memory_impl import MemoryAccessor
from drudge.accessor.mongo_impl import MongoAccessor
from drudge.accessor.postgres_impl import PostgresAccessor


def open_accessor(config: dict) -> Base:
    """Return the accessor named by [database] driver in the given config.

    :param config:
    :return: Base
    :raises InvalidArg: unknown driver

    """
    name = config.get("database", {}).get("driver", enums.Driver.POSTGRES.value)

    try:
        driver = enums.Driver(str(name).lower())
    except ValueError:
        raise exc.InvalidArg(f"unknown database driver: {name}")

    if driver == enums.Driver.POSTGRES:
        return PostgresAccessor.from_config(config)
    if driver == enums.Driver.MONGO:
        return MongoAccessor.from_config(config)
    return MemoryAccessor()


__all__ = [
    "Base",
    "MemoryAccessor",
    "MongoAccessor",
    "PostgresAccessor",
    "open_accessor",
]
