import os
import sys

from copy import deepcopy

import configparser


_DEFAULT_CONFIG_ENV = 'DRUDGE_CONFIG'
_DEFAULT_CONFIG_NAME = 'drudge.ini'
_DEFAULT_CONFIG_DIR = 'drudge'

_default_config = {
    'database': {
        # one of postgres, mongo, memory (see enums.Driver)
        'driver': 'postgres',
        'host': 'localhost',
        # port defaults per driver, postgres 5432 & mongo 27017
        'user': 'postgres',
        'password': '',
        'name': 'drudge',
        'table_prefix': '',
    },
    'notify': {
        # redis settings for work queued announcements
        'enabled': 'false',
        'host': 'localhost',
        'port': 6379,
    },
    'backend': {
        'claim_rate': 1.0,
        'max_concurrent': 20,
        'max_retries': 5,
        'backoff_seconds': 5,
        'stale_after_seconds': 30,
        'heartbeat_seconds': 10,
        # seconds shutdown waits for running jobs, 0 waits for as long as they take
        'shutdown_timeout': 0,
    },
    'scheduler': {
        'default_queue': 'general',
    },
}


def read_default_config() -> dict:
    """We read the first one of

        ${DRUDGE_CONFIG}
        drudge.ini
        ~/.config/drudge/drudge.ini
        ~/.drudge/drudge.ini
        /etc/drudge/drudge.ini

    :return: dict

    """
    for p in [
        os.getenv(_DEFAULT_CONFIG_ENV),
        _DEFAULT_CONFIG_NAME,
        os.path.join("~/.config", _DEFAULT_CONFIG_DIR, _DEFAULT_CONFIG_NAME),
        os.path.join(f"~/.{_DEFAULT_CONFIG_DIR}", _DEFAULT_CONFIG_NAME),
        os.path.join("/etc", _DEFAULT_CONFIG_DIR, _DEFAULT_CONFIG_NAME),
    ]:
        if not p:
            continue

        p = os.path.expanduser(p)
        if os.path.isfile(p):
            try:
                return read_config_file(p)
            except Exception as e:
                print(f"failed to read {p}: {e}", file=sys.stderr)

    # we didn't find anything (or couldn't read), so we'll fallback on the default setup
    return deepcopy(_default_config)


def read_config_file(configpath: str) -> dict:
    """Read in config file & return as dict.

    Sections & options missing from the file are filled in from the defaults.

    :return: dict

    """
    config = configparser.ConfigParser()
    config.read(configpath)

    data = deepcopy(_default_config)
    for section in config.sections():
        data.setdefault(section.lower(), {})
        for opt in config.options(section):
            data[section.lower()][opt.lower()] = config.get(section, opt)
    return data


def as_bool(value) -> bool:
    """Config values read from file are strings, this turns them into a bool.

    :param value:
    :return: bool

    """
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "y", "on")
