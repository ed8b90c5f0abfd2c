"""Announcements over redis pub/sub.

Distributed workers poll for work every so often. Anyone submitting work can also shout about
it on a redis channel, so that idle workers listening in go & look straight away rather than
on their next tick. Announcements are only a nudge; a lost message just means the work is
picked up on the next regular poll.

"""
import json
import threading
import time
import uuid

from collections import namedtuple

import redis

from drudge import config as drudge_config
from drudge import utils


logger = utils.logger()


MSG_ANNOUNCE = "announcement"  # general events chan
EVENT_WORK_QUEUED = "work-queued"  # work has been queued up
_MSG_ANNOUNCE_ARGS = ["event"]
_MSG_ANNOUNCE_OPTIONAL_ARGS = ["queue"]

_MSG_KEY_ID = "id"
_MSG_KEY_TIME = "time"
_MSG_KEY_TYPE = "type"
_MSG_KEY_DATA = "data"
_MSG_REQUIRED_KEYS = [_MSG_KEY_ID, _MSG_KEY_TYPE, _MSG_KEY_TIME, _MSG_KEY_DATA]

# what we decode messages to after receiving
_Message = namedtuple("message", [_MSG_KEY_ID, _MSG_KEY_TYPE, _MSG_KEY_TIME, _MSG_KEY_DATA])


class UnknownMessage(Exception):
    """The given message type is unknown: unsure what to do"""
    pass


class MalformedMessage(Exception):
    """The given message is malformed"""
    pass


class DuplicateMessage(Exception):
    """Message has been seen before
    """
    pass


def encode_message(type_: str, **kwargs) -> str:
    """Encode a nicely formatted JSON message as a string.

    :param type_:
    :param kwargs:
    :return: str

    """
    return json.dumps({
        _MSG_KEY_ID: str(uuid.uuid4()),
        _MSG_KEY_TYPE: type_,
        _MSG_KEY_TIME: time.time(),
        _MSG_KEY_DATA: _message_data(type_, **kwargs),
    })


def _message_data(type_: str, **kwargs) -> dict:
    """For a given message type and inputs, construct a valid message dict

    :param type_:
    :param kwargs:
    :return: dict
    :raises UnknownMessage: unknown message type
    :raises MalformedMessage: invalid or missing message args

    """
    if type_ != MSG_ANNOUNCE:
        raise UnknownMessage(type_)

    data = {}

    for k in _MSG_ANNOUNCE_ARGS:
        if k not in kwargs:
            raise MalformedMessage(f"message type {type_} missing key {k}")

        data[k] = kwargs[k]

    for k in _MSG_ANNOUNCE_OPTIONAL_ARGS:
        if kwargs.get(k) is not None:
            data[k] = kwargs[k]

    return data


def decode_message(message) -> _Message:
    """Decode message handles both of
     - a redis message dict returned by "get_message()" on a pubsub
     - a raw encoded message string as written by "encode_message()"
    And returns a valid message as intended by "encode_message()" .. or raises trying ..

    :param message: message dict, string or bytes
    :return: namedtuple
    :raises UnknownMessage: unknown message type
    :raises MalformedMessage:

    """
    if isinstance(message, bytes):
        message = str(message, encoding="utf8")

    if isinstance(message, str):
        try:
            msg = json.loads(message)
        except ValueError:
            raise MalformedMessage(f"message is not valid json: {message}")
    elif isinstance(message, dict):
        msg = message
    else:
        raise MalformedMessage(f"unsure how to parse message, given {message}")

    if not isinstance(msg, dict):
        raise MalformedMessage(f"message is not an object: {msg}")

    if isinstance(msg.get("data"), int):
        # occurs when redis push subscription notifications on a chan
        raise MalformedMessage(f"message doesn't include drudge data")

    if any(["pattern" in msg, "channel" in msg]):
        # redis sends messages like
        # {'type': 'message', 'pattern': None, 'channel': b'test', 'data': b'hi!'}
        # Where the 'data' bit is our set message
        return decode_message(msg.get("data", {}))

    for required_key in _MSG_REQUIRED_KEYS:
        if required_key not in msg:
            raise MalformedMessage(f"message requires all of {_MSG_REQUIRED_KEYS} got {msg}")

    msg_type = msg.get(_MSG_KEY_TYPE)

    return _Message(
        msg.get(_MSG_KEY_ID),
        msg_type,
        msg.get(_MSG_KEY_TIME),
        _message_data(
            msg_type,
            **msg.get(_MSG_KEY_DATA, {})
        )
    )


class MessageBuffer:
    """Holds a fixed number of messages around so we don't repeat things (much).
    Not perfect, but it's something.

    """

    def __init__(self, size=100):
        self._size = size
        self._buffer = [None] * size  # fixed size list of message IDs
        self._count = 0
        self._messages = {}  # map message Id -> message

    def _incr_count(self):
        """Increment count by 1, returning to 0 iff count >= buffer size

        :return: next count

        """
        self._count += 1
        if self._count >= self._size:
            self._count = 0
        return self._count

    def decode_message(self, message) -> _Message:
        """Decode the given message.

        Nb. This can only be called by one thread at a time.

        :param message:
        :return: namedtuple
        :raises UnknownMessage: unknown message type
        :raises MalformedMessage:
        :raises DuplicateMessage: if message has appeared in the last 'size' messages

        """
        msg = decode_message(message)

        if msg.id in self._messages:
            raise DuplicateMessage(msg.id)

        slot = self._incr_count()

        old_msg_id = self._buffer[slot]
        if old_msg_id:
            self._messages.pop(old_msg_id, None)

        self._buffer[slot] = msg.id
        self._messages[msg.id] = msg

        return msg


class RedisNotifier:
    """Publishes & listens for work queued announcements on a redis channel.

    """

    CHANNEL = "drudge:announce"

    _POLL_TIMEOUT = 1.0  # seconds to wait for a message before checking if we should exit

    def __init__(self, host: str="redis", port: int=6379, channel: str=CHANNEL):
        self._channel = channel
        self._conn = redis.Redis(host=host, port=port)

    @classmethod
    def from_config(cls, config: dict):
        """Build a notifier from the [notify] section of a config dict, or return None if
        notifications are not enabled.

        :param config:
        :return: RedisNotifier or None

        """
        conf = config.get("notify", {})
        if not drudge_config.as_bool(conf.get("enabled", False)):
            return None

        return cls(host=conf.get("host", "localhost"), port=int(conf.get("port", 6379)))

    def announce(self, queue: str=None):
        """Tell anyone listening that work has been queued.

        :param queue: name of the queue the work is on

        """
        self._conn.publish(
            self._channel,
            encode_message(MSG_ANNOUNCE, event=EVENT_WORK_QUEUED, queue=queue),
        )

    def listen(self, callback, stop_event: threading.Event):
        """Call callback() whenever work is announced, until stop_event is set.

        Nb. this blocks; it's intended to be the target of a thread.

        :param callback: no arg callable
        :param stop_event:

        """
        pubsub = self._conn.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(self._channel)

        # allows us to ignore duplicate message delivered within some time frame
        buffer = MessageBuffer()

        try:
            while not stop_event.is_set():
                received = pubsub.get_message(timeout=self._POLL_TIMEOUT)
                if not received:
                    continue

                try:
                    msg = buffer.decode_message(received)
                except (DuplicateMessage, MalformedMessage, UnknownMessage) as e:
                    logger.warning(f"message dropped: message:{received} error:{e}")
                    continue

                if msg.data.get("event") == EVENT_WORK_QUEUED:
                    callback()
        finally:
            pubsub.close()
