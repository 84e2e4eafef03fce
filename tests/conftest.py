import json

import pytest

from livestock.storage import InMemoryRecordStore


TSLA_MESSAGE = {
    "symbol": "TSLA",
    "price": 250.00,
    "change": 5.00,
    "changePercent": 2.04,
    "timestamp": "2024-01-01T00:00:00Z",
}


def encode(payload) -> bytes:
    return json.dumps(payload).encode("utf-8")


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


class DummyError:
    def __init__(self, code):
        self._code = code

    def code(self):
        return self._code

    def __str__(self):
        return f"error {self._code}"


class DummyMessage:
    def __init__(self, value, err=None, topic="stocks", partition=0, offset=0):
        self._value = value
        self._err = err
        self._topic = topic
        self._partition = partition
        self._offset = offset

    def value(self):
        return self._value

    def error(self):
        return self._err

    def topic(self):
        return self._topic

    def partition(self):
        return self._partition

    def offset(self):
        return self._offset


class FakeConsumer:
    def __init__(self, messages=(), commit_error=None, seek_error=None):
        self._messages = list(messages)
        self.commit_error = commit_error
        self.seek_error = seek_error
        self.commits = []
        self.seeks = []
        self.subscribed = None
        self.closed = False

    def subscribe(self, topics):
        self.subscribed = topics

    def poll(self, timeout):
        return self._messages.pop(0) if self._messages else None

    def commit(self, message=None, asynchronous=True):
        assert asynchronous is False
        if self.commit_error is not None:
            raise self.commit_error
        self.commits.append(message)

    def seek(self, partition):
        if self.seek_error is not None:
            raise self.seek_error
        self.seeks.append(partition)

    def close(self):
        self.closed = True
