"""Shared fixtures: a scripted in-memory transport, a manual clock and an
in-memory console database."""

from __future__ import annotations

import os
from collections import defaultdict, deque

os.environ.setdefault("FLOW_CONSOLE_DB_URL", "sqlite:///:memory:")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from controlplane import config
from controlplane.api import FlowApiService
from controlplane.resolver import RootIdCache
from controlplane.transport import Transport
from mgmt.database import init_db
from mgmt.mapping import UserProcessGroupMappingService

API = config.FLOW_API_PREFIX
ROOT_PATH = f"{API}/flow/process-groups/root"


class RecordingTransport(Transport):
    """Transport double that records every call and replays scripted replies.

    ``script(method, path, *replies)`` queues replies for a route; a reply is
    returned as-is, raised if it is an exception, or called with the request
    if it is callable. The last reply of a route repeats once the queue
    drains. Unscripted routes return ``{}``; the auth route returns a token.
    """

    def __init__(self):
        self.calls = []
        self._replies = defaultdict(deque)

    def script(self, method, path, *replies):
        self._replies[(method, path)].extend(replies)
        return self

    def request(self, path, method="GET", body=None, params=None):
        self.calls.append({"method": method, "path": path, "body": body, "params": params})
        queue = self._replies.get((method, path))
        if queue:
            reply = queue.popleft() if len(queue) > 1 else queue[0]
        elif path == config.AUTH_PATH:
            reply = {"token": "session-token"}
        else:
            reply = {}
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            return reply(path=path, method=method, body=body, params=params)
        return reply

    def close(self):
        pass

    def paths(self, method=None, include_auth=False):
        return [
            c["path"]
            for c in self.calls
            if (include_auth or c["path"] != config.AUTH_PATH) and (method is None or c["method"] == method)
        ]

    def count(self, path, method=None):
        return sum(1 for c in self.calls if c["path"] == path and (method is None or c["method"] == method))

    def auth_count(self):
        return self.count(config.AUTH_PATH)

    def last(self, path, method=None):
        matching = [c for c in self.calls if c["path"] == path and (method is None or c["method"] == method)]
        return matching[-1]


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def root_reply(root_id: str) -> dict:
    return {"processGroupFlow": {"id": root_id, "flow": {}}}


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def api(transport, clock):
    return FlowApiService(transport=transport, cache=RootIdCache(ttl_seconds=300, clock=clock))


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    init_db(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def mapping_service(session_factory, api):
    return UserProcessGroupMappingService(
        session_factory=session_factory,
        root_id_lookup=api.get_root_process_group_id,
        default_process_group_id="",
        bcrypt_rounds=4,
    )
