# conftest.py
from __future__ import annotations

import os
import uuid

import pytest
from prometheus_client import CollectorRegistry

from leasekit.core.config import LockConfig
from leasekit.core.log import bind_context, configure_from_env, enable_stdout_logging, get_logger, log_context
from leasekit.core.time import ManualClock
from leasekit.lock import LockManager
from leasekit.observability.metrics import LockMetrics
from tests.helpers import InMemLeaseStore

TABLE = "test.locks"


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without external services")
    config.addinivalue_line("markers", "protocol: lock/unlock protocol behaviour against an atomic store")
    config.addinivalue_line("markers", "integration: needs a real DynamoDB table (LEASEKIT_DYNAMODB_TABLE)")


def pytest_addoption(parser):
    parser.addoption(
        "--log-json",
        action="store_true",
        default=False,
        help="Emit leasekit logs in JSON format during tests",
    )


@pytest.fixture(scope="session", autouse=True)
def _configure_leasekit_logging(request):
    configure_from_env()
    prefer_json = request.config.getoption("--log-json")
    if os.getenv("LEASEKIT_LOG_STDOUT", "").lower() not in ("1", "true", "yes", "on"):
        enable_stdout_logging(level="DEBUG", json_output=prefer_json, pretty=not prefer_json)
    bind_context(role="pytest")


@pytest.fixture(scope="session")
def session_run_id():
    return uuid.uuid4().hex[:8]


@pytest.fixture(autouse=True)
def _test_log_context(request, session_run_id):
    log = get_logger("test")
    with log_context(test=request.node.name, test_run=session_run_id):
        log.debug("pytest.test.start", event="pytest.test.start")
        yield


@pytest.fixture
def store():
    return InMemLeaseStore()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    """Metrics on a private registry so counts start at zero in every test."""
    return LockMetrics.create(registry)


@pytest.fixture
def make_manager(store, clock, metrics):
    """
    Build LockManagers that share one store. Each node may get its own clock
    to model skew; by default all nodes share the test clock.
    """

    def _make(node_id: str, *, node_clock=None, **cfg) -> LockManager:
        config = LockConfig(table=TABLE, node_id=node_id, **cfg)
        return LockManager(store, config, clock=node_clock or clock, metrics=metrics)

    return _make
