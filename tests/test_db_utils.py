import pytest
from sqlalchemy.exc import OperationalError

import db_utils
from db_utils import retry_with_backoff


def _operational_error():
    return OperationalError('SELECT 1', {}, Exception('database is starting up'))


@pytest.fixture
def sleeps(monkeypatch):
    calls = []
    monkeypatch.setattr(db_utils.time, 'sleep', calls.append)
    return calls


def test_retries_until_success(sleeps):
    attempts = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise _operational_error()
        return 'ok'

    assert retry_with_backoff(flaky, attempts=3, base_delay=0.1) == 'ok'
    assert len(attempts) == 3
    assert sleeps == [0.1, 0.2]


def test_reraises_after_last_attempt(sleeps):
    def broken():
        raise _operational_error()

    with pytest.raises(OperationalError):
        retry_with_backoff(broken, attempts=2)
    assert len(sleeps) == 1


def test_other_errors_are_not_retried(sleeps):
    def failing():
        raise KeyError('boom')

    with pytest.raises(KeyError):
        retry_with_backoff(failing)
    assert sleeps == []


def test_total_delay_is_capped(sleeps):
    def broken():
        raise _operational_error()

    with pytest.raises(OperationalError):
        retry_with_backoff(broken, attempts=10, base_delay=1.0, max_total_delay=1.5)
    assert sum(sleeps) == pytest.approx(1.5)
