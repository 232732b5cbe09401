"""
Tests for the shared retry helper.
"""

import pytest

from confluence_engine.shared.utils.retry import call_with_retry, retry_on_exception


class Flaky:
    def __init__(self, failures, exc=ConnectionError):
        self.failures = failures
        self.exc = exc
        self.calls = 0

    def __call__(self, value):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc("transient")
        return value * 2


def test_retries_until_success():
    sleeps = []
    func = Flaky(failures=2)

    result = call_with_retry(func, 21, exceptions=(ConnectionError,), max_retries=3,
                             backoff=1.0, jitter_pct=0.0, sleep=sleeps.append)

    assert result == 42
    assert func.calls == 3
    assert sleeps == [1.0, 2.0]


def test_gives_up_after_max_retries():
    func = Flaky(failures=10)

    with pytest.raises(ConnectionError):
        call_with_retry(func, 1, exceptions=(ConnectionError,), max_retries=2,
                        backoff=0.0, sleep=lambda s: None)

    assert func.calls == 3


def test_other_exceptions_are_not_retried():
    func = Flaky(failures=1, exc=KeyError)

    with pytest.raises(KeyError):
        call_with_retry(func, 1, exceptions=(ConnectionError,), backoff=0.0, sleep=lambda s: None)

    assert func.calls == 1


def test_decorator_form():
    flaky = Flaky(failures=1)

    @retry_on_exception((ConnectionError,), max_retries=1, backoff=0.0)
    def double(value):
        return flaky(value)

    assert double(5) == 10
    assert double.__name__ == 'double'
    assert flaky.calls == 2
