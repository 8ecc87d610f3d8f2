from datetime import timedelta
from unittest import mock

import pytest

from espresso_reader.retry import call_with_retry_policy


class FlakyCall:
    def __init__(self, failures):
        self.failures = failures
        self.calls = []

    def __call__(self, arg):
        self.calls.append(arg)
        if len(self.calls) <= self.failures:
            raise RuntimeError("An error")
        return arg


def test_retry_succeeds_after_one_failure():
    fn = FlakyCall(failures=1)
    result = call_with_retry_policy(fn, 0, 3, 0.001, "TEST")
    assert result == 0
    assert len(fn.calls) == 2


def test_retry_gives_up_after_max_retries():
    fn = FlakyCall(failures=10)
    with pytest.raises(RuntimeError, match="An error"):
        call_with_retry_policy(fn, 0, 3, 0.001, "TEST")
    assert len(fn.calls) == 4


def test_zero_retries_calls_once():
    fn = FlakyCall(failures=10)
    with pytest.raises(RuntimeError):
        call_with_retry_policy(fn, 7, 0, 0.001, "TEST")
    assert fn.calls == [7]


def test_arguments_are_passed_through():
    fn = FlakyCall(failures=0)
    assert call_with_retry_policy(fn, "payload", 3, 0.001, "TEST") == "payload"
    assert fn.calls == ["payload"]


@mock.patch("espresso_reader.retry.time.sleep")
def test_sleeps_between_attempts_only(sleep):
    fn = FlakyCall(failures=2)
    result = call_with_retry_policy(
        fn, "done", 5, timedelta(milliseconds=250), "TEST"
    )
    assert result == "done"
    assert fn.calls == ["done", "done", "done"]
    assert sleep.call_args_list == [mock.call(0.25), mock.call(0.25)]