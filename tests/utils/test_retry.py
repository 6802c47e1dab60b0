import pytest

from ispstack.errors import RetryError, TransientExternalError
from ispstack.utils.retry import call_with_retry


def test_returns_first_success():
    calls = []

    def fn():
        calls.append(1)
        if len(calls) < 2:
            raise TransientExternalError("Could not get lock")
        return "ok"

    sleeps = []
    assert call_with_retry(fn, retries=3, delay=5.0, retry_on=(TransientExternalError,), sleep=sleeps.append) == "ok"
    assert len(calls) == 2
    assert sleeps == [5.0]


def test_gives_up_with_cause():
    def fn():
        raise TransientExternalError("Temporary failure resolving")

    seen = []
    with pytest.raises(RetryError) as exc:
        call_with_retry(fn, retries=3, delay=0, retry_on=(TransientExternalError,),
                        on_retry=lambda n, e: seen.append(n), sleep=lambda s: None)
    assert isinstance(exc.value.__cause__, TransientExternalError)
    assert seen == [1, 2]


def test_other_errors_are_not_retried():
    calls = []

    def fn():
        calls.append(1)
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        call_with_retry(fn, retries=3, delay=0, retry_on=(TransientExternalError,), sleep=lambda s: None)
    assert len(calls) == 1


def test_zero_retries_still_calls_once():
    assert call_with_retry(lambda: 7, retries=0, delay=0) == 7
