# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

import time
from typing import Callable, TypeVar

from ..errors import RetryError

T = TypeVar("T")


def call_with_retry(
    fn: Callable[[], T],
    *,
    retries: int,
    delay: float,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    on_retry: Callable[[int, BaseException], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call fn up to `retries` times (at least once).

    Only exceptions in retry_on are retried; anything else propagates at once.
    on_retry(attempt, exc) is called after every failed attempt that is
    going to be retried.
    """
    attempts = max(1, retries)
    last_exc = None
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as exc:
            last_exc = exc
            if attempt == attempts:
                break
            if on_retry:
                on_retry(attempt, exc)
            sleep(delay)
    raise RetryError(f"{getattr(fn, '__name__', 'call')} failed after {attempts} attempt(s): {last_exc}") from last_exc
