"""
Bounded retry and polling helpers.

Both helpers use a fixed delay between attempts. Provider-side operations
are expected to finish within a known upper bound, so there is no backoff.
"""
import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Tuple, Type

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    delay: float = 2.0

    @property
    def budget(self) -> float:
        """Upper bound on time spent sleeping, in seconds."""
        return max(self.max_attempts - 1, 0) * self.delay


def retry_call(
    fn: Callable[[], Any],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    description: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """
    Call fn until it succeeds or the policy runs out of attempts.

    Returns:
        Whatever fn returned on the first successful attempt.

    Raises:
        The exception from the last attempt.
    """
    attempts = max(policy.max_attempts, 1)

    def log_failure(retry_state):
        logger.warning(
            f"{description} failed (attempt {retry_state.attempt_number}/{attempts}): "
            f"{retry_state.outcome.exception()}"
        )

    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(policy.delay),
        retry=retry_if_exception_type(retry_on),
        after=log_failure,
        reraise=True,
        sleep=sleep,
    )
    return retrying(fn)


def wait_for_state(
    poll_fn: Callable[[], Any],
    predicate: Callable[[Any], bool],
    policy: RetryPolicy,
    tolerate: Tuple[Type[BaseException], ...] = (),
    description: str = "resource",
    sleep: Callable[[float], None] = time.sleep,
) -> Tuple[bool, Any]:
    """
    Poll until predicate(observed) holds, at most policy.max_attempts times.

    Errors listed in `tolerate` count as an attempt with nothing observed.
    Reaching the bound is not an error.

    Returns:
        Tuple of (reached, last_observed). last_observed is None when the
        final poll raised a tolerated error.
    """
    attempts = max(policy.max_attempts, 1)
    observed = None

    for attempt in range(1, attempts + 1):
        try:
            observed = poll_fn()
        except tolerate as e:
            observed = None
            logger.warning(f"Polling {description} failed (attempt {attempt}/{attempts}): {e}")
        else:
            if predicate(observed):
                logger.info(f"{description} converged after {attempt} poll(s)")
                return True, observed

        if attempt < attempts:
            sleep(policy.delay)

    logger.warning(f"{description} did not converge after {attempts} poll(s)")
    return False, observed
