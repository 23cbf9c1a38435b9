import logging
import time
from typing import Tuple, Type


def with_retries(
    operation_to_retry,
    log: logging.Logger,
    max_attempts=5,
    delay=2,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
):
    """
    A function to retry an operation with exponential backoff on transient errors.

    :param operation_to_retry: The function/operation to retry
    :param log: The logger receiving attempt and failure messages.
    :param max_attempts: Maximum number of retry attempts
    :param delay: Initial delay between retries (exponentially increased)
    :param retry_on: Exception types considered transient.
        Any other exception is raised immediately without a retry.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            log.info("Attempt: %s", attempt)
            return operation_to_retry()
        except retry_on as e:
            log.error(e)
            if attempt == max_attempts:
                raise  # re-raise on final failure
            time.sleep(delay * 2 ** (attempt - 1))
