from contextlib import contextmanager
from typing import Any, Iterator, Optional

from occasion_notifier.utils.logging import RunLogger, get_logger


class BestEffortOutcome:
    """Tells the caller whether the guarded block finished or was abandoned."""

    def __init__(self) -> None:
        self.ok = True
        self.error: Optional[BaseException] = None


@contextmanager
def best_effort(
    action: str, log: Optional[RunLogger] = None, **fields: Any
) -> Iterator[BestEffortOutcome]:
    """
    Run a side write whose failure must never abort the surrounding run.

    Any exception raised inside the block is logged at WARNING with ``action``
    and ``fields`` and then dropped; ``outcome.ok`` is False afterwards.

        with best_effort("clear device token", log, contact_key=mobile):
            store.clear_device_token(mobile)
    """
    log = log or get_logger()
    outcome = BestEffortOutcome()
    try:
        yield outcome
    except Exception as e:
        outcome.ok = False
        outcome.error = e
        log.log(
            "WARNING",
            "Best-effort action failed: " + action,
            action=action,
            error=str(e),
            error_type=e.__class__.__name__,
            **fields,
        )
