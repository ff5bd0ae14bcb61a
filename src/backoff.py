import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type

import tenacity

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Backoff:
    """Bounded exponential retry schedule.

    The defaults match the schedule kubeadm uses while waiting for static pods
    to be mirrored into the API server: 30 attempts, one second apart, with up
    to 10% jitter.

    Attributes:
        steps: Maximum number of attempts, including the first one.
        duration: Seconds to wait after the first failed attempt.
        factor: Multiplier applied to the wait after every further attempt.
        jitter: Fraction of ``duration`` added at random to every wait.
        cap: Upper bound of a single wait, in seconds.
    """

    steps: int = 30
    duration: float = 1.0
    factor: float = 1.0
    jitter: float = 0.1
    cap: Optional[float] = None

    def __post_init__(self):
        if self.steps < 1:
            raise ValueError(f"backoff needs at least one step, got {self.steps}")
        if self.duration < 0 or self.factor <= 0 or self.jitter < 0:
            raise ValueError(f"invalid backoff {self}")

    def wait(self) -> tenacity.wait.wait_base:
        kwargs = {"multiplier": self.duration, "exp_base": self.factor}
        if self.cap is not None:
            kwargs["max"] = self.cap
        wait = tenacity.wait_exponential(**kwargs)
        if self.jitter:
            wait = wait + tenacity.wait_random(0, self.duration * self.jitter)
        return wait

    def retrying(
        self,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        sleep: Callable[[float], None] = time.sleep,
        cancel: Optional[threading.Event] = None,
    ) -> tenacity.Retrying:
        """Build a retry loop following this schedule.

        Args:
            retry_on: exception types that trigger another attempt. Anything
                else propagates immediately.
            sleep: called with the number of seconds to wait between attempts.
            cancel: when set, no further attempt is made.

        Returns:
            tenacity.Retrying: re-raises the last exception once exhausted.
        """
        stop = tenacity.stop_after_attempt(self.steps)
        if cancel is not None:
            stop = stop | tenacity.stop_when_event_set(cancel)
        return tenacity.Retrying(
            retry=tenacity.retry_if_exception_type(retry_on),
            stop=stop,
            wait=self.wait(),
            sleep=sleep,
            reraise=True,
            before_sleep=tenacity.before_sleep_log(log, logging.WARNING),
        )
