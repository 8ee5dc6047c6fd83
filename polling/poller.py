"""
Polling - Readiness Poller.

============================================================
RESPONSIBILITY
============================================================
The single retry-until-condition loop used by every wait in
the system: scheduler membership, job health (x3) and the
registry's HTTP health endpoint.

- Invoke the probe, return on the first READY
- Tolerate transient probe errors
- End on a non-recoverable probe error
- Bound every loop by duration (and optionally attempts)
- Check the cancellation event on every iteration

============================================================
"""

import asyncio
import logging
from typing import Optional

from core.clock import ClockFactory, ClockProtocol
from core.exceptions import (
    ClusterException,
    ErrorClassification,
    PipelineCancelledError,
    PollTimeoutError,
    classify_exception,
)
from .models import PollOutcome, PollResult, PollStatus, RetryPolicy
from .probes import Probe


class ReadinessPoller:
    """
    Bounded polling loop over a Probe.

    Example:
        poller = ReadinessPoller(RetryPolicy.fixed(1.0, 120.0))
        result = await poller.poll(CommandProbe(runner, "nomad server members", "alive"))
    """

    def __init__(
        self,
        policy: RetryPolicy,
        clock: Optional[ClockProtocol] = None,
    ):
        """
        Initialize poller.

        Args:
            policy: Retry policy (interval, ceilings, backoff)
            clock: Clock for deadlines and sleeps (default: global clock)
        """
        self.policy = policy
        self._clock = clock
        self._logger = logging.getLogger(__name__)

    @property
    def clock(self) -> ClockProtocol:
        return self._clock or ClockFactory.get_clock()

    async def poll(
        self,
        probe: Probe,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PollResult:
        """
        Poll until ready, timeout, cancellation or fatal error.

        Args:
            probe: Probe to invoke
            cancel_event: Set to stop waiting

        Returns:
            PollResult (never raises for probe errors)
        """
        clock = self.clock
        started = clock.monotonic()
        policy = self.policy
        result = PollResult(
            probe=probe.describe(),
            status=PollStatus.TIMEOUT,
            attempts=0,
            elapsed_seconds=0.0,
        )

        self._logger.info(
            f"Waiting for [{result.probe}] | interval={policy.interval_seconds}s "
            f"| max={policy.max_duration_seconds}s"
        )

        while True:
            if cancel_event is not None and cancel_event.is_set():
                result.status = PollStatus.CANCELLED
                break

            result.attempts += 1
            try:
                outcome = await probe.check()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                classification = classify_exception(e)
                if classification == ErrorClassification.NON_RECOVERABLE:
                    self._logger.error(
                        f"[{result.probe}] fatal probe error after "
                        f"{result.attempts} attempts: {e}"
                    )
                    result.status = PollStatus.FAILED
                    result.error = e
                    break
                self._logger.debug(f"[{result.probe}] tolerated probe error: {e}")
                outcome = PollOutcome.PROBE_ERROR

            result.last_outcome = outcome
            result.outcomes.append(outcome)

            if outcome == PollOutcome.READY:
                result.status = PollStatus.READY
                break

            elapsed = clock.monotonic() - started
            if policy.max_attempts is not None and result.attempts >= policy.max_attempts:
                result.status = PollStatus.TIMEOUT
                break
            remaining = policy.max_duration_seconds - elapsed
            if remaining <= 0:
                result.status = PollStatus.TIMEOUT
                break

            await clock.sleep(min(policy.delay_for(result.attempts), remaining))

        result.elapsed_seconds = clock.monotonic() - started

        if result.status == PollStatus.READY:
            self._logger.info(
                f"[{result.probe}] ready after {result.attempts} attempts "
                f"({result.elapsed_seconds:.1f}s)"
            )
        elif result.status == PollStatus.TIMEOUT:
            self._logger.warning(
                f"[{result.probe}] not ready after {result.attempts} attempts "
                f"({result.elapsed_seconds:.1f}s)"
            )
        elif result.status == PollStatus.CANCELLED:
            self._logger.info(f"[{result.probe}] wait cancelled")

        return result

    async def poll_or_raise(
        self,
        probe: Probe,
        cancel_event: Optional[asyncio.Event] = None,
        timeout_error: type = PollTimeoutError,
        **error_kwargs,
    ) -> PollResult:
        """
        Poll, converting every non-ready ending into an exception.

        Raises:
            PollTimeoutError (or `timeout_error`): On timeout
            PipelineCancelledError: On cancellation
            ClusterException: The probe's fatal error
        """
        result = await self.poll(probe, cancel_event=cancel_event)

        if result.status == PollStatus.READY:
            return result

        if result.status == PollStatus.CANCELLED:
            raise PipelineCancelledError(
                message=f"Cancelled while waiting for {result.probe}",
                context={"attempts": result.attempts},
            )

        if result.status == PollStatus.FAILED:
            error = result.error
            if isinstance(error, ClusterException):
                raise error
            raise ClusterException(
                message=f"{result.probe} failed: {error}",
                cause=error,
                classification=ErrorClassification.NON_RECOVERABLE,
            )

        raise timeout_error(
            message=(
                f"{result.probe} not ready after {result.attempts} attempts "
                f"({result.elapsed_seconds:.1f}s)"
            ),
            probe=result.probe,
            attempts=result.attempts,
            elapsed_seconds=result.elapsed_seconds,
            **error_kwargs,
        )


__all__ = ["ReadinessPoller"]
