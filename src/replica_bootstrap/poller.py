"""
Bounded retry-while-pending polling.

This is the only place the bootstrap waits: every convergence wait goes through
a Poller with a constant step (no exponential backoff).
"""

from __future__ import annotations

import logging
import math
import time

import backoff

DEFAULT_TIMEOUT = 90
DEFAULT_STEP = 5


def attempts_for(timeout, step):
    """Number of evaluations a poll gets: ceil(timeout / step), at least one."""
    if step <= 0:
        return max(1, int(timeout))
    return max(1, math.ceil(timeout / step))


class Poller:
    """
    Evaluate a check every ``step`` seconds until it stops being pending or
    the budget runs out: ceil(timeout / step) evaluations, and never more than
    ``timeout`` seconds of wall time even when evaluations are slow. A poll
    that gives up has always waited at least ``timeout`` seconds.

    :param timeout: total budget in seconds.
    :param step: fixed sleep between attempts.
    :param label: shown in debug logs.
    """

    def __init__(self, timeout=DEFAULT_TIMEOUT, step=DEFAULT_STEP, label="poll"):
        self.timeout = timeout
        self.step = step
        self.label = label

    @property
    def attempts(self):
        return attempts_for(self.timeout, self.step)

    def _log_retry(self, details):
        logger = logging.getLogger(__name__)
        logger.debug("[{}] attempt {}/{} still pending - retrying in {}s".format(
            self.label, details['tries'], self.attempts, self.step))

    def _log_giveup(self, details):
        logger = logging.getLogger(__name__)
        logger.debug("[{}] gave up after {} attempts ({:.1f}s)".format(self.label, details['tries'], details['elapsed']))

    def _run(self, fn, pending):
        decorated = backoff.on_predicate(
            backoff.constant,
            predicate=pending,
            interval=self.step,
            jitter=None,
            max_tries=self.attempts,
            max_time=self.timeout,
            on_backoff=self._log_retry,
            on_giveup=self._log_giveup,
            # the handlers above already report progress
            backoff_log_level=logging.DEBUG,
            giveup_log_level=logging.DEBUG,
        )(fn)
        started = time.monotonic()
        result = decorated()
        if pending(result):
            remaining = self.timeout - (time.monotonic() - started)
            if remaining > 0:
                time.sleep(remaining)
        return result

    def retry_while(self, condition):
        """
        Re-evaluate ``condition`` while it returns True ("still pending").

        :return: True as soon as the condition returns False, False on timeout.
        """
        return not self._run(condition, lambda still_pending: bool(still_pending))

    def until(self, check):
        """
        Re-evaluate ``check`` (returning an Outcome) while it is pending.

        A Fatal outcome stops polling right away and its error is raised.

        :return: the last Outcome, Success or Pending (timed out).
        """
        outcome = self._run(check, lambda o: o.is_pending)
        if outcome.is_fatal:
            raise outcome.error
        return outcome


def retry_while(condition, timeout=DEFAULT_TIMEOUT, step=DEFAULT_STEP):
    """Functional shortcut for Poller(timeout, step).retry_while(condition)."""
    return Poller(timeout, step).retry_while(condition)
