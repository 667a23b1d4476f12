"""
Module for bounding the number of concurrently running uploads.
"""
import logging
import threading
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from .exceptions import TicketReleaseError, UploadCancelled

logger = logging.getLogger(__name__)


class AdmissionTicket:
    """Permission to run one upload. Single use: it can be released once."""

    def __init__(self, controller: "AdmissionController", number: int):
        self._controller = controller
        self.number = number
        self._released = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Return this ticket to the controller that issued it."""
        self._controller.release(self)

    def _mark_released(self) -> None:
        with self._lock:
            if self._released:
                raise TicketReleaseError(f"Ticket {self.number} was already released")
            self._released = True

    def __repr__(self) -> str:
        state = "released" if self._released else "held"
        return f"<AdmissionTicket #{self.number} {state}>"


class AdmissionController:
    """Hands out at most ``max_concurrency`` tickets at a time.

    Callers blocked in ``acquire`` are woken when a ticket is released, or
    with ``UploadCancelled`` once the controller is closed.
    """

    def __init__(self, max_concurrency: int):
        """Initialize the admission controller.

        Args:
            max_concurrency: Maximum number of tickets outstanding at once
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be greater than 0")

        self.max_concurrency = max_concurrency
        self._cond = threading.Condition()
        self._outstanding = 0
        self._acquired_total = 0
        self._released_total = 0
        self._closed = False

    @property
    def outstanding(self) -> int:
        with self._cond:
            return self._outstanding

    @property
    def acquired_total(self) -> int:
        with self._cond:
            return self._acquired_total

    @property
    def released_total(self) -> int:
        with self._cond:
            return self._released_total

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def acquire(self, timeout: Optional[float] = None) -> Optional[AdmissionTicket]:
        """Wait for a free slot and take it.

        Args:
            timeout: Seconds to wait at most. None waits until a slot frees.

        Returns:
            AdmissionTicket, or None if the timeout elapsed first

        Raises:
            UploadCancelled: If the controller is closed while waiting
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        with self._cond:
            while True:
                if self._closed:
                    raise UploadCancelled("Admission controller is closed")
                if self._outstanding < self.max_concurrency:
                    break

                if deadline is None:
                    self._cond.wait()
                else:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    self._cond.wait(remaining)

            self._outstanding += 1
            self._acquired_total += 1
            ticket = AdmissionTicket(self, self._acquired_total)

        logger.debug(f"Issued admission ticket #{ticket.number}")
        return ticket

    def release(self, ticket: AdmissionTicket) -> None:
        """Give a ticket back to the pool.

        Args:
            ticket: Ticket obtained from this controller's acquire()

        Raises:
            TicketReleaseError: If the ticket was already released or belongs
                to another controller
        """
        if ticket._controller is not self:
            raise TicketReleaseError(f"Ticket {ticket.number} belongs to another controller")

        ticket._mark_released()
        with self._cond:
            self._outstanding -= 1
            self._released_total += 1
            self._cond.notify_all()

        logger.debug(f"Released admission ticket #{ticket.number}")

    @contextmanager
    def admit(self, timeout: Optional[float] = None) -> Iterator[Optional[AdmissionTicket]]:
        """Scoped acquisition: the ticket is released when the block exits."""
        ticket = self.acquire(timeout)
        try:
            yield ticket
        finally:
            if ticket is not None and not ticket.released:
                self.release(ticket)

    def close(self) -> None:
        """Refuse further admissions and wake every blocked caller."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()
        logger.debug("Admission controller closed")

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no ticket is outstanding.

        Returns:
            True if the pool drained, False if the timeout elapsed first
        """
        with self._cond:
            return self._cond.wait_for(lambda: self._outstanding == 0, timeout)
