"""
Interactive duplicate resolution.

The prompt must run on the interactive (main) thread. Sorts triggered from
worker threads hand a request over and block until it is answered.
"""

import logging
import queue
import threading
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .models import DuplicateResolution

logger = logging.getLogger(__name__)

AskFunction = Callable[[str, Path], DuplicateResolution]

_CHOICES = {
    "r": DuplicateResolution.REPLACE,
    "replace": DuplicateResolution.REPLACE,
    "n": DuplicateResolution.RENAME,
    "rename": DuplicateResolution.RENAME,
    "s": DuplicateResolution.SKIP,
    "skip": DuplicateResolution.SKIP,
    "": DuplicateResolution.SKIP,
}


def console_ask(filename: str, destination: Path) -> DuplicateResolution:
    """Asks on the terminal. Anything unrecognised counts as skip."""
    print(f"\nDuplicate File: '{filename}' already exists in '{destination.parent.name}'.")
    try:
        response = input("[r]eplace, re[n]ame or [s]kip? ").strip().lower()
    except EOFError:
        return DuplicateResolution.SKIP
    return _CHOICES.get(response, DuplicateResolution.SKIP)


@dataclass
class DuplicatePromptRequest:
    filename: str
    destination: Path
    future: Future = field(default_factory=Future)


class InteractivePrompter:
    """
    Marshals duplicate prompts onto the interactive thread.

    Callable with ``(filename, destination)``. On the interactive thread the
    question is asked directly; elsewhere a request is queued and the caller
    blocks until ``process_pending`` answers it or ``timeout`` expires. A
    timed-out prompt resolves to SKIP so nothing on disk changes.
    """

    def __init__(
        self,
        ask: AskFunction = console_ask,
        timeout: Optional[float] = None,
        interactive_thread: Optional[threading.Thread] = None,
    ):
        self._ask = ask
        self.timeout = timeout
        self._interactive_thread = interactive_thread or threading.main_thread()
        self._requests: "queue.Queue[DuplicatePromptRequest]" = queue.Queue()

    def __call__(self, filename: str, destination: Path) -> DuplicateResolution:
        if threading.current_thread() is self._interactive_thread:
            return self._ask(filename, destination)

        request = DuplicatePromptRequest(filename, Path(destination))
        self._requests.put(request)
        try:
            return request.future.result(timeout=self.timeout)
        except FutureTimeoutError:
            if not request.future.cancel():
                # Already being answered on the interactive thread
                return request.future.result()
            logger.warning(f"No answer for duplicate '{filename}' after {self.timeout}s - skipping")
            return DuplicateResolution.SKIP

    def process_pending(self, block: bool = False, timeout: Optional[float] = None) -> int:
        """Answer queued prompts on the calling (interactive) thread."""
        handled = 0
        while True:
            try:
                request = self._requests.get(block=block and handled == 0, timeout=timeout)
            except queue.Empty:
                return handled

            # Cancelled requests already timed out on the caller's side
            if not request.future.set_running_or_notify_cancel():
                continue

            try:
                request.future.set_result(self._ask(request.filename, request.destination))
            except Exception as e:
                logger.error(f"Duplicate prompt failed for '{request.filename}': {e}")
                request.future.set_result(DuplicateResolution.SKIP)
            handled += 1

    @property
    def pending_count(self) -> int:
        """Requests waiting for an answer."""
        return self._requests.qsize()
