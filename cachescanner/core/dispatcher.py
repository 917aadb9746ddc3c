"""Bounded, rate-limited request dispatcher."""

import threading
from concurrent.futures import ThreadPoolExecutor, wait
from itertools import groupby
from typing import List, Optional, Union

from cachescanner.core.errors import ScanCancelled, TransportError
from cachescanner.core.models import ProbeRequestSpec, ResponseObservation
from cachescanner.core.ratelimit import TokenBucket

Entry = Union[ResponseObservation, TransportError]


class Dispatcher:
    """
    Fans request batches out over a fixed pool of ``threads`` workers.

    Usage:
        dispatcher = Dispatcher(transport, threads=10, rate_limiter=TokenBucket(20))
        entries = dispatcher.execute_batch(specs)

    The returned list lines up with the input: a spec with ``repeat=n`` yields
    n consecutive entries, and a request that failed for good is represented by
    its TransportError rather than failing the whole batch.
    """

    def __init__(self, transport, threads: int = 10,
                 rate_limiter: Optional[TokenBucket] = None,
                 cancel_event: Optional[threading.Event] = None, logger=None):
        self.transport = transport
        self.threads = threads
        self.rate_limiter = rate_limiter or TokenBucket(None)
        self.cancel_event = cancel_event or threading.Event()
        self.logger = logger
        self._pool = ThreadPoolExecutor(max_workers=threads, thread_name_prefix="dispatch")
        self._count_lock = threading.Lock()
        self._requests_sent = 0

    @property
    def requests_sent(self) -> int:
        with self._count_lock:
            return self._requests_sent

    def shutdown(self) -> None:
        self._pool.shutdown(wait=True)

    def _run_spec(self, spec: ProbeRequestSpec) -> List[Entry]:
        # repeats of one spec stay on this worker, strictly in order
        out: List[Entry] = []
        for _ in range(spec.repeat):
            self.rate_limiter.acquire()
            with self._count_lock:
                self._requests_sent += 1
            try:
                out.append(self.transport.send(spec))
            except TransportError as exc:
                if self.logger and self.logger.verbose >= 2:
                    self.logger.debug(f"request failed: {exc}")
                out.append(exc)
        return out

    def execute_batch(self, specs: List[ProbeRequestSpec]) -> List[Entry]:
        """Run every spec concurrently and wait until each one has settled."""
        if self.cancel_event.is_set():
            raise ScanCancelled()
        if not specs:
            return []
        futures = [self._pool.submit(self._run_spec, spec) for spec in specs]
        wait(futures)
        entries: List[Entry] = []
        for future in futures:
            entries.extend(future.result())
        return entries

    def execute_sequence(self, specs: List[ProbeRequestSpec]) -> List[Entry]:
        """
        Submit specs grouped by ``stage`` as ordered batches: stage N+1 is not
        submitted before every request of stage N has an observation or error.
        A stage holding a timing-sensitive spec runs one spec at a time.
        Entries come back in stage order.
        """
        entries: List[Entry] = []
        ordered = sorted(specs, key=lambda s: s.stage)
        for _, group in groupby(ordered, key=lambda s: s.stage):
            batch = list(group)
            if any(s.timing_sensitive for s in batch):
                for spec in batch:
                    entries.extend(self.execute_batch([spec]))
            else:
                entries.extend(self.execute_batch(batch))
        return entries
