"""Periodic scheduling of sampling cycles, one at a time per instance."""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional

from .models import Instance
from .sampler import CycleResult, Sampler

logger = logging.getLogger("mysql-sampler.scheduler")


class Scheduler:
    """
    Polls every instance on a fixed interval.

    Instances run concurrently on a thread pool with one worker per
    instance. An instance whose previous cycle has not finished is skipped
    for that tick.
    """

    def __init__(self, sampler: Sampler, instances: List[Instance], interval: float = 10.0):
        self.sampler = sampler
        self.instances = instances
        self.interval = interval
        self._stop = threading.Event()
        self._locks: Dict[str, threading.Lock] = {i.name: threading.Lock() for i in instances}
        self._executor: Optional[ThreadPoolExecutor] = None

    def _guarded_cycle(self, instance: Instance, lock: threading.Lock) -> CycleResult:
        try:
            return self.sampler.run_cycle(instance)
        finally:
            lock.release()

    def submit(self, executor: ThreadPoolExecutor, instance: Instance) -> Optional[Future]:
        """Start a cycle unless one is already running for ``instance``."""
        lock = self._locks[instance.name]
        if not lock.acquire(blocking=False):
            logger.warning(f"[SCHEDULER] Previous cycle for {instance.config.label} still running - skipping")
            return None
        try:
            future = executor.submit(self._guarded_cycle, instance, lock)
        except RuntimeError:
            lock.release()
            raise
        future.add_done_callback(lambda f: self._log_failure(instance, f))
        return future

    def _log_failure(self, instance: Instance, future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(
                f"[SCHEDULER] Cycle for {instance.config.label} raised: {error}",
                exc_info=(type(error), error, error.__traceback__),
            )

    def run_once(self) -> List[CycleResult]:
        """Run one cycle for every instance in parallel and wait for all of them."""
        results: List[CycleResult] = []
        if not self.instances:
            return results

        logger.info(f"[SCHEDULER] Starting cycle for {len(self.instances)} instance(s) in parallel")
        with ThreadPoolExecutor(max_workers=len(self.instances)) as executor:
            futures = [f for f in (self.submit(executor, i) for i in self.instances) if f is not None]
            for future in as_completed(futures):
                try:
                    results.append(future.result())
                except Exception:
                    # Logged by the done callback.
                    continue
        return results

    def run_forever(self) -> None:
        """Run cycles every ``interval`` seconds until :meth:`stop` is called."""
        if not self.instances:
            logger.warning("[SCHEDULER] No instances configured - nothing to do")
            return

        self._executor = ThreadPoolExecutor(
            max_workers=len(self.instances), thread_name_prefix="mysql-sampler"
        )
        logger.info(f"[SCHEDULER] Polling {len(self.instances)} instance(s) every {self.interval:.1f}s")
        try:
            next_run = time.monotonic()
            while not self._stop.is_set():
                for instance in self.instances:
                    self.submit(self._executor, instance)
                next_run += self.interval
                delay = next_run - time.monotonic()
                if delay < 0:
                    # Fell behind; realign.
                    next_run = time.monotonic()
                    delay = 0
                self._stop.wait(delay)
        finally:
            self._executor.shutdown(wait=True)
            self._executor = None
            self.close()

    def stop(self) -> None:
        self._stop.set()

    def close(self) -> None:
        """Close every instance's connection."""
        for instance in self.instances:
            self.sampler.close(instance)
        logger.info(f"[SCHEDULER] Closed {len(self.instances)} instance(s)")
