"""
Concurrent sample assembly: event stream -> TrainingSet.

Pipeline:
=========

    event stream ──▶ N worker threads ──▶ bounded result queue ──▶ consumer
                      (resolve + compose)   (backpressure)        (layout check)

1. `concurrency` workers pull events from one shared iterator (serialized by
   a lock, since generators are not thread-safe).
2. Each worker builds the event's vector. A resolution failure is logged at
   DEBUG and the event is dropped; it is neither retried nor fatal.
3. A coordinator thread joins all workers, then closes the result queue.
4. The calling thread drains the queue. The first result fixes the layout;
   any later width mismatch aborts the whole run.

Results arrive in completion order, not event order.

Every blocking wait (iterator lock aside) polls for cancellation so a
cancelled context or an aborted run never leaves a thread stuck on a full or
empty queue.
"""

import logging
import queue
import threading
from typing import Iterable, Iterator, List, Optional

from rec_engine.config import EngineConfig
from rec_engine.context import RunContext
from rec_engine.errors import (
    CapabilityError,
    FeatureResolutionError,
    PipelineCancelledError,
    RecEngineError,
)
from rec_engine.types import Event, LayoutRanges, TrainingSample, TrainingSet

from .composer import SampleVectorBuilder
from .layout import LayoutTracker

logger = logging.getLogger(__name__)

_DONE = object()


class _RunControl:
    """Shared stop flag, first fatal error, and drop counter of one run."""

    def __init__(self):
        self.stop = threading.Event()
        self.error: Optional[BaseException] = None
        self.dropped = 0
        self._lock = threading.Lock()

    def fail(self, error: BaseException) -> None:
        with self._lock:
            if self.error is None:
                self.error = error
        self.stop.set()

    def record_drop(self) -> None:
        with self._lock:
            self.dropped += 1


class _SharedEventIterator:
    """Thread-safe wrapper handing out one event per next() call."""

    def __init__(self, events: Iterable[Event]):
        self._it: Iterator[Event] = iter(events)
        self._lock = threading.Lock()
        self._exhausted = False

    def next(self) -> Event:
        """
        Raises:
            StopIteration: When the stream is exhausted
            CapabilityError: If the stream itself failed
        """
        with self._lock:
            if self._exhausted:
                raise StopIteration
            try:
                return next(self._it)
            except StopIteration:
                self._exhausted = True
                raise
            except Exception as e:
                self._exhausted = True
                raise CapabilityError(f"event stream error: {e}") from e


class SampleAssembler:
    """
    Turns an event stream into a TrainingSet with one consistent layout.

    Example:
        builder = SampleVectorBuilder(Capabilities.from_source(source), state)
        assembler = SampleAssembler(builder)
        training_set = assembler.assemble(ctx, source.generate_samples(ctx))
        X, y = training_set.features(), training_set.labels()
    """

    def __init__(self, builder: SampleVectorBuilder, config: Optional[EngineConfig] = None):
        self.builder = builder
        self.config = config or builder.config
        self.last_dropped = 0

    def assemble(self, ctx: RunContext, events: Iterable[Event]) -> TrainingSet:
        """
        Assemble all resolvable events.

        Raises:
            LayoutMismatchError: If a vector's widths differ from the first one
            CapabilityError: If the event stream fails
            PipelineCancelledError: If ctx is cancelled
        """
        config = self.config
        results: "queue.Queue" = queue.Queue(maxsize=config.result_buffer_size)
        control = _RunControl()
        source = _SharedEventIterator(events)

        workers = [
            threading.Thread(
                target=self._work,
                args=(ctx, source, results, control),
                name=f"sample-assembler-{i}",
                daemon=True,
            )
            for i in range(config.concurrency)
        ]
        for worker in workers:
            worker.start()

        coordinator = threading.Thread(
            target=self._coordinate,
            args=(ctx, workers, results, control),
            name="sample-assembler-coordinator",
            daemon=True,
        )
        coordinator.start()

        training_set = TrainingSet()
        tracker = LayoutTracker(config.behavior_width, config.embedding_dim)
        try:
            while True:
                item = self._next_result(ctx, results, coordinator)
                if item is _DONE:
                    break
                ctx.raise_if_cancelled()
                composed, label = item
                tracker.accept(len(composed.vector), composed.user_width, composed.item_width)
                training_set.samples.append(TrainingSample(vector=composed.vector, label=label))
                if len(training_set) % config.progress_every == 0:
                    logger.info(f"sample size: {len(training_set)}")
        finally:
            control.stop.set()
            coordinator.join()

        if control.error is not None:
            raise control.error
        ctx.raise_if_cancelled()

        self.last_dropped = control.dropped
        training_set.layout = tracker.layout or LayoutRanges()
        logger.info(
            f"Assembled {len(training_set)} samples "
            f"({control.dropped} events dropped), layout={training_set.layout.to_dict()}"
        )
        return training_set

    def _work(
        self,
        ctx: RunContext,
        source: _SharedEventIterator,
        results: "queue.Queue",
        control: _RunControl,
    ) -> None:
        while not control.stop.is_set() and not ctx.cancelled:
            try:
                event = source.next()
            except StopIteration:
                return
            except CapabilityError as e:
                control.fail(e)
                return

            try:
                composed = self.builder.build(ctx, event.user_id, event.item_id, event.timestamp)
            except FeatureResolutionError as e:
                logger.debug(f"get sample vector error: {e}")
                control.record_drop()
                continue
            except PipelineCancelledError:
                return
            except Exception as e:
                control.fail(RecEngineError(f"sample assembly worker failed: {e}"))
                logger.exception("Unexpected error in sample assembly worker")
                return

            if not self._put(ctx, results, (composed, event.label), control):
                return

    def _coordinate(
        self,
        ctx: RunContext,
        workers: List[threading.Thread],
        results: "queue.Queue",
        control: _RunControl,
    ) -> None:
        for worker in workers:
            worker.join()
        self._put(ctx, results, _DONE, control, force=True)

    def _put(
        self,
        ctx: RunContext,
        results: "queue.Queue",
        item: object,
        control: _RunControl,
        force: bool = False,
    ) -> bool:
        """Put with backpressure; gives up once the run is stopped or cancelled."""
        poll = self.config.poll_interval_seconds
        while True:
            if not force and (control.stop.is_set() or ctx.cancelled):
                return False
            try:
                results.put(item, timeout=poll)
                return True
            except queue.Full:
                if force and (control.stop.is_set() or ctx.cancelled):
                    return False

    def _next_result(
        self,
        ctx: RunContext,
        results: "queue.Queue",
        coordinator: threading.Thread,
    ) -> object:
        poll = self.config.poll_interval_seconds
        while True:
            try:
                return results.get(timeout=poll)
            except queue.Empty:
                ctx.raise_if_cancelled()
                # Coordinator gave up on delivering _DONE after a worker failure.
                if not coordinator.is_alive() and results.empty():
                    return _DONE
