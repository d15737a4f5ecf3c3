import asyncio
import contextlib
import time
from typing import Dict, Iterable, List, Optional

import pytest

from src.interfaces.message_processor_interface import (
    MessageProcessorInterface,
    ProcessErrorArgs,
    ProcessMessageArgs,
    ProcessorFactoryInterface,
    ProcessorOptions,
)
from src.models.drain_settings import DrainWorkerConfig
from src.models.drain_target import EntityPath


class FakeMessage:
    def __init__(self, correlation_id: str) -> None:
        self.correlation_id = correlation_id


class FakeProcessor(MessageProcessorInterface):
    """Entrega mensajes y errores en instantes programados (segundos desde start)."""

    def __init__(
        self,
        entity_path: EntityPath,
        options: ProcessorOptions,
        arrivals: Iterable[float] = (),
        faults: Iterable[float] = (),
        start_error: Optional[BaseException] = None,
        handler_delay: float = 0.0,
    ) -> None:
        self._entity_path = entity_path
        self._identifier = f"fake-{entity_path}"
        self.options = options
        self.arrivals = sorted(arrivals)
        self.faults = sorted(faults)
        self.start_error = start_error
        self.handler_delay = handler_delay
        self.message_handler = None
        self.error_handler = None
        self.started_at: Optional[float] = None
        self.closed_at: Optional[float] = None
        self.stopped = False
        self.closed = False
        self.delivered = 0
        self.max_inflight = 0
        self._inflight = 0
        self._pump_task: Optional[asyncio.Task] = None
        self._tasks: List[asyncio.Task] = []
        self._semaphore: Optional[asyncio.Semaphore] = None

    @property
    def identifier(self) -> str:
        return self._identifier

    @property
    def entity_path(self) -> EntityPath:
        return self._entity_path

    def on_message(self, handler) -> None:
        self.message_handler = handler

    def on_error(self, handler) -> None:
        self.error_handler = handler

    async def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started_at = time.perf_counter()
        self._semaphore = asyncio.Semaphore(self.options.max_concurrent_calls)
        self._pump_task = asyncio.create_task(self._pump())

    async def _pump(self) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        events = sorted(
            [(offset, "message", index) for index, offset in enumerate(self.arrivals)]
            + [(offset, "fault", index) for index, offset in enumerate(self.faults)]
        )
        for offset, kind, index in events:
            delay = started + offset - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            if kind == "fault":
                await self.error_handler(
                    ProcessErrorArgs(
                        identifier=self._identifier,
                        entity_path=str(self._entity_path),
                        exception=RuntimeError("fallo transitorio al eliminar"),
                    )
                )
                continue
            await self._semaphore.acquire()
            self._tasks.append(asyncio.create_task(self._dispatch(FakeMessage(f"msg-{index}"))))

    async def _dispatch(self, message: FakeMessage) -> None:
        self._inflight += 1
        self.max_inflight = max(self.max_inflight, self._inflight)
        try:
            if self.handler_delay:
                await asyncio.sleep(self.handler_delay)
            await self.message_handler(
                ProcessMessageArgs(
                    identifier=self._identifier,
                    entity_path=str(self._entity_path),
                    message=message,
                )
            )
            self.delivered += 1
        finally:
            self._inflight -= 1
            self._semaphore.release()

    async def stop(self) -> None:
        self.stopped = True
        if self._pump_task is not None and not self._pump_task.done():
            self._pump_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._pump_task
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def close(self) -> None:
        self.closed = True
        self.closed_at = time.perf_counter()


class FakeProcessorFactory(ProcessorFactoryInterface):
    def __init__(self) -> None:
        self._arrivals: Dict[str, List[float]] = {}
        self._faults: Dict[str, List[float]] = {}
        self._start_errors: Dict[str, BaseException] = {}
        self.handler_delay = 0.0
        self.processors: List[FakeProcessor] = []
        self.closed = False

    def script(
        self,
        entity_path: str,
        arrivals: Iterable[float] = (),
        faults: Iterable[float] = (),
        start_error: Optional[BaseException] = None,
    ) -> None:
        self._arrivals[entity_path] = list(arrivals)
        self._faults[entity_path] = list(faults)
        if start_error is not None:
            self._start_errors[entity_path] = start_error

    def create_processor(self, entity_path: EntityPath, options: ProcessorOptions) -> FakeProcessor:
        key = str(entity_path)
        processor = FakeProcessor(
            entity_path,
            options,
            arrivals=self._arrivals.get(key, ()),
            faults=self._faults.get(key, ()),
            start_error=self._start_errors.get(key),
            handler_delay=self.handler_delay,
        )
        self.processors.append(processor)
        return processor

    def processor_for(self, entity_path: str) -> FakeProcessor:
        matches = [p for p in self.processors if str(p.entity_path) == entity_path]
        assert matches, f"no se creó procesador para '{entity_path}'"
        return matches[-1]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def processor_factory() -> FakeProcessorFactory:
    return FakeProcessorFactory()


@pytest.fixture
def fast_config() -> DrainWorkerConfig:
    return DrainWorkerConfig(
        connection_timeout_seconds=5,
        delete_batch_size=50,
        time_to_live_hours=1,
        prefetch_count=10,
        max_concurrency_calls=2,
        polling_period_milliseconds=50,
    )
