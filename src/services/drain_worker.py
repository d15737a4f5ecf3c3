import asyncio
import logging
import time
from enum import Enum
from typing import Optional

from src.interfaces.message_processor_interface import (
    MessageProcessorInterface,
    ProcessErrorArgs,
    ProcessMessageArgs,
    ProcessorFactoryInterface,
    ProcessorOptions,
)
from src.models.drain_result import DrainOutcome, DrainResult
from src.models.drain_settings import DrainWorkerConfig
from src.models.drain_target import EntityPath
from src.services.processing_counter import ProcessingCounter
from src.services.quiescence_detector import QuiescenceDetector

_LOGGER = logging.getLogger(__name__)


class DrainState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class DrainWorker:
    """Vacía una única entidad con su propio procesador hasta observarla inactiva."""

    def __init__(
        self,
        processor_factory: ProcessorFactoryInterface,
        config: DrainWorkerConfig,
        counter: ProcessingCounter,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        self._processor_factory = processor_factory
        self._config = config
        self._counter = counter
        self._cancel_event = cancel_event
        self._state = DrainState.CREATED
        self._handler_faults = 0

    @property
    def state(self) -> DrainState:
        return self._state

    @property
    def handler_faults(self) -> int:
        return self._handler_faults

    def _build_options(self) -> ProcessorOptions:
        return ProcessorOptions(
            max_concurrent_calls=self._config.max_concurrency_calls,
            prefetch_count=self._config.prefetch_count,
            max_message_count=self._config.delete_batch_size,
            connection_timeout_seconds=self._config.connection_timeout_seconds,
        )

    async def run(self, entity_path: EntityPath) -> DrainResult:
        if self._state is not DrainState.CREATED:
            raise RuntimeError(f"El vaciado de '{entity_path}' ya fue ejecutado por este worker")

        processor = self._processor_factory.create_processor(entity_path, self._build_options())
        detector: Optional[QuiescenceDetector] = None
        started_at = time.perf_counter()
        try:
            processor.on_message(self._handle_message)
            processor.on_error(self._handle_error)
            identifier = processor.identifier
            self._counter.register(identifier)
            await processor.start()
            self._state = DrainState.RUNNING

            detector = QuiescenceDetector(
                self._counter,
                identifier,
                self._config.polling_period_seconds,
            )
            detector.start()
            self._state = DrainState.DRAINING
            _LOGGER.info(
                "Vaciando '%s' con el procesador '%s'",
                entity_path,
                identifier,
            )
            outcome = await self._wait_until_drained(entity_path, identifier, detector)
            if detector.error is not None:
                raise detector.error
        finally:
            if detector is not None:
                detector.stop()
            await self._shutdown(processor)

        elapsed = time.perf_counter() - started_at
        result = DrainResult(
            entity_path=str(entity_path),
            processor_identifier=identifier,
            messages_deleted=self._counter.get(identifier),
            outcome=outcome,
            elapsed_seconds=elapsed,
            handler_faults=self._handler_faults,
        )
        _LOGGER.info(
            "Vaciado de '%s' finalizado (%s): %s mensajes eliminados en %.1f s con el procesador '%s'",
            entity_path,
            outcome.value,
            result.messages_deleted,
            elapsed,
            identifier,
        )
        return result

    async def _wait_until_drained(
        self,
        entity_path: EntityPath,
        identifier: str,
        detector: QuiescenceDetector,
    ) -> DrainOutcome:
        period = self._config.polling_period_seconds
        loop = asyncio.get_running_loop()
        deadline = None
        if self._config.max_drain_seconds is not None:
            deadline = loop.time() + self._config.max_drain_seconds

        while not detector.stop_requested:
            if self._cancel_event is not None and self._cancel_event.is_set():
                _LOGGER.warning("Vaciado de '%s' cancelado", entity_path)
                return DrainOutcome.CANCELLED

            timeout = period
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    _LOGGER.warning(
                        "Vaciado de '%s' interrumpido tras superar %s segundos",
                        entity_path,
                        self._config.max_drain_seconds,
                    )
                    return DrainOutcome.TIMED_OUT
                timeout = min(period, remaining)

            await self._wait_for_wakeup(detector, timeout)
            _LOGGER.info(
                "Eliminados %s mensajes de '%s' con el procesador '%s', continuando...",
                self._counter.get(identifier),
                entity_path,
                identifier,
            )
        return DrainOutcome.QUIESCENT

    async def _wait_for_wakeup(self, detector: QuiescenceDetector, timeout: float) -> None:
        if self._cancel_event is None:
            await detector.wait_stop_requested(timeout)
            return

        waiters = [
            asyncio.ensure_future(detector.wait_stop_requested()),
            asyncio.ensure_future(self._cancel_event.wait()),
        ]
        try:
            await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

    async def _shutdown(self, processor: MessageProcessorInterface) -> None:
        try:
            await processor.stop()
        finally:
            await processor.close()
            self._state = DrainState.STOPPED

    async def _handle_message(self, args: ProcessMessageArgs) -> None:
        self._counter.increment(args.identifier)
        _LOGGER.debug(
            "Mensaje recibido con CorrelationId %s",
            getattr(args.message, "correlation_id", None),
        )

    async def _handle_error(self, args: ProcessErrorArgs) -> None:
        self._handler_faults += 1
        _LOGGER.warning(
            "Excepción recibiendo mensajes de '%s' con el procesador '%s'",
            args.entity_path,
            args.identifier,
            exc_info=args.exception,
        )
