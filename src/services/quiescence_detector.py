import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from src.services.processing_counter import ProcessingCounter
from src.utils.errors import QuiescenceInvariantError

_LOGGER = logging.getLogger(__name__)


@dataclass
class QuiescenceState:
    processor_identifier: str
    last_count: int = 0
    requested_stop: bool = False
    ticks: int = 0


class QuiescenceDetector:
    """
    Considera vacía una entidad cuando dos muestras consecutivas del contador
    de su procesador son iguales. Es una heurística: un mensaje que llega justo
    después de una muestra puede pasar inadvertido durante un ciclo, y la
    muestra se actualiza incluso en el ciclo que solicita la parada.
    """

    def __init__(
        self,
        counter: ProcessingCounter,
        processor_identifier: str,
        period_seconds: float,
    ) -> None:
        if period_seconds <= 0:
            raise ValueError("El periodo de muestreo debe ser mayor que cero")
        self._counter = counter
        self._period_seconds = period_seconds
        self.state = QuiescenceState(processor_identifier=processor_identifier)
        self.error: Optional[QuiescenceInvariantError] = None
        self._stop_requested = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def stop_requested(self) -> bool:
        return self.state.requested_stop

    def tick(self) -> bool:
        count = self._counter.get(self.state.processor_identifier)
        if count == self.state.last_count:
            self.state.requested_stop = True
            self._stop_requested.set()
        self.state.last_count = count
        self.state.ticks += 1
        return self.state.requested_stop

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError(
                f"El muestreo del procesador '{self.state.processor_identifier}' ya fue iniciado"
            )
        self._loop = asyncio.get_running_loop()
        self._task = self._loop.create_task(self._run())

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._period_seconds)
            try:
                self.tick()
            except Exception as exc:
                _LOGGER.exception(
                    "Error interno muestreando el procesador '%s'; se detiene su vaciado",
                    self.state.processor_identifier,
                )
                self.error = QuiescenceInvariantError(self.state.processor_identifier, exc)
                self.state.requested_stop = True
                self._stop_requested.set()
                return

    async def wait_stop_requested(self, timeout: Optional[float] = None) -> bool:
        try:
            await asyncio.wait_for(self._stop_requested.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        return self.state.requested_stop

    def stop(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None
        if running_loop is self._loop:
            task.cancel()
        else:
            self._loop.call_soon_threadsafe(task.cancel)
