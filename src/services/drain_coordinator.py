import asyncio
import logging
from typing import List, Optional

from src.interfaces.message_processor_interface import ProcessorFactoryInterface
from src.models.drain_result import DrainResult
from src.models.drain_settings import DrainWorkerConfig
from src.models.drain_target import DrainTarget, QueueTarget, TopicSubscriptionTarget
from src.services.drain_worker import DrainWorker
from src.services.processing_counter import ProcessingCounter
from src.utils.errors import DrainAggregateError, DrainWorkerError

_LOGGER = logging.getLogger(__name__)


class DrainCoordinator:
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

    async def drain_entity_and_dead_letter(self, queue_name: str) -> List[DrainResult]:
        return await self.drain_target(QueueTarget(queue_name))

    async def drain_subscription_and_dead_letter(
        self,
        topic_name: str,
        subscription_name: str,
    ) -> List[DrainResult]:
        return await self.drain_target(TopicSubscriptionTarget(topic_name, subscription_name))

    async def drain_target(self, target: DrainTarget) -> List[DrainResult]:
        """
        Vacía la entidad principal y su dead-letter en paralelo y espera a ambas.
        El fallo de una no cancela la otra; los errores se reportan al final.
        """
        paths = [target.primary_path, target.dead_letter_path]
        workers = [self._create_worker() for _ in paths]

        _LOGGER.info("Iniciando vaciado de %s y su dead-letter", target.describe())
        outcomes = await asyncio.gather(
            *(worker.run(path) for worker, path in zip(workers, paths)),
            return_exceptions=True,
        )

        results: List[DrainResult] = []
        errors: List[DrainWorkerError] = []
        for path, outcome in zip(paths, outcomes):
            if isinstance(outcome, DrainResult):
                results.append(outcome)
            elif isinstance(outcome, Exception):
                _LOGGER.error(
                    "Falló el vaciado de '%s'",
                    path,
                    exc_info=outcome,
                )
                errors.append(DrainWorkerError(str(path), outcome))
            else:
                raise outcome

        if errors:
            raise DrainAggregateError(target.describe(), errors, results)
        return results

    def _create_worker(self) -> DrainWorker:
        return DrainWorker(
            self._processor_factory,
            self._config,
            self._counter,
            cancel_event=self._cancel_event,
        )
