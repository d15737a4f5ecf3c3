import asyncio
import logging
from typing import Iterable, List, Optional, Sequence

from src.interfaces.message_processor_interface import ProcessorFactoryInterface
from src.models.drain_result import DrainResult
from src.models.drain_settings import DrainWorkerConfig, TopicSubscriptionModel
from src.services.drain_coordinator import DrainCoordinator
from src.services.processing_counter import ProcessingCounter
from src.utils.errors import ConfigurationError, DrainAggregateError, DrainFailedError

_LOGGER = logging.getLogger(__name__)


class DrainService:
    def __init__(
        self,
        processor_factory: ProcessorFactoryInterface,
        config: DrainWorkerConfig,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        self._processor_factory = processor_factory
        self._config = config
        self._cancel_event = cancel_event

    async def drain_all(
        self,
        queue_names: Iterable[str],
        topics: Iterable[TopicSubscriptionModel],
    ) -> List[DrainResult]:
        queue_list = list(queue_names)
        topic_list = list(topics)
        self._validate_targets(queue_list, topic_list)

        if not queue_list and not topic_list:
            _LOGGER.warning("No hay colas ni tópicos configurados para vaciar")
            return []

        coordinator = DrainCoordinator(
            self._processor_factory,
            self._config,
            ProcessingCounter(),
            cancel_event=self._cancel_event,
        )
        results: List[DrainResult] = []
        failures: List[DrainAggregateError] = []

        # Los destinos se vacían de uno en uno.
        for queue_name in queue_list:
            if self._cancelled():
                break
            await self._drain_one(
                coordinator.drain_entity_and_dead_letter(queue_name),
                results,
                failures,
            )

        for topic in topic_list:
            if self._cancelled():
                break
            await self._drain_one(
                coordinator.drain_subscription_and_dead_letter(topic.topic_name, topic.subscription_name),
                results,
                failures,
            )

        total = sum(result.messages_deleted for result in results)
        _LOGGER.info(
            "Vaciado completado: %s entidades, %s mensajes eliminados, %s destinos con errores",
            len(results),
            total,
            len(failures),
        )
        if failures:
            raise DrainFailedError(failures, results)
        return results

    async def _drain_one(
        self,
        drain,
        results: List[DrainResult],
        failures: List[DrainAggregateError],
    ) -> None:
        try:
            results.extend(await drain)
        except DrainAggregateError as exc:
            _LOGGER.error("%s", exc)
            results.extend(exc.results)
            failures.append(exc)

    def _cancelled(self) -> bool:
        if self._cancel_event is not None and self._cancel_event.is_set():
            _LOGGER.warning("Vaciado cancelado; se omiten los destinos pendientes")
            return True
        return False

    @staticmethod
    def _validate_targets(queue_names: Sequence[str], topics: Sequence[TopicSubscriptionModel]) -> None:
        for queue_name in queue_names:
            if not queue_name or not str(queue_name).strip():
                raise ConfigurationError("Se configuró una cola sin nombre")
        for topic in topics:
            if not topic.topic_name or not topic.topic_name.strip():
                raise ConfigurationError("Se configuró un tópico sin nombre")
            if not topic.subscription_name or not topic.subscription_name.strip():
                raise ConfigurationError(
                    f"El tópico '{topic.topic_name}' no tiene nombre de suscripción"
                )
