import asyncio
import json
import logging
import os
import signal
import sys
from typing import List, Optional

from src.interfaces.message_processor_interface import ProcessorFactoryInterface
from src.models.drain_result import DrainOutcome, DrainResult
from src.models.drain_settings import DrainSettings
from src.repositories.service_bus_processor import ServiceBusProcessorFactory
from src.services.drain_service import DrainService
from src.utils.errors import ConfigurationError, DrainFailedError
from src.utils.settings_loader import LOCAL_SETTINGS_PATH, apply_local_settings

EXIT_OK = 0
EXIT_DRAIN_FAILED = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_INCOMPLETE = 3

logging.getLogger("azure.core.pipeline.policies.http_logging_policy").setLevel(logging.WARNING)
logging.getLogger("azure.servicebus").setLevel(logging.WARNING)
logging.getLogger("azure.identity").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


async def run_drain(
    settings: DrainSettings,
    cancel_event: Optional[asyncio.Event] = None,
    processor_factory: Optional[ProcessorFactoryInterface] = None,
) -> List[DrainResult]:
    factory = processor_factory
    if factory is None:
        try:
            factory = ServiceBusProcessorFactory.from_settings(settings)
        except ValueError as exc:
            raise ConfigurationError(f"No se pudo crear el cliente de Service Bus: {exc}") from exc
    logger.info(
        "Vaciando %s colas y %s suscripciones (prefetch=%s, concurrencia=%s, periodo=%s ms, ttl=%s h)",
        len(settings.queue_names),
        len(settings.topics),
        settings.worker.prefetch_count,
        settings.worker.max_concurrency_calls,
        settings.worker.polling_period_milliseconds,
        settings.worker.time_to_live_hours,
    )
    try:
        service = DrainService(factory, settings.worker, cancel_event=cancel_event)
        return await service.drain_all(settings.queue_names, settings.topics)
    finally:
        await factory.close()


async def _main_async(settings: DrainSettings) -> List[DrainResult]:
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel_event.set)
        except NotImplementedError:  # pragma: no cover - Windows
            logger.debug("No se pudo registrar el manejador de la señal %s", sig)
    return await run_drain(settings, cancel_event=cancel_event)


def main() -> int:
    try:
        apply_local_settings(LOCAL_SETTINGS_PATH)
        configure_logging()
        settings = DrainSettings.from_env(os.environ)
    except ConfigurationError as exc:
        configure_logging()
        logger.error("Configuración inválida: %s", exc)
        return EXIT_CONFIGURATION_ERROR

    try:
        results = asyncio.run(_main_async(settings))
    except ConfigurationError as exc:
        logger.error("Configuración inválida: %s", exc)
        return EXIT_CONFIGURATION_ERROR
    except DrainFailedError as exc:
        logger.error("%s", exc)
        for failure in exc.failures:
            for error in failure.errors:
                logger.error("  %s", error)
        return EXIT_DRAIN_FAILED

    logger.info(
        "Resumen del vaciado: %s",
        json.dumps([result.to_dict() for result in results], ensure_ascii=False),
    )
    # Cancelado o interrumpido por tiempo: la entidad no se observó vacía.
    incomplete = [result for result in results if result.outcome is not DrainOutcome.QUIESCENT]
    if incomplete:
        logger.warning(
            "Vaciado incompleto en %s entidades: %s",
            len(incomplete),
            ", ".join(f"{result.entity_path} ({result.outcome.value})" for result in incomplete),
        )
        return EXIT_INCOMPLETE
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
