import asyncio
import contextlib
import logging
import uuid
from typing import Optional, Set

from azure.identity.aio import DefaultAzureCredential
from azure.servicebus import ServiceBusReceiveMode, ServiceBusSubQueue, TransportType
from azure.servicebus.aio import ServiceBusClient, ServiceBusReceiver

from src.interfaces.message_processor_interface import (
    ErrorHandler,
    MessageHandler,
    MessageProcessorInterface,
    ProcessErrorArgs,
    ProcessMessageArgs,
    ProcessorFactoryInterface,
    ProcessorOptions,
)
from src.models.drain_target import EntityPath

_LOGGER = logging.getLogger(__name__)

RECEIVE_WAIT_SECONDS = 5
RECEIVE_ERROR_BACKOFF_SECONDS = 1


class ServiceBusMessageProcessor(MessageProcessorInterface):
    """
    Procesador sobre un receptor asíncrono de Service Bus en modo receive-and-delete.
    Los mensajes se eliminan al recibirse; los manejadores no liquidan nada.
    """

    def __init__(
        self,
        client: ServiceBusClient,
        entity_path: EntityPath,
        options: ProcessorOptions,
        receive_wait_seconds: float = RECEIVE_WAIT_SECONDS,
        error_backoff_seconds: float = RECEIVE_ERROR_BACKOFF_SECONDS,
    ) -> None:
        self._client = client
        self._entity_path = entity_path
        self._options = options
        self._receive_wait_seconds = receive_wait_seconds
        self._error_backoff_seconds = error_backoff_seconds
        self._identifier = f"{entity_path}-{uuid.uuid4()}"
        self._message_handler: Optional[MessageHandler] = None
        self._error_handler: Optional[ErrorHandler] = None
        self._exit_stack = contextlib.AsyncExitStack()
        self._receiver: Optional[ServiceBusReceiver] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()
        self._semaphore = asyncio.Semaphore(options.max_concurrent_calls)

    @property
    def identifier(self) -> str:
        return self._identifier

    @property
    def entity_path(self) -> EntityPath:
        return self._entity_path

    def on_message(self, handler: MessageHandler) -> None:
        self._message_handler = handler

    def on_error(self, handler: ErrorHandler) -> None:
        self._error_handler = handler

    def _create_receiver(self) -> ServiceBusReceiver:
        kwargs = {
            "receive_mode": ServiceBusReceiveMode.RECEIVE_AND_DELETE,
            "prefetch_count": self._options.prefetch_count,
        }
        if self._entity_path.is_dead_letter:
            kwargs["sub_queue"] = ServiceBusSubQueue.DEAD_LETTER

        if self._entity_path.is_subscription:
            return self._client.get_subscription_receiver(
                topic_name=self._entity_path.topic_name,
                subscription_name=self._entity_path.base_name,
                **kwargs,
            )
        return self._client.get_queue_receiver(
            queue_name=self._entity_path.base_name,
            **kwargs,
        )

    async def start(self) -> None:
        if self._message_handler is None:
            raise RuntimeError(f"No hay manejador de mensajes registrado para '{self._entity_path}'")
        if self._receive_task is not None:
            raise RuntimeError(f"El procesador '{self._identifier}' ya está iniciado")

        receiver = self._create_receiver()
        try:
            self._receiver = await asyncio.wait_for(
                self._exit_stack.enter_async_context(receiver),
                timeout=self._options.connection_timeout_seconds,
            )
        except Exception:
            await receiver.close()
            _LOGGER.error(
                "No se pudo abrir el receptor de '%s' en %s segundos",
                self._entity_path,
                self._options.connection_timeout_seconds,
            )
            raise
        self._receive_task = asyncio.create_task(self._receive_loop())

    async def _receive_loop(self) -> None:
        while True:
            try:
                messages = await self._receiver.receive_messages(
                    max_message_count=self._options.max_message_count,
                    max_wait_time=self._receive_wait_seconds,
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                await self._dispatch_error(exc)
                await asyncio.sleep(self._error_backoff_seconds)
                continue

            for message in messages:
                await self._semaphore.acquire()
                task = asyncio.create_task(self._dispatch_message(message))
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)

    async def _dispatch_message(self, message) -> None:
        try:
            await self._message_handler(
                ProcessMessageArgs(
                    identifier=self._identifier,
                    entity_path=str(self._entity_path),
                    message=message,
                )
            )
        except Exception as exc:
            await self._dispatch_error(exc)
        finally:
            self._semaphore.release()

    async def _dispatch_error(self, exc: BaseException) -> None:
        if self._error_handler is None:
            _LOGGER.warning("Error no manejado en '%s'", self._entity_path, exc_info=exc)
            return
        try:
            await self._error_handler(
                ProcessErrorArgs(
                    identifier=self._identifier,
                    entity_path=str(self._entity_path),
                    exception=exc,
                )
            )
        except Exception:
            _LOGGER.exception("El manejador de errores de '%s' falló", self._entity_path)

    async def stop(self) -> None:
        task = self._receive_task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def close(self) -> None:
        await self._exit_stack.aclose()
        self._receiver = None


class ServiceBusProcessorFactory(ProcessorFactoryInterface):
    def __init__(
        self,
        client: ServiceBusClient,
        credential: Optional[DefaultAzureCredential] = None,
    ) -> None:
        self._client = client
        self._credential = credential

    @classmethod
    def from_connection_string(cls, connection_string: str) -> "ServiceBusProcessorFactory":
        if not connection_string:
            raise ValueError("La cadena de conexión de Service Bus es obligatoria")
        client = ServiceBusClient.from_connection_string(
            connection_string,
            transport_type=TransportType.AmqpOverWebsocket,
        )
        return cls(client)

    @classmethod
    def from_namespace(cls, fully_qualified_namespace: str) -> "ServiceBusProcessorFactory":
        if not fully_qualified_namespace:
            raise ValueError("El namespace de Service Bus es obligatorio")
        credential = DefaultAzureCredential()
        _LOGGER.info("Autenticando contra Service Bus '%s' mediante Azure AD", fully_qualified_namespace)
        client = ServiceBusClient(
            fully_qualified_namespace,
            credential=credential,
            transport_type=TransportType.AmqpOverWebsocket,
        )
        return cls(client, credential)

    @classmethod
    def from_settings(cls, settings) -> "ServiceBusProcessorFactory":
        if settings.connection_string:
            return cls.from_connection_string(settings.connection_string)
        return cls.from_namespace(settings.fully_qualified_namespace)

    def create_processor(
        self,
        entity_path: EntityPath,
        options: ProcessorOptions,
    ) -> ServiceBusMessageProcessor:
        return ServiceBusMessageProcessor(self._client, entity_path, options)

    async def close(self) -> None:
        try:
            await self._client.close()
        finally:
            if self._credential is not None:
                await self._credential.close()
