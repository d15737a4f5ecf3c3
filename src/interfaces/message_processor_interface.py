from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from src.models.drain_target import EntityPath


@dataclass(frozen=True)
class ProcessorOptions:
    max_concurrent_calls: int
    prefetch_count: int
    max_message_count: int
    connection_timeout_seconds: float


@dataclass(frozen=True)
class ProcessMessageArgs:
    identifier: str
    entity_path: str
    message: Any


@dataclass(frozen=True)
class ProcessErrorArgs:
    identifier: str
    entity_path: str
    exception: BaseException


MessageHandler = Callable[[ProcessMessageArgs], Awaitable[None]]
ErrorHandler = Callable[[ProcessErrorArgs], Awaitable[None]]


class MessageProcessorInterface(ABC):
    @property
    @abstractmethod
    def identifier(self) -> str:
        pass

    @property
    @abstractmethod
    def entity_path(self) -> EntityPath:
        pass

    @abstractmethod
    def on_message(self, handler: MessageHandler) -> None:
        pass

    @abstractmethod
    def on_error(self, handler: ErrorHandler) -> None:
        pass

    @abstractmethod
    async def start(self) -> None:
        """
        Abre la conexión e inicia la recepción en modo receive-and-delete.
        Los errores de conexión o autenticación se propagan al llamador.
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Deja de recibir y espera a los manejadores en curso."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class ProcessorFactoryInterface(ABC):
    @abstractmethod
    def create_processor(
        self,
        entity_path: EntityPath,
        options: ProcessorOptions,
    ) -> MessageProcessorInterface:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass
