from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from src.utils.errors import ConfigurationError

PREFETCH_COUNT_RANGE = (0, 200)
MAX_CONCURRENCY_CALLS_RANGE = (1, 200)
POLLING_PERIOD_MILLISECONDS_RANGE = (1000, 10000)

ENV_CONNECTION = "SERVICE_BUS_CONNECTION"
ENV_NAMESPACE = "SERVICE_BUS_NAMESPACE"
ENV_QUEUES = "SERVICE_BUS_QUEUES"
ENV_TOPICS = "SERVICE_BUS_TOPICS"

_WORKER_ENV_KEYS = {
    "connection_timeout_seconds": "SERVICE_BUS_CONNECTION_TIMEOUT_SECONDS",
    "delete_batch_size": "SERVICE_BUS_DELETE_BATCH_SIZE",
    "time_to_live_hours": "SERVICE_BUS_TIME_TO_LIVE_HOURS",
    "prefetch_count": "SERVICE_BUS_PREFETCH_COUNT",
    "max_concurrency_calls": "SERVICE_BUS_MAX_CONCURRENCY_CALLS",
    "polling_period_milliseconds": "SERVICE_BUS_POLLING_PERIOD_MILLISECONDS",
    "max_drain_seconds": "SERVICE_BUS_MAX_DRAIN_SECONDS",
}


def _require_int(data: Mapping, key: str, minimum: int, maximum: Optional[int] = None) -> int:
    raw = data.get(key)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise ConfigurationError(f"'{key}' es obligatorio en la configuración de Service Bus")
    try:
        value = int(str(raw).strip())
    except ValueError as exc:
        raise ConfigurationError(f"'{key}' debe ser un número entero (valor: {raw!r})") from exc
    if value < minimum or (maximum is not None and value > maximum):
        limits = f"[{minimum}, {maximum}]" if maximum is not None else f">= {minimum}"
        raise ConfigurationError(f"'{key}' fuera de rango {limits} (valor: {value})")
    return value


@dataclass(frozen=True)
class DrainWorkerConfig:
    connection_timeout_seconds: int
    delete_batch_size: int
    time_to_live_hours: int
    prefetch_count: int
    max_concurrency_calls: int
    polling_period_milliseconds: int
    max_drain_seconds: Optional[float] = None

    @property
    def polling_period_seconds(self) -> float:
        return self.polling_period_milliseconds / 1000

    @classmethod
    def from_dict(cls, data: Mapping) -> "DrainWorkerConfig":
        if not isinstance(data, Mapping):
            raise ConfigurationError("La configuración del vaciado debe ser un diccionario")

        max_drain_seconds = data.get("max_drain_seconds")
        if isinstance(max_drain_seconds, str):
            max_drain_seconds = max_drain_seconds.strip() or None
        if max_drain_seconds is not None:
            try:
                max_drain_seconds = float(max_drain_seconds)
            except ValueError as exc:
                raise ConfigurationError(
                    f"'max_drain_seconds' debe ser numérico (valor: {max_drain_seconds!r})"
                ) from exc
            if max_drain_seconds <= 0:
                raise ConfigurationError("'max_drain_seconds' debe ser mayor que cero")

        return cls(
            connection_timeout_seconds=_require_int(data, "connection_timeout_seconds", 1),
            delete_batch_size=_require_int(data, "delete_batch_size", 1),
            time_to_live_hours=_require_int(data, "time_to_live_hours", 0),
            prefetch_count=_require_int(data, "prefetch_count", *PREFETCH_COUNT_RANGE),
            max_concurrency_calls=_require_int(data, "max_concurrency_calls", *MAX_CONCURRENCY_CALLS_RANGE),
            polling_period_milliseconds=_require_int(
                data, "polling_period_milliseconds", *POLLING_PERIOD_MILLISECONDS_RANGE
            ),
            max_drain_seconds=max_drain_seconds,
        )


@dataclass(frozen=True)
class TopicSubscriptionModel:
    topic_name: str
    subscription_name: str

    @classmethod
    def from_dict(cls, data: dict) -> "TopicSubscriptionModel":
        if not isinstance(data, dict):
            raise ConfigurationError("Cada tópico configurado debe ser un diccionario")

        topic_name = (data.get("topic_name") or "").strip()
        subscription_name = (data.get("subscription_name") or "").strip()

        if not topic_name:
            raise ConfigurationError("'topic_name' es obligatorio en la configuración de tópicos")
        if not subscription_name:
            raise ConfigurationError(
                f"'subscription_name' es obligatorio para el tópico '{topic_name}'"
            )
        return cls(topic_name=topic_name, subscription_name=subscription_name)


def _parse_queue_names(raw: Optional[str]) -> List[str]:
    if not raw or not raw.strip():
        return []
    names = [item.strip() for item in raw.split(",")]
    if any(not name for name in names):
        raise ConfigurationError(f"'{ENV_QUEUES}' contiene un nombre de cola vacío")
    return names


def _parse_topics(raw: Optional[str]) -> List[TopicSubscriptionModel]:
    if not raw or not raw.strip():
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"'{ENV_TOPICS}' no es un JSON válido: {exc}") from exc
    if not isinstance(data, list):
        raise ConfigurationError(f"'{ENV_TOPICS}' debe ser una lista JSON")
    return [TopicSubscriptionModel.from_dict(item) for item in data]


@dataclass(frozen=True)
class DrainSettings:
    worker: DrainWorkerConfig
    connection_string: Optional[str] = None
    fully_qualified_namespace: Optional[str] = None
    queue_names: List[str] = field(default_factory=list)
    topics: List[TopicSubscriptionModel] = field(default_factory=list)

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> "DrainSettings":
        connection_string = (environ.get(ENV_CONNECTION) or "").strip() or None
        namespace = (environ.get(ENV_NAMESPACE) or "").strip() or None
        if not connection_string and not namespace:
            raise ConfigurationError(
                f"Defina '{ENV_CONNECTION}' o '{ENV_NAMESPACE}' para conectarse a Service Bus"
            )
        if namespace and "." not in namespace:
            namespace = f"{namespace}.servicebus.windows.net"

        worker = DrainWorkerConfig.from_dict(
            {key: environ.get(env_key) for key, env_key in _WORKER_ENV_KEYS.items()}
        )
        return cls(
            worker=worker,
            connection_string=connection_string,
            fully_qualified_namespace=namespace,
            queue_names=_parse_queue_names(environ.get(ENV_QUEUES)),
            topics=_parse_topics(environ.get(ENV_TOPICS)),
        )
