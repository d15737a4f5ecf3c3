from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

DEAD_LETTER_SUFFIX = "/$DeadLetterQueue"
SUBSCRIPTIONS_SEGMENT = "Subscriptions"


def format_dead_letter_path(entity: str) -> str:
    return f"{entity}{DEAD_LETTER_SUFFIX}"


@dataclass(frozen=True)
class EntityPath:
    entity_name: str
    topic_name: Optional[str] = None

    @property
    def is_dead_letter(self) -> bool:
        return self.entity_name.endswith(DEAD_LETTER_SUFFIX)

    @property
    def base_name(self) -> str:
        if self.is_dead_letter:
            return self.entity_name[: -len(DEAD_LETTER_SUFFIX)]
        return self.entity_name

    @property
    def is_subscription(self) -> bool:
        return self.topic_name is not None

    def dead_letter(self) -> "EntityPath":
        return EntityPath(format_dead_letter_path(self.base_name), self.topic_name)

    def __str__(self) -> str:
        if self.topic_name is None:
            return self.entity_name
        return f"{self.topic_name}/{SUBSCRIPTIONS_SEGMENT}/{self.entity_name}"


@dataclass(frozen=True)
class QueueTarget:
    queue_name: str

    @property
    def primary_path(self) -> EntityPath:
        return EntityPath(self.queue_name)

    @property
    def dead_letter_path(self) -> EntityPath:
        return EntityPath(format_dead_letter_path(self.queue_name))

    def describe(self) -> str:
        return f"la cola '{self.queue_name}'"


@dataclass(frozen=True)
class TopicSubscriptionTarget:
    topic_name: str
    subscription_name: str

    @property
    def primary_path(self) -> EntityPath:
        return EntityPath(self.subscription_name, topic_name=self.topic_name)

    @property
    def dead_letter_path(self) -> EntityPath:
        return EntityPath(format_dead_letter_path(self.subscription_name), topic_name=self.topic_name)

    def describe(self) -> str:
        return f"la suscripción '{self.subscription_name}' del tópico '{self.topic_name}'"


DrainTarget = Union[QueueTarget, TopicSubscriptionTarget]
