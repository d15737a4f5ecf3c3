from src.models.drain_target import (
    DEAD_LETTER_SUFFIX,
    EntityPath,
    QueueTarget,
    TopicSubscriptionTarget,
    format_dead_letter_path,
)


def test_dead_letter_path_appends_marker_once() -> None:
    path = format_dead_letter_path("orders")

    assert path == "orders/$DeadLetterQueue"
    assert path == format_dead_letter_path("orders")
    assert path.count(DEAD_LETTER_SUFFIX) == 1


def test_queue_target_paths() -> None:
    target = QueueTarget("orders")

    assert str(target.primary_path) == "orders"
    assert str(target.dead_letter_path) == "orders/$DeadLetterQueue"
    assert not target.primary_path.is_dead_letter
    assert target.dead_letter_path.is_dead_letter
    assert target.dead_letter_path.base_name == "orders"
    assert not target.dead_letter_path.is_subscription


def test_subscription_target_paths() -> None:
    target = TopicSubscriptionTarget("events", "audit")

    assert str(target.primary_path) == "events/Subscriptions/audit"
    assert str(target.dead_letter_path) == "events/Subscriptions/audit/$DeadLetterQueue"
    assert target.dead_letter_path.topic_name == "events"
    assert target.dead_letter_path.base_name == "audit"
    assert target.primary_path.is_subscription


def test_dead_letter_of_dead_letter_path_is_not_doubled() -> None:
    path = EntityPath("orders").dead_letter()

    assert path.dead_letter() == path
    assert str(path.dead_letter()).count(DEAD_LETTER_SUFFIX) == 1


def test_targets_are_hashable_values() -> None:
    assert QueueTarget("orders") == QueueTarget("orders")
    assert len({TopicSubscriptionTarget("t", "s"), TopicSubscriptionTarget("t", "s")}) == 1
