# runtime/registries.py
from collections.abc import Callable

from booktrack.config.models import (
    DeliveryUnion,
    LoggingNotifierModel,
    MemoryNotifierModel,
    NotifierUnion,
    QueuedDeliveryModel,
    SyncDeliveryModel,
)
from booktrack.runtime.hooks import TrackingHooks
from booktrack.services.location_channel import Delivery, QueuedDelivery, SyncDelivery
from booktrack.services.notifier import AsyncNotifier, LoggingNotifier, MemoryNotifier, Notifier

DeliveryFactory = Callable[[], Delivery]
DeliveryBuilder = Callable[[DeliveryUnion, dict], DeliveryFactory]
NotifierBuilder = Callable[[NotifierUnion, dict], Notifier]

_delivery_registry: dict[str, DeliveryBuilder] = {}
_notifier_registry: dict[str, NotifierBuilder] = {}


# ------------------- Delivery modes ---------------------------


def register_delivery(kind: str):
    def deco(fn: DeliveryBuilder):
        _delivery_registry[kind] = fn
        return fn

    return deco


def make_delivery_factory(cfg: DeliveryUnion, *, hooks: TrackingHooks) -> DeliveryFactory:
    """Returns a zero-arg factory; the channel builds one Delivery per subscription."""
    try:
        return _delivery_registry[cfg.kind](cfg, {"hooks": hooks})
    except KeyError:
        raise ValueError(f"Unknown delivery kind {cfg.kind!r}")


@register_delivery("sync")
def _make_sync(cfg: SyncDeliveryModel, deps):
    return SyncDelivery


@register_delivery("queued")
def _make_queued(cfg: QueuedDeliveryModel, deps):
    hooks = deps["hooks"]
    return lambda: QueuedDelivery(maxsize=cfg.maxsize, hooks=hooks)


# ------------------- Notifiers ---------------------------


def register_notifier(kind: str):
    def deco(fn: NotifierBuilder):
        _notifier_registry[kind] = fn
        return fn

    return deco


def make_notifier(cfg: NotifierUnion, *, hooks: TrackingHooks) -> Notifier:
    try:
        build = _notifier_registry[cfg.kind]
    except KeyError:
        raise ValueError(f"Unknown notifier kind {cfg.kind!r}")
    notifier = build(cfg, {"hooks": hooks})
    if cfg.async_queue:
        return AsyncNotifier(notifier, maxsize=cfg.queue_size, hooks=hooks)
    return notifier


@register_notifier("logging")
def _make_logging(cfg: LoggingNotifierModel, deps):
    return LoggingNotifier()


@register_notifier("memory")
def _make_memory(cfg: MemoryNotifierModel, deps):
    return MemoryNotifier()
