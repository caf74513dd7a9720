"""
Configuration-driven publish/subscribe store for RabbitMQ.

Public API:
    - Config, ExchangeConfig, QueueConfig, PublishConfig, ConsumeConfig: configuration
    - load_config: load a Config from a JSON file
    - Store: connection/channel lifecycle plus publish and subscribe
    - Subscription: handle for a running consumer
    - StoreError, StoreNotRunningError, TransportError, ConfigValidationError: errors
    - ValidationErrors: structured validation report
"""

from amqp_store.config import (
    Config,
    ConsumeConfig,
    ExchangeConfig,
    PublishConfig,
    QueueConfig,
    load_config,
)
from amqp_store.constants import (
    EXCHANGE_DELAYED,
    EXCHANGE_DIRECT,
    EXCHANGE_FANOUT,
    EXCHANGE_TOPIC,
)
from amqp_store.consumer import Subscription
from amqp_store.exceptions import (
    ConfigValidationError,
    StoreError,
    StoreNotRunningError,
    TransportError,
)
from amqp_store.store import Store
from amqp_store.validation import ValidationErrors

__all__ = [
    # Config
    "Config",
    "ConsumeConfig",
    "ExchangeConfig",
    "PublishConfig",
    "QueueConfig",
    "load_config",
    # Exchange types
    "EXCHANGE_DELAYED",
    "EXCHANGE_DIRECT",
    "EXCHANGE_FANOUT",
    "EXCHANGE_TOPIC",
    # Store
    "Store",
    "Subscription",
    # Errors
    "ConfigValidationError",
    "StoreError",
    "StoreNotRunningError",
    "TransportError",
    "ValidationErrors",
]
