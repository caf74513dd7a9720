"""
Configuration dataclasses for the store.

This module provides the connection settings plus the declarative exchange,
queue, publish and consume configuration consumed by ``Store``. Every config
object exposes ``errors()`` returning a ``ValidationErrors`` report and
``validate()`` raising ``ConfigValidationError`` when that report is not empty.
"""

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

from amqp_store.constants import (
    BASE_EXCHANGE_TYPES,
    DELAYED_TYPE_ARGUMENT,
    DSN_SCHEME,
    EXCHANGE_DELAYED,
    EXCHANGE_TYPES,
)
from amqp_store.exceptions import ConfigValidationError
from amqp_store.validation import (
    ValidationErrors,
    check,
    is_host,
    is_port,
    one_of,
    required,
    validate_entries,
)

logger = logging.getLogger(__name__)


class _Validatable:
    def errors(self) -> ValidationErrors:
        raise NotImplementedError

    def validate(self) -> None:
        """Raise ConfigValidationError if this config is not valid."""
        report = self.errors()
        if report:
            raise ConfigValidationError(report)


@dataclass(frozen=True)
class QueueConfig(_Validatable):
    """
    Configuration for a queue declared by ``Store.subscribe``.

    Attributes:
        name: Queue name (empty string for a server-generated name)
        durable: Queue survives broker restart
        auto_delete: Queue is deleted when last consumer unsubscribes
        exclusive: Queue can only be used by the declaring connection
        internal: Kept for configuration compatibility, not sent to the broker
        no_wait: Kept for configuration compatibility, not sent to the broker
        args: Optional queue arguments (x-message-ttl, x-max-length, ...)
    """

    name: str = ""
    durable: bool = False
    auto_delete: bool = False
    exclusive: bool = False
    internal: bool = False
    no_wait: bool = False
    args: Dict[str, Any] = field(default_factory=dict)

    def errors(self) -> ValidationErrors:
        return ValidationErrors()


@dataclass(frozen=True)
class ExchangeConfig(_Validatable):
    """
    Configuration for an exchange, the routing key used against it and the
    queue bound to it when consuming.
    """

    name: str = ""
    type: str = ""
    durable: bool = False
    auto_delete: bool = False
    internal: bool = False
    no_wait: bool = False
    routing_key: str = ""
    args: Dict[str, Any] = field(default_factory=dict)
    queue: QueueConfig = field(default_factory=QueueConfig)

    def errors(self) -> ValidationErrors:
        report = ValidationErrors()
        report.add("type", check(self.type, one_of(EXCHANGE_TYPES)))
        if report:
            return report

        if self.type == EXCHANGE_DELAYED:
            report.add("args", self._delayed_type_error())
        return report

    def _delayed_type_error(self) -> Optional[str]:
        # delayed exchanges route by the base type named in their arguments
        args = self.args or {}
        if DELAYED_TYPE_ARGUMENT not in args:
            return (
                f"exchange '{self.name}' with type [{EXCHANGE_DELAYED}] "
                f"must contain '{DELAYED_TYPE_ARGUMENT}' argument"
            )
        delayed_type = args[DELAYED_TYPE_ARGUMENT]
        if check(delayed_type, one_of(BASE_EXCHANGE_TYPES)) is not None:
            return f"invalid type [{delayed_type}] for {DELAYED_TYPE_ARGUMENT} argument"
        return None


@dataclass(frozen=True)
class PublishConfig(_Validatable):
    """How ``Store.publish`` declares its exchange and publishes to it."""

    mandatory: bool = False
    immediate: bool = False
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)

    def errors(self) -> ValidationErrors:
        return self.exchange.errors()


@dataclass(frozen=True)
class ConsumeConfig(_Validatable):
    """
    How ``Store.subscribe`` sets up its exchange, queue, binding and consumer.

    ``name`` is the consumer tag; leave it empty for a broker-generated tag.
    """

    name: str = ""
    auto_ack: bool = False
    exclusive: bool = False
    no_local: bool = False
    no_wait: bool = False
    args: Dict[str, Any] = field(default_factory=dict)
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)

    def errors(self) -> ValidationErrors:
        return self.exchange.errors()


@dataclass(frozen=True)
class Config(_Validatable):
    """
    Broker connection settings plus named publish and consume configurations.

    Only ``dsn()`` is handed to the store; it never keeps a reference to the
    config itself.
    """

    host: str = ""
    port: Union[str, int] = ""
    username: str = ""
    password: str = ""
    consumes: Dict[str, ConsumeConfig] = field(default_factory=dict)
    publishes: Dict[str, PublishConfig] = field(default_factory=dict)

    def dsn(self) -> str:
        """
        Render the connection string.

        Credentials are not escaped; usernames or passwords containing ``@``,
        ``:`` or ``/`` produce an unusable DSN.
        """
        return (
            f"{DSN_SCHEME}://{self.username}:{self.password}@{self.host}:{self.port}/"
        )

    def errors(self) -> ValidationErrors:
        report = ValidationErrors()
        report.add("Host", check(self.host, required, is_host))
        report.add("Port", check(self.port, required, is_port))
        report.add("Username", check(self.username, required))
        report.add("Password", check(self.password, required))
        if report:
            return report

        report.merge(validate_entries(self.publishes or {}))
        if report:
            return report
        return report.merge(validate_entries(self.consumes or {}))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Config":
        """
        Build a Config from a nested mapping with snake_case keys, e.g. the
        result of ``json.load``. Unknown keys raise ConfigValidationError.
        """
        values = _known_fields(cls, data)
        consumes = _section(values, "consumes")
        publishes = _section(values, "publishes")
        values["consumes"] = {
            name: _consume_from_dict(entry) for name, entry in consumes.items()
        }
        values["publishes"] = {
            name: _publish_from_dict(entry) for name, entry in publishes.items()
        }
        return cls(**values)


def _section(values: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    section = values.get(key)
    if section is None:
        return {}
    if not isinstance(section, Mapping):
        raise ConfigValidationError(ValidationErrors({key: "must be a mapping"}))
    return section


def _known_fields(cls, data: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigValidationError(
            ValidationErrors({cls.__name__: "must be a mapping"})
        )
    names = {f.name for f in dataclasses.fields(cls)}
    unknown = ValidationErrors(
        {key: "unknown field" for key in data if key not in names}
    )
    if unknown:
        raise ConfigValidationError(unknown)
    return dict(data)


def _queue_from_dict(data: Optional[Mapping[str, Any]]) -> QueueConfig:
    return QueueConfig(**_known_fields(QueueConfig, data))


def _exchange_from_dict(data: Optional[Mapping[str, Any]]) -> ExchangeConfig:
    values = _known_fields(ExchangeConfig, data)
    values["queue"] = _queue_from_dict(values.get("queue"))
    return ExchangeConfig(**values)


def _publish_from_dict(data: Optional[Mapping[str, Any]]) -> PublishConfig:
    values = _known_fields(PublishConfig, data)
    values["exchange"] = _exchange_from_dict(values.get("exchange"))
    return PublishConfig(**values)


def _consume_from_dict(data: Optional[Mapping[str, Any]]) -> ConsumeConfig:
    values = _known_fields(ConsumeConfig, data)
    values["exchange"] = _exchange_from_dict(values.get("exchange"))
    return ConsumeConfig(**values)


def load_config(path: str, overrides: Optional[Mapping[str, Any]] = None) -> Config:
    """
    Load a Config from a JSON file.

    Args:
        path: Path to a JSON document shaped like ``Config.from_dict`` input
        overrides: Top-level values replacing the file's, ``None`` values are ignored

    Returns:
        The loaded, not yet validated, Config
    """
    with open(path, encoding="utf-8") as config_file:
        data = json.load(config_file)

    if not isinstance(data, dict):
        raise ConfigValidationError(ValidationErrors({"Config": "must be a mapping"}))

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    logger.debug("Loaded configuration from %s", path)
    return Config.from_dict(data)
