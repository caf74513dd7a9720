import logging
import threading
from dataclasses import dataclass
from typing import Optional

import typer
from amqpstorm import Message
from typing_extensions import Annotated

from amqp_store.config import Config, load_config
from amqp_store.constants import DEFAULT_DIAL_TIMEOUT
from amqp_store.exceptions import ConfigValidationError, StoreError
from amqp_store.logging_config import setup_logging
from amqp_store.store import Store

app = typer.Typer()
logger = logging.getLogger(__name__)


@dataclass
class BrokerOptions:
    host: Optional[str] = None
    port: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    timeout: float = DEFAULT_DIAL_TIMEOUT

    def overrides(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "password": self.password,
        }


def _load_valid_config(ctx: typer.Context, config_path: str) -> Config:
    options: BrokerOptions = ctx.obj
    try:
        config = load_config(config_path, overrides=options.overrides())
        config.validate()
    except ConfigValidationError as e:
        typer.echo(f"invalid configuration: {e.errors}", err=True)
        raise typer.Exit(code=1)
    except (OSError, ValueError) as e:
        typer.echo(f"unable to load configuration {config_path}: {e}", err=True)
        raise typer.Exit(code=1)
    return config


@app.command()
def validate(
    ctx: typer.Context,
    config_path: Annotated[str, typer.Argument(help="Path to a JSON config file")],
):
    """Validate a configuration file."""
    config = _load_valid_config(ctx, config_path)
    typer.echo(
        f"configuration OK: {len(config.publishes)} publish, "
        f"{len(config.consumes)} consume entries"
    )


@app.command()
def publish(
    ctx: typer.Context,
    config_path: Annotated[str, typer.Argument(help="Path to a JSON config file")],
    name: Annotated[str, typer.Argument(help="Name of the publish entry")],
    body: Annotated[str, typer.Argument(help="Message body")],
    content_type: Annotated[str, typer.Option()] = "text/plain",
):
    """Publish a single message using a named publish entry."""
    config = _load_valid_config(ctx, config_path)
    if name not in config.publishes:
        raise typer.BadParameter(f"unknown publish entry '{name}'", param_hint="NAME")

    try:
        with Store(config.dsn(), timeout=ctx.obj.timeout) as store:
            store.publish(
                config.publishes[name],
                body.encode("utf-8"),
                properties={"content_type": content_type},
            )
    except StoreError as e:
        logger.error("Publish failed: %s", e)
        raise typer.Exit(code=1)
    typer.echo(f"published to {config.publishes[name].exchange.name}")


@app.command()
def consume(
    ctx: typer.Context,
    config_path: Annotated[str, typer.Argument(help="Path to a JSON config file")],
    name: Annotated[str, typer.Argument(help="Name of the consume entry")],
    max_messages: Annotated[
        Optional[int], typer.Option(help="Stop after this many messages")
    ] = None,
):
    """Consume from a named consume entry, logging each message, until Ctrl-C."""
    config = _load_valid_config(ctx, config_path)
    if name not in config.consumes:
        raise typer.BadParameter(f"unknown consume entry '{name}'", param_hint="NAME")
    consume_config = config.consumes[name]

    done = threading.Event()
    received = 0

    def handler(message: Message) -> None:
        nonlocal received
        logger.info(
            "Received message on %s: %r", message.method.get("routing_key"), message.body
        )
        if not consume_config.auto_ack:
            message.ack()
        received += 1
        if max_messages is not None and received >= max_messages:
            done.set()

    try:
        with Store(config.dsn(), timeout=ctx.obj.timeout) as store:
            subscription = store.subscribe(consume_config, handler)
            logger.info("Waiting for messages on %s", subscription.queue_name)
            try:
                while not done.wait(timeout=1.0):
                    if not subscription.is_active:
                        logger.warning("Consumer stopped by the broker")
                        break
            except KeyboardInterrupt:
                logger.info("Interrupted, shutting down")
    except StoreError as e:
        logger.error("Consume failed: %s", e)
        raise typer.Exit(code=1)
    typer.echo(f"received {received} message(s)")


@app.callback()
def callback(
    ctx: typer.Context,
    host: Annotated[Optional[str], typer.Option(envvar="AMQP_HOST")] = None,
    port: Annotated[Optional[str], typer.Option(envvar="AMQP_PORT")] = None,
    username: Annotated[Optional[str], typer.Option(envvar="AMQP_USERNAME")] = None,
    password: Annotated[Optional[str], typer.Option(envvar="AMQP_PASSWORD")] = None,
    timeout: Annotated[
        float, typer.Option(envvar="AMQP_TIMEOUT", help="Dial timeout in seconds")
    ] = DEFAULT_DIAL_TIMEOUT,
    log_level: Annotated[str, typer.Option(envvar="AMQP_STORE_LOG_LEVEL")] = "INFO",
):
    """Broker settings given here override the ones in the config file."""
    # Setup logging first
    setup_logging(level=log_level, component=ctx.invoked_subcommand)
    ctx.obj = BrokerOptions(
        host=host,
        port=port,
        username=username,
        password=password,
        timeout=timeout,
    )


if __name__ == "__main__":
    app()
