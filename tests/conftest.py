"""
Shared pytest fixtures.

Broker stand-ins used by the unittest-style store tests live in
``tests.broker_fakes``; the fixtures here provide configuration documents
for the config and CLI tests.
"""

import json

import pytest


@pytest.fixture
def config_data() -> dict:
    """A valid configuration document with one publish and one consume entry."""
    return {
        "host": "localhost",
        "port": "5672",
        "username": "guest",
        "password": "guest",
        "publishes": {
            "orders": {
                "mandatory": False,
                "exchange": {
                    "name": "orders",
                    "type": "direct",
                    "durable": True,
                    "routing_key": "orders.created",
                },
            },
        },
        "consumes": {
            "orders_worker": {
                "name": "orders-worker",
                "auto_ack": False,
                "exchange": {
                    "name": "orders",
                    "type": "direct",
                    "durable": True,
                    "routing_key": "orders.created",
                    "queue": {
                        "name": "orders.created",
                        "durable": True,
                        "args": {"x-message-ttl": 60000},
                    },
                },
            },
        },
    }


@pytest.fixture
def config_file(tmp_path, config_data):
    """Path to a JSON file holding ``config_data``."""
    path = tmp_path / "amqp.json"
    path.write_text(json.dumps(config_data), encoding="utf-8")
    return path


@pytest.fixture
def write_config(tmp_path):
    """Write an arbitrary document to a JSON file and return its path."""

    def _write(data, name: str = "config.json"):
        path = tmp_path / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return _write
