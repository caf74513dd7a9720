"""
Constants shared across the amqp_store package.
"""

# Exchange types understood by the broker without plugins
EXCHANGE_FANOUT = "fanout"
EXCHANGE_DIRECT = "direct"
EXCHANGE_TOPIC = "topic"

# rabbitmq-delayed-message-exchange plugin
EXCHANGE_DELAYED = "x-delayed-message"
DELAYED_TYPE_ARGUMENT = "x-delayed-type"

BASE_EXCHANGE_TYPES = frozenset([EXCHANGE_FANOUT, EXCHANGE_DIRECT, EXCHANGE_TOPIC])
EXCHANGE_TYPES = BASE_EXCHANGE_TYPES | {EXCHANGE_DELAYED}

DSN_SCHEME = "amqp"
DEFAULT_PORT = 5672
DEFAULT_VIRTUAL_HOST = "/"

# Dial parameters
HEARTBEAT_INTERVAL = 10
DEFAULT_DIAL_TIMEOUT = 5.0

# Pause between polls of the consume channel, in seconds
DISPATCH_IDLE_WAIT = 0.01

LOGGER_NAME = "amqp_store"
