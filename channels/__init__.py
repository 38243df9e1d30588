"""Outbound messaging gateways."""
from channels.base import (
    MessagingGateway,
    CircuitBreaker,
    GatewayMetrics,
)
from channels.messenger_adapter import MessengerAdapter
from channels.console_adapter import ConsoleGateway

__all__ = [
    "MessagingGateway", "CircuitBreaker", "GatewayMetrics",
    "MessengerAdapter", "ConsoleGateway",
]
