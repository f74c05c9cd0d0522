"""
Base transport classes.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)

GLOBAL_ALERT_METHOD = "ReceiveGlobalAlert"
USER_ALERT_METHOD = "ReceiveAlert"


class TransportError(Exception):
    """Delivery through a transport failed."""


@dataclass
class NotificationResult:
    """Result of a notification attempt."""

    success: bool
    channel: str
    error: Optional[str] = None

    @classmethod
    def sent(cls, channel: str) -> "NotificationResult":
        return cls(success=True, channel=channel)

    @classmethod
    def failed(cls, channel: str, error: str) -> "NotificationResult":
        return cls(success=False, channel=channel, error=error)


def group_name(user_id: int) -> str:
    """Session group holding every live session of a user."""
    return f"user_{user_id}"


class Transport(ABC):
    """Abstract base class for live delivery channels."""

    channel: str = ""

    @abstractmethod
    def broadcast_to_all(self, method: str, payload: dict[str, Any]) -> None:
        """
        Deliver a message to every subscriber.

        Args:
            method: Client-side handler name
            payload: Message body

        Raises:
            TransportError: If delivery failed
        """
        pass

    @abstractmethod
    def broadcast_to_group(
        self, user_id: int, method: str, payload: dict[str, Any]
    ) -> None:
        """
        Deliver a message to the sessions of one user.

        Raises:
            TransportError: If delivery failed
        """
        pass


class CompositeTransport(Transport):
    """Fans a message out to several transports.

    Every transport is attempted; any failure fails the delivery.
    """

    def __init__(self, transports: list[Transport]):
        self.transports = transports
        self.channel = "+".join(t.channel for t in transports)

    def broadcast_to_all(self, method: str, payload: dict[str, Any]) -> None:
        self._fan_out(lambda t: t.broadcast_to_all(method, payload))

    def broadcast_to_group(
        self, user_id: int, method: str, payload: dict[str, Any]
    ) -> None:
        self._fan_out(lambda t: t.broadcast_to_group(user_id, method, payload))

    def _fan_out(self, send) -> None:
        errors = []
        for transport in self.transports:
            try:
                send(transport)
            except Exception as e:
                logger.warning(f"{transport.channel} delivery failed: {e}")
                errors.append(f"{transport.channel}: {e}")
        if errors:
            raise TransportError("; ".join(errors))


def build_transport(config, user_repo=None) -> Transport:
    """
    Create the configured transport.

    Args:
        config: Config instance
        user_repo: UserRepository used to resolve per-user Discord webhooks

    Returns:
        A single transport, or a CompositeTransport when several are enabled

    Raises:
        ValueError: If no transport is enabled
    """
    notifications = config.notifications
    transports: list[Transport] = []

    if notifications.hub.enabled:
        from .hub import SessionHub

        transports.append(SessionHub())

    if notifications.discord.enabled:
        from .discord import DiscordTransport

        transports.append(
            DiscordTransport(
                global_webhook_url=notifications.discord.global_webhook_url,
                user_repo=user_repo,
                mention_on_critical=notifications.discord.mention_on_critical,
            )
        )

    if not transports:
        raise ValueError("No notification transport enabled")
    if len(transports) == 1:
        return transports[0]
    return CompositeTransport(transports)
