from typing import Any, Dict, Literal, Optional, Union
import logging

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class CancelledParams(BaseModel):
    """Parameters for a cancelled notification."""

    requestId: Union[str, int]
    reason: Optional[str] = None


class CancelledNotification(BaseModel):
    """
    A notification indicating that a previously sent request has been cancelled.
    """

    jsonrpc: Literal["2.0"] = "2.0"
    method: Literal["notifications/cancelled"] = "notifications/cancelled"
    params: CancelledParams


class InitializedNotification(BaseModel):
    """Sent by the client once the initialize exchange has completed."""

    jsonrpc: Literal["2.0"] = "2.0"
    method: Literal["notifications/initialized"] = "notifications/initialized"
    params: Optional[Dict[str, Any]] = None


ClientNotification = Union[CancelledNotification, InitializedNotification]

NOTIFICATION_MODELS = {
    "notifications/cancelled": CancelledNotification,
    "notifications/initialized": InitializedNotification,
}


def parse_client_notification(data: Dict[str, Any]) -> Optional[ClientNotification]:
    """
    Parse a client notification from raw data based on its method.

    Returns:
        The parsed notification, or None for methods this server ignores.

    Raises:
        ValidationError: If a known notification is malformed
    """
    model = NOTIFICATION_MODELS.get(data.get("method", ""))
    if model is None:
        logger.debug(f"Ignoring unknown notification method: {data.get('method')!r}")
        return None
    return model.model_validate(data)
