"""Host platform connectors.

Connectors implement the engine's collaborator contracts (field reads,
field metadata, action execution) against an external system.
"""

from decisionflow.connectors.base import (
    AuthenticationError,
    ConnectorError,
    FieldNotFoundError,
    NotFoundError,
    RateLimitError,
)
from decisionflow.connectors.jira import JiraConnector

__all__ = [
    "AuthenticationError",
    "ConnectorError",
    "FieldNotFoundError",
    "JiraConnector",
    "NotFoundError",
    "RateLimitError",
]
