"""
Resolution of rule actions into dispositions
"""
import logging
from typing import Optional, Protocol

from .errors import ActionResolutionError
from .schema import ActionConfig, AllowAction, BlockAction, EndpointInfo, ResolvedAction, RouteAction

logger = logging.getLogger(__name__)


class EndpointLookup(Protocol):
    def get_endpoint(self, endpoint_id: str) -> Optional[EndpointInfo]:
        ...


class ActionResolver:
    """Maps a rule action to allow, block or a validated route"""

    def __init__(self, endpoints: EndpointLookup):
        self.endpoints = endpoints

    def resolve(self, action: ActionConfig) -> ResolvedAction:
        if isinstance(action, AllowAction):
            return ResolvedAction(disposition='allow')

        if isinstance(action, BlockAction):
            # Accepted but delivered nowhere; no bounce is sent
            logger.info('Guard block: email accepted and dropped')
            return ResolvedAction(disposition='block')

        if isinstance(action, RouteAction):
            endpoint = self._active_endpoint(action.endpoint_id)
            return ResolvedAction(
                disposition='route',
                endpoint_id=endpoint.id,
                endpoint_type=endpoint.type,
            )

        raise ActionResolutionError(f"Unsupported action: {action!r}")

    def validate(self, action: ActionConfig) -> None:
        """Write-time check; raises ActionResolutionError for a bad route"""
        if isinstance(action, RouteAction):
            self._active_endpoint(action.endpoint_id)

    def _active_endpoint(self, endpoint_id: str) -> EndpointInfo:
        endpoint = self.endpoints.get_endpoint(endpoint_id)
        if endpoint is None:
            raise ActionResolutionError(f"Endpoint {endpoint_id} not found", endpoint_id)
        if not endpoint.is_active:
            raise ActionResolutionError(f"Endpoint {endpoint_id} is inactive", endpoint_id)
        return endpoint
