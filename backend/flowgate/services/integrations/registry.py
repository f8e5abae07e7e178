# /flowgate/services/integrations/registry.py

import logging
from typing import Any, Dict, List, Optional

from flowgate.models.flow import DataItem, FlowExecutionContext, IntegrationConfig
from flowgate.services.errors import IntegrationError
from flowgate.services.integrations.base import IntegrationHandler
from flowgate.services.integrations.calendar import GoogleCalendarIntegrationHandler
from flowgate.services.integrations.rest_api import RestApiIntegrationHandler

logger = logging.getLogger(__name__)


class IntegrationRegistry:
    """
    Ordered list of integration handlers. Dispatch picks the first handler
    whose `can_handle` accepts the config; there is no catch-all handler.
    """

    def __init__(self, handlers: Optional[List[IntegrationHandler]] = None):
        self.handlers: List[IntegrationHandler] = list(handlers) if handlers is not None else [
            GoogleCalendarIntegrationHandler(),
            RestApiIntegrationHandler(),
        ]

    def register(self, handler: IntegrationHandler) -> None:
        self.handlers.append(handler)

    def get_handler(self, config: IntegrationConfig) -> Optional[IntegrationHandler]:
        return next((h for h in self.handlers if h.can_handle(config)), None)

    async def fetch_component_data(
        self,
        config: IntegrationConfig,
        form_data: Dict[str, Any],
        context: Optional[FlowExecutionContext] = None,
    ) -> List[DataItem]:
        """Raises IntegrationError when no handler matches or the handler fails."""
        handler = self.get_handler(config)
        if handler is None:
            raise IntegrationError(
                f"No handler registered for integration type '{config.integration_type}'",
                config.integration_type,
                config.component_name,
            )

        try:
            return await handler.fetch_data(config, form_data, context)
        except IntegrationError as e:
            e.integration_type = config.integration_type
            e.component_name = config.component_name
            raise
        except Exception as e:
            logger.error(f"{type(handler).__name__} failed for component {config.component_name}: {e}")
            raise IntegrationError(
                f"Failed to fetch data for {config.component_name}: {e}",
                config.integration_type,
                config.component_name,
                cause=e,
            ) from e


integration_registry = IntegrationRegistry()
