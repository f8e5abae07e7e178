# /flowgate/services/screen_planner.py

import logging
from typing import Any, Optional

from flowgate.models.flow import FlowDefinition

logger = logging.getLogger(__name__)

COMPLETE_ACTION = "complete"
FOOTER_TYPE = "Footer"


def _has_complete_footer(node: Any) -> bool:
    """Searches a screen layout for a Footer whose on-click-action completes the Flow."""
    if isinstance(node, dict):
        if node.get("type") == FOOTER_TYPE:
            action = node.get("on-click-action") or {}
            if isinstance(action, dict) and action.get("name") == COMPLETE_ACTION:
                return True
        return any(_has_complete_footer(value) for value in node.values())
    if isinstance(node, list):
        return any(_has_complete_footer(item) for item in node)
    return False


class ScreenTransitionPlanner:
    """
    Pure next/previous/last computations over a FlowDefinition. The routing
    model wins when it has an entry for the screen; otherwise screens follow
    their declaration order.
    """

    @staticmethod
    def next(definition: FlowDefinition, current: Optional[str]) -> Optional[str]:
        routing = definition.routing_model or {}
        if current in routing:
            targets = routing[current] or []
            return targets[0] if targets else None

        screen_ids = definition.screen_ids()
        if current not in screen_ids:
            logger.debug(f"Screen {current} not in flow {definition.id}, no next screen")
            return None
        index = screen_ids.index(current)
        return screen_ids[index + 1] if index + 1 < len(screen_ids) else None

    @staticmethod
    def previous(definition: FlowDefinition, current: Optional[str]) -> Optional[str]:
        screen_ids = definition.screen_ids()
        if current not in screen_ids:
            return None
        index = screen_ids.index(current)
        if index <= 0:
            return None

        for source, targets in (definition.routing_model or {}).items():
            if current in (targets or []) and source != current:
                return source
        return screen_ids[index - 1]

    @staticmethod
    def is_last(definition: FlowDefinition, current: Optional[str]) -> bool:
        routing = definition.routing_model or {}
        if current in routing and not routing[current]:
            return True

        screen = definition.get_screen(current)
        if screen is None:
            return False
        if screen.terminal:
            return True
        if screen.layout and _has_complete_footer(screen.layout):
            return True

        has_routes = bool(routing.get(current))
        screen_ids = definition.screen_ids()
        return not has_routes and screen_ids[-1] == current


screen_planner = ScreenTransitionPlanner()
