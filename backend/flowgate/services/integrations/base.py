# /flowgate/services/integrations/base.py

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from flowgate.models.flow import DataItem, FlowExecutionContext, IntegrationConfig, SourceType
from flowgate.services.transformer import get_nested_value

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\$\{([^}]+)\}")


def replace_variables(text: str, form_data: Dict[str, Any]) -> str:
    """
    Substitutes `${field}` placeholders (dot paths allowed) from the form
    data. Unknown fields keep the literal placeholder and log a warning.
    """
    if not text or not isinstance(text, str):
        return text

    def _substitute(match: re.Match) -> str:
        name = match.group(1).strip()
        value = get_nested_value(form_data, name)
        if value is None:
            logger.warning(f"Variable '{name}' not found in form data, keeping placeholder")
            return match.group(0)
        return str(value)

    return PLACEHOLDER_PATTERN.sub(_substitute, text)


def replace_variables_in_object(value: Any, form_data: Dict[str, Any]) -> Any:
    """Applies `replace_variables` to every string inside nested dicts and lists."""
    if isinstance(value, str):
        return replace_variables(value, form_data)
    if isinstance(value, dict):
        return {key: replace_variables_in_object(item, form_data) for key, item in value.items()}
    if isinstance(value, list):
        return [replace_variables_in_object(item, form_data) for item in value]
    return value


def resolve_source_id(
    config: IntegrationConfig,
    form_data: Dict[str, Any],
    context: Optional[FlowExecutionContext],
) -> Optional[str]:
    """Resolves which account/resource the config targets: the flow owner, a static id, or a form variable."""
    if config.source_type == SourceType.OWNER:
        if context and context.chatbot_user_id:
            return context.chatbot_user_id
        logger.warning("Owner sourceType requested but no chatbot user in context")
        return None

    if config.source_type == SourceType.STATIC:
        if config.source_id:
            return config.source_id
        logger.warning("Static sourceType requested but no sourceId provided")
        return None

    if config.source_type == SourceType.VARIABLE:
        value = form_data.get(config.source_variable) if config.source_variable else None
        if value:
            return str(value)
        logger.warning(f"Variable sourceType requested but '{config.source_variable}' not found in form data")
        return None

    return None


class IntegrationHandler(ABC):
    """
    Strategy for one integration family. The registry asks each handler in
    order whether it `can_handle` a config and delegates to the first match.
    """

    @abstractmethod
    def can_handle(self, config: IntegrationConfig) -> bool:
        ...

    @abstractmethod
    async def fetch_data(
        self,
        config: IntegrationConfig,
        form_data: Dict[str, Any],
        context: Optional[FlowExecutionContext] = None,
    ) -> List[DataItem]:
        ...
