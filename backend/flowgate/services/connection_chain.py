# /flowgate/services/connection_chain.py

import logging
import warnings
from functools import lru_cache
from typing import Any, Dict, Optional

from jsonpath_ng.ext import parse as parse_jsonpath

from flowgate.models.data_source import DataSourceConnection
from flowgate.services.errors import ConnectionConfigError, JSONPathResolutionWarning

logger = logging.getLogger(__name__)


@lru_cache(maxsize=256)
def _compile(expression: str):
    return parse_jsonpath(expression)


class ConnectionChainResolver:
    """
    Resolves the request parameters of a chained connection from the record
    the user picked in the parent connection's component.
    """

    @staticmethod
    def resolve_params(
        connection: DataSourceConnection,
        context_record: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """
        Starts from the connection's default params and overlays one value per
        `param_mapping` entry, taking the first JSONPath match. A mapping that
        matches nothing keeps the default (or stays absent) and emits a
        JSONPathResolutionWarning.
        """
        params = dict(connection.default_params)
        if not connection.param_mapping:
            return params

        record = context_record or {}
        for param_name, expression in connection.param_mapping.items():
            try:
                matches = _compile(expression).find(record)
            except Exception as e:
                matches = []
                logger.error(f"Invalid JSONPath '{expression}' for param '{param_name}' on connection {connection.id}: {e}")

            if matches:
                params[param_name] = matches[0].value
                continue

            message = (
                f"JSONPath '{expression}' matched nothing for param '{param_name}' "
                f"on connection {connection.id}; keeping default"
            )
            logger.warning(message)
            warnings.warn(message, JSONPathResolutionWarning, stacklevel=2)

        return params

    @staticmethod
    def validate_dependency(connection: DataSourceConnection) -> None:
        """
        Rejects a connection that depends on itself. Longer cycles (A -> B -> A)
        are not detected here.
        """
        if connection.depends_on_connection_id and connection.depends_on_connection_id == connection.id:
            raise ConnectionConfigError(f"Connection {connection.id} cannot depend on itself")
        if connection.param_mapping and not connection.depends_on_connection_id:
            logger.warning(f"Connection {connection.id} has a param mapping but no parent connection")
        for param_name, expression in connection.param_mapping.items():
            try:
                _compile(expression)
            except Exception as e:
                raise ConnectionConfigError(
                    f"Connection {connection.id}: invalid JSONPath '{expression}' for '{param_name}': {e}"
                ) from e


resolve_params = ConnectionChainResolver.resolve_params
validate_dependency = ConnectionChainResolver.validate_dependency
