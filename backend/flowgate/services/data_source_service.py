# /flowgate/services/data_source_service.py

import logging
from typing import Any, Dict, List, Optional

from flowgate.models.data_source import DataSource, DataSourceConnection
from flowgate.models.flow import ComponentDataSourceConfig, DataItem, TransformConfig
from flowgate.services.connection_chain import ConnectionChainResolver
from flowgate.services.db_service import DataSourceStore, data_source_store
from flowgate.services.errors import IntegrationError
from flowgate.services.http_fetcher import HttpFetcher, http_fetcher
from flowgate.services.integrations.base import replace_variables, replace_variables_in_object
from flowgate.services.integrations.rest_api import build_url
from flowgate.services.transformer import DataItemTransformer, extract_array

# The generic data-source tier: components bound directly to a stored
# DataSource (and optionally a stored connection) instead of an integration
# handler.

logger = logging.getLogger(__name__)

TIER = "data_source"


class DataSourceService:
    def __init__(self, fetcher: Optional[HttpFetcher] = None, store: Optional[DataSourceStore] = None):
        self.fetcher = fetcher or http_fetcher
        self.store = store or data_source_store

    async def fetch_component(self, config: ComponentDataSourceConfig, form_data: Dict[str, Any]) -> List[DataItem]:
        """
        Fetches one component's options. With `connection_id` the stored
        connection drives the request (chained connections resolve their
        params from the submitted form data); otherwise the config's own
        endpoint is used, with the dependsOn value passed as `filter_param`.
        """
        if config.connection_id:
            return await self._fetch_via_connection(config, form_data)

        data_source = await self._load_data_source(config.data_source_id, config.component_name)
        query_params = {}
        if config.filter_param and config.depends_on and form_data.get(config.depends_on) is not None:
            query_params[config.filter_param] = form_data[config.depends_on]

        endpoint = replace_variables(config.endpoint, form_data)
        records = await self._request(data_source, "GET", endpoint, query_params, None, config.data_key)
        return DataItemTransformer.transform_many(records, config.transform_to)

    async def execute_connection(
        self,
        connection: DataSourceConnection,
        context_record: Optional[Dict[str, Any]] = None,
        transform: Optional[TransformConfig] = None,
        component_name: Optional[str] = None,
    ) -> List[DataItem]:
        """Runs a stored connection. `context_record` feeds the JSONPath param mapping of chained connections."""
        data_source = await self._load_data_source(connection.data_source_id, component_name)

        if connection.is_chained:
            params = ConnectionChainResolver.resolve_params(connection, context_record)
        else:
            params = dict(connection.default_params)

        variables = context_record or {}
        endpoint = replace_variables(connection.endpoint, variables)
        body = replace_variables_in_object(connection.default_body, variables) if connection.default_body else None

        records = await self._request(
            data_source, connection.method.value, endpoint, params, body, connection.data_key
        )
        mapping = connection.transform_config or transform or TransformConfig()
        return DataItemTransformer.transform_many(records, mapping)

    async def _fetch_via_connection(self, config: ComponentDataSourceConfig, form_data: Dict[str, Any]) -> List[DataItem]:
        connection = await self.store.get_connection(config.connection_id)
        if connection is None:
            raise IntegrationError(f"Connection not found: {config.connection_id}", TIER, config.component_name)
        if connection.data_key is None:
            connection = connection.model_copy(update={"data_key": config.data_key})
        return await self.execute_connection(connection, form_data, config.transform_to, config.component_name)

    async def _load_data_source(self, data_source_id: str, component_name: Optional[str]) -> DataSource:
        data_source = await self.store.get_data_source(data_source_id)
        if data_source is None:
            raise IntegrationError(f"DataSource not found: {data_source_id}", TIER, component_name)
        return data_source

    async def _request(
        self,
        data_source: DataSource,
        method: str,
        endpoint: str,
        params: Dict[str, Any],
        body: Any,
        data_key: Optional[str],
    ) -> List[Any]:
        url = build_url(data_source.base_url, endpoint, params)
        timeout = data_source.timeout / 1000 if data_source.timeout else None
        logger.info(f"Fetching from data source {data_source.name or data_source.id}: {method} {endpoint}")
        response = await self.fetcher.request(method, url, headers=data_source.build_headers(), body=body, timeout=timeout)
        return extract_array(response.data, data_key)


data_source_service = DataSourceService()
