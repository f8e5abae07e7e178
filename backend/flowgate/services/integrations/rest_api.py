# /flowgate/services/integrations/rest_api.py

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from flowgate.models.data_source import DataSource
from flowgate.models.flow import DataItem, FlowExecutionContext, IntegrationConfig, IntegrationType
from flowgate.services.errors import IntegrationError
from flowgate.services.db_service import DataSourceStore, data_source_store
from flowgate.services.http_fetcher import HttpFetcher, http_fetcher
from flowgate.services.integrations.base import (
    IntegrationHandler,
    replace_variables,
    replace_variables_in_object,
)
from flowgate.services.transformer import DataItemTransformer, extract_array

logger = logging.getLogger(__name__)

DEFAULT_DATA_KEY = "data"


def build_url(base_url: str, endpoint: str, query_params: Optional[Dict[str, Any]] = None) -> str:
    """Joins base URL and endpoint with exactly one slash and appends non-null query params."""
    if base_url and endpoint:
        url = f"{base_url.rstrip('/')}/{endpoint.lstrip('/')}"
    else:
        url = endpoint or base_url

    clean = {k: v for k, v in (query_params or {}).items() if v is not None}
    if clean:
        separator = "&" if "?" in url else "?"
        url = f"{url}{separator}{urlencode(clean, doseq=True)}"
    return url


class RestApiIntegrationHandler(IntegrationHandler):
    """
    Generic REST integration. `params` of the config:

        dataSourceId  stored DataSource providing base URL, auth and headers
        endpoint      path or absolute URL, `${field}` placeholders allowed
        method        GET (default) or POST
        queryParams   dict, placeholders allowed
        bodyTemplate  POST body, placeholders allowed at any depth
        dataKey       dot-path of the record array (default "data")
    """

    def __init__(self, fetcher: Optional[HttpFetcher] = None, store: Optional[DataSourceStore] = None):
        self.fetcher = fetcher or http_fetcher
        self.data_source_store = store or data_source_store

    def can_handle(self, config: IntegrationConfig) -> bool:
        return config.integration_type == IntegrationType.REST_API.value

    async def fetch_data(
        self,
        config: IntegrationConfig,
        form_data: Dict[str, Any],
        context: Optional[FlowExecutionContext] = None,
    ) -> List[DataItem]:
        params = config.params
        logger.info(f"Fetching REST API data for component: {config.component_name}")

        data_source: Optional[DataSource] = None
        if params.get("dataSourceId"):
            data_source = await self.data_source_store.get_data_source(params["dataSourceId"])
            if data_source is None:
                raise IntegrationError(
                    f"DataSource not found: {params['dataSourceId']}",
                    config.integration_type,
                    config.component_name,
                )

        endpoint = replace_variables(params.get("endpoint") or "", form_data)
        query_params = replace_variables_in_object(dict(params.get("queryParams") or {}), form_data)
        if config.filter_param and config.depends_on and form_data.get(config.depends_on) is not None:
            query_params.setdefault(config.filter_param, form_data[config.depends_on])

        url = build_url(data_source.base_url if data_source else "", endpoint, query_params)
        if not url:
            raise IntegrationError("REST integration has no endpoint", config.integration_type, config.component_name)

        method = (params.get("method") or "GET").upper()
        body = None
        if method == "POST" and params.get("bodyTemplate"):
            body = replace_variables_in_object(params["bodyTemplate"], form_data)

        timeout = None
        if data_source and data_source.timeout:
            timeout = data_source.timeout / 1000

        headers = data_source.build_headers() if data_source else DataSource(id="inline").build_headers()
        response = await self.fetcher.request(method, url, headers=headers, body=body, timeout=timeout)

        records = extract_array(response.data, params.get("dataKey") or DEFAULT_DATA_KEY)
        items = DataItemTransformer.transform_many(records, config.transform_to)
        logger.info(f"Transformed {len(items)} items for component: {config.component_name}")
        return items
