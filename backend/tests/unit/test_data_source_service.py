# backend/tests/unit/test_data_source_service.py

from unittest.mock import AsyncMock, MagicMock

import pytest

from flowgate.models.data_source import AuthType, DataSource, DataSourceConnection
from flowgate.models.flow import ComponentDataSourceConfig, DataItem, TransformConfig
from flowgate.services.data_source_service import DataSourceService
from flowgate.services.errors import IntegrationError
from flowgate.services.http_fetcher import FetchResponse


@pytest.fixture
def fetcher():
    fetcher = MagicMock()
    fetcher.request = AsyncMock(return_value=FetchResponse(
        status=200, latency_ms=2.0, data={"items": [{"id": 1, "name": "Lagos"}, {"id": 2, "name": "Abuja"}]},
    ))
    return fetcher


@pytest.fixture
def store():
    store = MagicMock()
    store.get_data_source = AsyncMock(return_value=DataSource(
        id="ds1", name="Geo", base_url="https://geo.test/api", auth_type=AuthType.API_KEY,
        auth_token="k", auth_header_name="X-Key",
    ))
    store.get_connection = AsyncMock(return_value=None)
    return store


@pytest.mark.asyncio
async def test_fetch_component_with_filter_param(fetcher, store):
    service = DataSourceService(fetcher=fetcher, store=store)
    config = ComponentDataSourceConfig(
        componentName="city", dataSourceId="ds1", endpoint="/cities", dataKey="items",
        dependsOn="state", filterParam="state_id",
    )

    items = await service.fetch_component(config, {"state": "NG-LA"})

    assert items == [DataItem(id="1", title="Lagos"), DataItem(id="2", title="Abuja")]
    args, kwargs = fetcher.request.call_args
    assert args == ("GET", "https://geo.test/api/cities?state_id=NG-LA")
    assert kwargs["headers"]["X-Key"] == "k"


@pytest.mark.asyncio
async def test_fetch_component_via_chained_connection(fetcher, store):
    store.get_connection = AsyncMock(return_value=DataSourceConnection(
        id="cities", dataSourceId="ds1", endpoint="/countries/${country}/cities",
        defaultParams={"limit": 5}, dependsOnConnectionId="states", paramMapping={"state": "$.state"},
    ))
    service = DataSourceService(fetcher=fetcher, store=store)
    config = ComponentDataSourceConfig(
        componentName="city", dataSourceId="ds1", connectionId="cities", dataKey="items", dependsOn="state",
    )

    items = await service.fetch_component(config, {"country": "NG", "state": "LA"})

    assert [i.title for i in items] == ["Lagos", "Abuja"]
    args, _ = fetcher.request.call_args
    assert args == ("GET", "https://geo.test/api/countries/NG/cities?limit=5&state=LA")


@pytest.mark.asyncio
async def test_execute_connection_prefers_connection_transform(fetcher, store):
    service = DataSourceService(fetcher=fetcher, store=store)
    connection = DataSourceConnection(
        id="states", dataSourceId="ds1", endpoint="/states", method="POST", dataKey="items",
        defaultBody={"q": "${term}"}, transformConfig=TransformConfig(idField="name", titleField="name"),
    )

    items = await service.execute_connection(connection, {"term": "la"}, transform=TransformConfig())

    assert items[0] == DataItem(id="Lagos", title="Lagos")
    args, kwargs = fetcher.request.call_args
    assert args[0] == "POST"
    assert kwargs["body"] == {"q": "la"}


@pytest.mark.asyncio
async def test_missing_connection_raises(fetcher, store):
    service = DataSourceService(fetcher=fetcher, store=store)
    config = ComponentDataSourceConfig(componentName="city", dataSourceId="ds1", connectionId="gone")

    with pytest.raises(IntegrationError, match="Connection not found"):
        await service.fetch_component(config, {})


@pytest.mark.asyncio
async def test_missing_data_source_raises(fetcher, store):
    store.get_data_source = AsyncMock(return_value=None)
    service = DataSourceService(fetcher=fetcher, store=store)
    config = ComponentDataSourceConfig(componentName="city", dataSourceId="gone")

    with pytest.raises(IntegrationError, match="DataSource not found"):
        await service.fetch_component(config, {})
    fetcher.request.assert_not_awaited()
