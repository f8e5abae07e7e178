# backend/tests/unit/test_models.py

import pytest

from flowgate.models.context import AWAITING_FLOW_RESPONSE_KEY, ChannelConfig, ConversationContextSnapshot
from flowgate.models.data_source import AuthType, DataSource, DataSourceConnection
from flowgate.models.exchange import FlowToken
from flowgate.models.flow import FlowDefinition, IntegrationConfig, SourceType

CONTEXT_ID = "11111111-1111-1111-1111-111111111111"


class TestFlowToken:

    def test_parse_context_and_node(self):
        token = FlowToken.parse(f"{CONTEXT_ID}-nodeA")
        assert token.has_session
        assert token.context_id == CONTEXT_ID
        assert token.node_id == "nodeA"

    def test_node_id_may_contain_dashes(self):
        token = FlowToken.parse(f"{CONTEXT_ID}-flow-node-7")
        assert token.context_id == CONTEXT_ID
        assert token.node_id == "flow-node-7"

    @pytest.mark.parametrize("raw", [None, "", "abc", CONTEXT_ID, "not-a-uuid-at-all-x-y"])
    def test_tokens_without_session(self, raw):
        token = FlowToken.parse(raw)
        assert not token.has_session
        assert token.raw == raw

    def test_build_and_parse_agree(self):
        raw = FlowToken.build(CONTEXT_ID, "nodeB")
        assert FlowToken.parse(raw).node_id == "nodeB"


class TestConversationContextSnapshot:

    def test_public_variables_hide_markers(self):
        context = ConversationContextSnapshot(
            id="c1", variables={"name": "Ann", AWAITING_FLOW_RESPONSE_KEY: "booking"}
        )
        assert context.public_variables() == {"name": "Ann"}
        assert context.pending_output_var == "booking"

    def test_with_flow_output_stores_submission_and_clears_marker(self):
        context = ConversationContextSnapshot(
            id="c1", variables={"name": "Ann", AWAITING_FLOW_RESPONSE_KEY: "booking"}
        )
        updated = context.with_flow_output({"slot": "slot_10_00"})

        assert updated.variables == {"name": "Ann", "booking": {"slot": "slot_10_00"}}
        # The original snapshot is untouched.
        assert AWAITING_FLOW_RESPONSE_KEY in context.variables

    def test_with_flow_output_without_marker(self):
        context = ConversationContextSnapshot(id="c1", variables={"name": "Ann"})
        assert context.with_flow_output({"x": 1}) is None


class TestChannelConfig:

    def test_snapshot_time_is_timezone_aware(self):
        config = ChannelConfig(version=2, app_secret="s")
        assert config.fetched_at.tzinfo is not None
        assert config.fetched_at.utcoffset().total_seconds() == 0


class TestFlowDefinition:

    def test_from_document_reads_flow_json_and_metadata(self):
        doc = {
            "_id": "f1",
            "whatsapp_flow_id": "wa-123",
            "name": "Booking",
            "userId": "owner-1",
            "flow_json": {
                "screens": [{"id": "WELCOME", "layout": {}}, {"id": "DONE", "terminal": True}],
                "routing_model": {"WELCOME": ["DONE"], "DONE": []},
            },
            "metadata": {
                "integrationConfigs": [
                    {"componentName": "slots", "integrationType": "google_calendar", "sourceType": "owner",
                     "action": "check_availability", "params": None},
                ],
                "dataSourceConfig": {"componentName": "products", "dataSourceId": "ds1", "endpoint": "/products"},
            },
        }
        definition = FlowDefinition.from_document(doc)

        assert definition.external_id == "wa-123"
        assert definition.owner_user_id == "owner-1"
        assert definition.first_screen_id == "WELCOME"
        assert definition.get_screen("DONE").terminal is True
        assert definition.integration_configs[0].source_type == SourceType.OWNER
        assert definition.integration_configs[0].params == {}
        assert definition.data_source_configs[0].data_source_id == "ds1"
        assert definition.data_source_configs[0].data_key == "data"

    def test_integration_config_initial_vs_dependent(self):
        initial = IntegrationConfig(componentName="state", integrationType="rest_api")
        dependent = IntegrationConfig(componentName="city", integrationType="rest_api", dependsOn="state")
        assert initial.is_initial
        assert not dependent.is_initial
        assert initial.transform_to.id_field == "id"
        assert initial.transform_to.title_field == "name"


class TestDataSource:

    def test_bearer_headers(self):
        source = DataSource(id="ds1", authType="BEARER", authToken="tok", headers={"X-Tenant": "t1"})
        headers = source.build_headers()
        assert headers["Authorization"] == "Bearer tok"
        assert headers["X-Tenant"] == "t1"
        assert headers["Content-Type"] == "application/json"

    def test_api_key_headers(self):
        source = DataSource(id="ds1", auth_type=AuthType.API_KEY, auth_token="k", auth_header_name="X-Key")
        assert source.build_headers()["X-Key"] == "k"

    def test_basic_headers_use_token_verbatim(self):
        source = DataSource(id="ds1", auth_type=AuthType.BASIC, auth_token="dXNlcjpwYXNz")
        assert source.build_headers()["Authorization"] == "Basic dXNlcjpwYXNz"

    def test_check_auth_config(self):
        DataSource(id="ds1").check_auth_config()
        with pytest.raises(ValueError, match="token is required"):
            DataSource(id="ds1", auth_type=AuthType.BEARER).check_auth_config()
        with pytest.raises(ValueError, match="Header name"):
            DataSource(id="ds1", auth_type=AuthType.API_KEY, auth_token="k").check_auth_config()

    def test_connection_null_mappings(self):
        connection = DataSourceConnection(
            id="c1", dataSourceId="ds1", defaultParams=None, paramMapping=None, dependsOnConnectionId="c0"
        )
        assert connection.default_params == {}
        assert connection.param_mapping == {}
        assert connection.is_chained
