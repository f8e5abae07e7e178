# /flowgate/services/db_service.py

import logging
from motor.motor_asyncio import AsyncIOMotorClient
from bson import ObjectId
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any

from flowgate.config.settings import settings
from flowgate.models.context import ChannelConfig, ConversationContextSnapshot
from flowgate.models.data_source import DataSource, DataSourceConnection
from flowgate.models.exchange import FlowToken
from flowgate.models.flow import FlowDefinition
from flowgate.services.connection_chain import validate_dependency
from flowgate.services.errors import ConnectionConfigError
from flowgate.utils.circuit_breaker import CircuitBreaker
from flowgate.utils.metrics import database_operations_counter

logger = logging.getLogger(__name__)

# Collections shared with the chatbot engine and the administration side.
# This service only reads them, except for the context write on completion
# and connection saves.
CONTEXTS = "conversation_contexts"
CHATBOTS = "chatbots"
FLOWS = "whatsapp_flows"
DATA_SOURCES = "data_sources"
CONNECTIONS = "data_source_connections"
CHANNEL_CONFIGS = "whatsapp_configs"
OAUTH_TOKENS = "oauth_tokens"


def _id_query(value: str) -> Dict[str, Any]:
    """Matches documents keyed either by ObjectId or by a plain string id."""
    if ObjectId.is_valid(value):
        return {"_id": {"$in": [ObjectId(value), value]}}
    return {"_id": value}


def _with_string_id(document: Dict[str, Any]) -> Dict[str, Any]:
    document = dict(document)
    document["id"] = str(document.pop("_id"))
    return document


class DatabaseService:
    """Owns the MongoDB client and the shared failure handling of the stores."""

    def __init__(self, mongo_uri: str):
        try:
            self.client = AsyncIOMotorClient(
                mongo_uri,
                maxPoolSize=settings.max_pool_size,
                minPoolSize=settings.min_pool_size,
                tls=settings.mongo_ssl,
                serverSelectionTimeoutMS=5000,
                connectTimeoutMS=10000
            )
            self.db = self.client.get_default_database()
            self.circuit_breaker = CircuitBreaker("mongodb")
            logger.info("MongoDB client initialized successfully.")
        except Exception as e:
            logger.error(f"Error initializing MongoDB client: {e}")
            raise

    async def _safe_db_operation(
        self,
        operation,
        name: str,
        default_return: Any = None
    ) -> Any:
        """
        Execute database operation with consistent error handling.

        Args:
            operation: Async callable to execute
            name: Operation label for metrics
            default_return: Value to return on failure

        Returns:
            Operation result or default_return on failure
        """
        try:
            result = await self.circuit_breaker.call(operation)
            database_operations_counter.labels(operation=name, status="success").inc()
            return result
        except Exception as e:
            logger.exception(f"Database operation '{name}' failed: {type(e).__name__}")
            database_operations_counter.labels(operation=name, status="failed").inc()
            return default_return

    def _now_utc(self) -> datetime:
        return datetime.now(timezone.utc)

    async def create_indexes(self) -> None:
        """Create the lookup indexes this service relies on."""
        indexes = [
            (FLOWS, [("whatsapp_flow_id", 1)], {}),
            (CONNECTIONS, [("dataSourceId", 1)], {}),
            (CHANNEL_CONFIGS, [("is_active", 1), ("version", -1)], {}),
            (OAUTH_TOKENS, [("user_id", 1), ("provider", 1)], {"unique": True}),
        ]

        for collection, keys, options in indexes:
            try:
                await self.db[collection].create_index(keys, **options)
                logger.debug(f"Created index on {collection}: {keys}")
            except Exception as e:
                logger.error(f"Failed to create index on {collection} {keys}: {e}")

    async def health_check(self) -> bool:
        try:
            await self.client.admin.command("ping")
            return True
        except Exception as e:
            logger.error(f"MongoDB health check failed: {e}")
            return False


class ContextStore:
    """Conversation contexts written by the chatbot engine."""

    def __init__(self, db_service: DatabaseService):
        self.db_service = db_service

    async def get(self, context_id: str) -> Optional[ConversationContextSnapshot]:
        doc = await self.db_service._safe_db_operation(
            lambda: self.db_service.db[CONTEXTS].find_one(_id_query(context_id)),
            "get_context",
        )
        if not doc:
            return None
        return ConversationContextSnapshot(
            id=str(doc["_id"]),
            variables=doc.get("variables") or {},
            chatbot_id=str(doc["chatbot_id"]) if doc.get("chatbot_id") else None,
            current_node_id=doc.get("current_node_id"),
            owner_ref=doc.get("owner_ref") or doc.get("phone_number"),
        )

    async def save(self, context: ConversationContextSnapshot) -> bool:
        """Overwrites the context variables. No version check: last writer wins."""
        result = await self.db_service._safe_db_operation(
            lambda: self.db_service.db[CONTEXTS].update_one(
                _id_query(context.id),
                {"$set": {"variables": context.variables, "updated_at": self.db_service._now_utc()}},
            ),
            "save_context",
        )
        return bool(result and result.matched_count)


class FlowDefinitionStore:
    def __init__(self, db_service: DatabaseService, context_store: ContextStore):
        self.db_service = db_service
        self.context_store = context_store

    async def get_by_external_id(self, external_id: str) -> Optional[FlowDefinition]:
        doc = await self.db_service._safe_db_operation(
            lambda: self.db_service.db[FLOWS].find_one({"whatsapp_flow_id": external_id}),
            "get_flow",
        )
        if not doc:
            logger.warning(f"No flow stored for external id {external_id}")
            return None
        try:
            return FlowDefinition.from_document(doc)
        except ValueError as e:
            logger.error(f"Stored flow {external_id} is invalid: {e}")
            return None

    async def get_by_token(
        self,
        token: FlowToken,
        context: Optional[ConversationContextSnapshot] = None,
    ) -> Optional[FlowDefinition]:
        """
        Follows token -> conversation context -> chatbot -> Flow node ->
        external flow id. Pass the already loaded `context` to avoid reading
        it twice.
        """
        if not token.has_session or not token.node_id:
            return None

        if context is None:
            context = await self.context_store.get(token.context_id)
        if context is None or not context.chatbot_id:
            logger.warning(f"No chatbot context found for flow token context {token.context_id}")
            return None

        chatbot = await self.db_service._safe_db_operation(
            lambda: self.db_service.db[CHATBOTS].find_one(_id_query(context.chatbot_id), {"nodes": 1}),
            "get_chatbot",
        )
        if not chatbot:
            logger.warning(f"Chatbot {context.chatbot_id} not found")
            return None

        node = next((n for n in chatbot.get("nodes") or [] if n.get("id") == token.node_id), None)
        external_id = ((node or {}).get("data") or {}).get("whatsappFlowId")
        if not external_id:
            logger.warning(f"Node {token.node_id} does not reference a WhatsApp Flow")
            return None

        return await self.get_by_external_id(external_id)


class DataSourceStore:
    def __init__(self, db_service: DatabaseService):
        self.db_service = db_service

    async def get_data_source(self, data_source_id: str) -> Optional[DataSource]:
        doc = await self.db_service._safe_db_operation(
            lambda: self.db_service.db[DATA_SOURCES].find_one(_id_query(data_source_id)),
            "get_data_source",
        )
        if not doc:
            return None
        data_source = DataSource.model_validate(_with_string_id(doc))
        if not data_source.is_active:
            logger.warning(f"Data source {data_source_id} is inactive")
            return None
        return data_source

    async def save_data_source(self, data_source: DataSource) -> bool:
        """Upserts a data source. Raises ConnectionConfigError when its auth settings are incomplete."""
        try:
            data_source.check_auth_config()
        except ValueError as e:
            raise ConnectionConfigError(f"Data source {data_source.id}: {e}") from e

        document = data_source.model_dump(by_alias=True, exclude={"id"}, mode="json")
        result = await self.db_service._safe_db_operation(
            lambda: self.db_service.db[DATA_SOURCES].replace_one(_id_query(data_source.id), document, upsert=True),
            "save_data_source",
        )
        return result is not None

    async def get_connection(self, connection_id: str) -> Optional[DataSourceConnection]:
        doc = await self.db_service._safe_db_operation(
            lambda: self.db_service.db[CONNECTIONS].find_one(_id_query(connection_id)),
            "get_connection",
        )
        if not doc:
            return None
        connection = DataSourceConnection.model_validate(_with_string_id(doc))
        if not connection.is_active:
            logger.warning(f"Connection {connection_id} is inactive")
            return None
        return connection

    async def save_connection(self, connection: DataSourceConnection) -> bool:
        """Validates and upserts a connection. Raises ConnectionConfigError when invalid."""
        validate_dependency(connection)
        if connection.depends_on_connection_id:
            parent = await self.get_connection(connection.depends_on_connection_id)
            if parent is None:
                logger.warning(
                    f"Connection {connection.id} depends on unknown connection {connection.depends_on_connection_id}"
                )

        document = connection.model_dump(by_alias=True, exclude={"id"}, mode="json")
        result = await self.db_service._safe_db_operation(
            lambda: self.db_service.db[CONNECTIONS].replace_one(_id_query(connection.id), document, upsert=True),
            "save_connection",
        )
        return result is not None


class SecretStore:
    """
    Channel secrets. The active config document wins; settings provide the
    fallback for single-tenant deployments.
    """

    def __init__(self, db_service: DatabaseService):
        self.db_service = db_service

    async def get_active_config(self) -> ChannelConfig:
        doc = await self.db_service._safe_db_operation(
            lambda: self.db_service.db[CHANNEL_CONFIGS].find_one({"is_active": True}, sort=[("version", -1)]),
            "get_channel_config",
        ) or {}
        return ChannelConfig(
            version=int(doc.get("version") or 0),
            app_secret=doc.get("app_secret") or settings.whatsapp_app_secret,
            private_key_pem=doc.get("flow_private_key") or settings.whatsapp_flow_private_key,
            private_key_passphrase=(
                doc.get("flow_private_key_passphrase") or settings.whatsapp_flow_private_key_passphrase
            ),
        )

    async def get_private_key(self) -> Optional[str]:
        return (await self.get_active_config()).private_key_pem

    async def get_app_secret(self) -> Optional[str]:
        return (await self.get_active_config()).app_secret


class OAuthTokenStore:
    """Calendar OAuth tokens stored per chatbot owner."""

    def __init__(self, db_service: DatabaseService):
        self.db_service = db_service

    async def get_access_token(self, user_id: str, provider: str = "google") -> Optional[str]:
        doc = await self.db_service._safe_db_operation(
            lambda: self.db_service.db[OAUTH_TOKENS].find_one({"user_id": user_id, "provider": provider}),
            "get_oauth_token",
        )
        if not doc or not doc.get("access_token"):
            logger.warning(f"No {provider} token stored for user {user_id}")
            return None
        if doc.get("is_active") is False:
            logger.warning(f"{provider} token for user {user_id} is inactive")
            return None

        expires_at = doc.get("expires_at")
        if isinstance(expires_at, datetime):
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at <= self.db_service._now_utc():
                logger.warning(f"{provider} token for user {user_id} has expired")
                return None
        return doc["access_token"]

    async def list_users_with_provider(self, provider: str = "google") -> List[Dict[str, Any]]:
        """Owners holding an active, unexpired token for `provider`."""
        query = {
            "provider": provider,
            "is_active": {"$ne": False},
            "$or": [{"expires_at": None}, {"expires_at": {"$gt": self.db_service._now_utc()}}],
        }

        async def _query():
            cursor = self.db_service.db[OAUTH_TOKENS].find(query, {"user_id": 1, "user_name": 1, "email": 1})
            return await cursor.to_list(length=100)

        docs = await self.db_service._safe_db_operation(_query, "list_oauth_users", default_return=[])
        return [
            {"id": str(doc["user_id"]), "name": doc.get("user_name") or doc.get("email") or str(doc["user_id"]), "email": doc.get("email")}
            for doc in docs
        ]


db_service = DatabaseService(settings.mongo_atlas_uri)
context_store = ContextStore(db_service)
flow_store = FlowDefinitionStore(db_service, context_store)
data_source_store = DataSourceStore(db_service)
secret_store = SecretStore(db_service)
oauth_token_store = OAuthTokenStore(db_service)
