# /flowgate/services/flow_exchange.py

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from flowgate.config import strings
from flowgate.config.settings import settings
from flowgate.models.context import ConversationContextSnapshot
from flowgate.models.exchange import ERROR_SCREEN, SUCCESS_SCREEN, ExchangeRequest, FlowAction, FlowToken
from flowgate.models.flow import ComponentDataSourceConfig, DataItem, FlowDefinition, FlowExecutionContext, IntegrationConfig
from flowgate.services.cache_service import CacheService, build_component_key, cache_service
from flowgate.services.data_source_service import DataSourceService, data_source_service
from flowgate.services.db_service import ContextStore, FlowDefinitionStore, context_store, flow_store
from flowgate.services.errors import ConfigurationMissingError, UnknownActionError
from flowgate.services.integrations.registry import IntegrationRegistry, integration_registry
from flowgate.services.legacy_handlers import LegacyScreenHandler, legacy_screen_handler
from flowgate.services.screen_planner import ScreenTransitionPlanner, screen_planner
from flowgate.utils.metrics import component_fetch_counter, exchange_counter, screen_transition_counter

# The exchange state machine. Component data is resolved through an ordered
# chain of tiers; the first tier with an applicable config answers and the
# rest are skipped:
#
#   1. integration handlers   (FlowDefinition.integration_configs)
#   2. generic data sources   (FlowDefinition.data_source_configs)
#   3. legacy catalogue flows (screens known by name / context flow_type)

logger = logging.getLogger(__name__)

FLOW_TYPE_VARIABLE = "flow_type"


def select_configs(configs: Sequence[Any], initial: bool, form_data: Dict[str, Any]) -> List[Any]:
    """Initial configs have no dependsOn; dependent ones fire when their field was submitted."""
    if initial:
        return [c for c in configs if c.is_initial]
    return [c for c in configs if c.depends_on and c.depends_on in form_data]


@dataclass
class TierResult:
    tier: str
    data: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    failed: List[str] = field(default_factory=list)

    def screen_data(self, base: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        merged = {**(base or {}), **self.data}
        if self.failed:
            merged["error_message"] = strings.COMPONENT_FETCH_FAILED
        return merged


class IntegrationTier:
    name = "integration"

    def __init__(self, registry: IntegrationRegistry):
        self.registry = registry

    def select(self, definition: FlowDefinition, initial: bool, form_data: Dict[str, Any]) -> List[IntegrationConfig]:
        return select_configs(definition.integration_configs, initial, form_data)

    async def fetch(self, config: IntegrationConfig, form_data: Dict[str, Any], exec_context: FlowExecutionContext) -> List[DataItem]:
        return await self.registry.fetch_component_data(config, form_data, exec_context)


class DataSourceTier:
    name = "data_source"

    def __init__(self, service: DataSourceService):
        self.service = service

    def select(self, definition: FlowDefinition, initial: bool, form_data: Dict[str, Any]) -> List[ComponentDataSourceConfig]:
        return select_configs(definition.data_source_configs, initial, form_data)

    async def fetch(self, config: ComponentDataSourceConfig, form_data: Dict[str, Any], exec_context: FlowExecutionContext) -> List[DataItem]:
        return await self.service.fetch_component(config, form_data)


class FlowExchangeOrchestrator:
    """
    Turns one decrypted ExchangeRequest into the plaintext response. The
    context record is read once per exchange and written only when a Flow
    completes. Concurrent exchanges for the same token are not serialized.
    """

    def __init__(
        self,
        contexts: Optional[ContextStore] = None,
        flows: Optional[FlowDefinitionStore] = None,
        registry: Optional[IntegrationRegistry] = None,
        data_sources: Optional[DataSourceService] = None,
        legacy: Optional[LegacyScreenHandler] = None,
        cache: Optional[CacheService] = None,
        planner: Optional[ScreenTransitionPlanner] = None,
    ):
        self.contexts = contexts or context_store
        self.flows = flows or flow_store
        self.tiers = [
            IntegrationTier(registry or integration_registry),
            DataSourceTier(data_sources or data_source_service),
        ]
        self.legacy = legacy or legacy_screen_handler
        self.cache = cache or cache_service
        self.planner = planner or screen_planner

    async def handle(self, request: ExchangeRequest) -> Dict[str, Any]:
        handlers = {
            FlowAction.PING.value: self.handle_ping,
            FlowAction.INIT.value: self.handle_init,
            FlowAction.DATA_EXCHANGE.value: self.handle_data_exchange,
            FlowAction.BACK.value: self.handle_back,
            FlowAction.ERROR_NOTIFICATION.value: self.handle_error_notification,
        }
        handler = handlers.get(request.action)
        if handler is None:
            exchange_counter.labels(action="unknown", status="rejected").inc()
            raise UnknownActionError(request.action)

        try:
            response = await handler(request)
        except ConfigurationMissingError as e:
            logger.warning(f"{request.action} on screen {request.screen}: {e}")
            response = {"screen": ERROR_SCREEN, "data": {"error_message": strings.CONFIGURATION_MISSING}}

        exchange_counter.labels(action=request.action, status="success").inc()
        if response.get("screen"):
            screen_transition_counter.labels(screen=response["screen"]).inc()
        return response

    # ---------------- Actions ---------------- #

    async def handle_ping(self, request: ExchangeRequest) -> Dict[str, Any]:
        return {"data": {"status": "active"}}

    async def handle_error_notification(self, request: ExchangeRequest) -> Dict[str, Any]:
        logger.warning(f"Client reported an error on screen {request.screen}: {request.data}")
        return {"data": {"acknowledged": True}}

    async def handle_init(self, request: ExchangeRequest) -> Dict[str, Any]:
        token, context, definition = await self._load_session(request.flow_token)
        carried = context.public_variables() if context else {}

        if definition is not None:
            exec_context = self._execution_context(token, definition)
            result = await self._resolve_tiers(definition, True, request.data, exec_context)
            if result is not None:
                return self._screen(definition.first_screen_id, result.screen_data(base=carried))

        flow_type = self._flow_type(context)
        if self.legacy.matches(request.action, None, flow_type):
            return await self._run_legacy(self.legacy.handle_init(flow_type), request.screen)

        if definition is None or not definition.first_screen_id:
            raise ConfigurationMissingError(f"No flow definition for token {request.flow_token}")
        return self._screen(definition.first_screen_id, carried)

    async def handle_data_exchange(self, request: ExchangeRequest) -> Dict[str, Any]:
        token, context, definition = await self._load_session(request.flow_token)
        form_data = request.data

        if definition is not None:
            exec_context = self._execution_context(token, definition)
            result = await self._resolve_tiers(definition, False, form_data, exec_context)
            if result is not None:
                next_screen = self.planner.next(definition, request.screen) or request.screen
                return self._screen(next_screen, result.screen_data())

        flow_type = self._flow_type(context)
        if self.legacy.matches(request.action, request.screen, flow_type):
            return await self._run_legacy(
                self.legacy.handle_data_exchange(request.screen, form_data, flow_type), request.screen
            )

        if definition is None:
            raise ConfigurationMissingError(f"No flow definition for token {request.flow_token}")

        if self.planner.is_last(definition, request.screen):
            return await self._complete(request, context)

        next_screen = self.planner.next(definition, request.screen)
        if next_screen is None:
            logger.warning(f"Screen {request.screen} is unknown to flow {definition.id}")
            return self._screen(ERROR_SCREEN, {"error_message": strings.UNKNOWN_SCREEN})
        return self._screen(next_screen, dict(form_data))

    async def handle_back(self, request: ExchangeRequest) -> Dict[str, Any]:
        token, context, definition = await self._load_session(request.flow_token)
        echo = self._screen(request.screen, dict(request.data))
        if definition is None:
            return echo

        screen_ids = definition.screen_ids()
        if request.screen not in screen_ids or screen_ids.index(request.screen) <= 0:
            return echo

        target = self.planner.previous(definition, request.screen)
        data = dict(request.data)
        target_screen = definition.get_screen(target)
        if target_screen is not None and target_screen.refresh_on_back:
            exec_context = self._execution_context(token, definition)
            result = await self._resolve_tiers(definition, True, request.data, exec_context, bypass_cache=True)
            if result is not None:
                data = result.screen_data(base=data)
        return self._screen(target, data)

    # ---------------- Helpers ---------------- #

    async def _load_session(self, raw_token: Optional[str]):
        token = FlowToken.parse(raw_token)
        if not token.has_session:
            logger.info("Flow token carries no session")
            return token, None, None

        context = await self.contexts.get(token.context_id)
        if context is None:
            logger.warning(f"Conversation context {token.context_id} not found")
            return token, None, None

        definition = await self.flows.get_by_token(token, context)
        return token, context, definition

    def _execution_context(self, token: FlowToken, definition: FlowDefinition) -> FlowExecutionContext:
        return FlowExecutionContext(
            flow_token=token.raw,
            context_id=token.context_id,
            node_id=token.node_id,
            chatbot_user_id=definition.owner_user_id,
        )

    def _flow_type(self, context: Optional[ConversationContextSnapshot]) -> Optional[str]:
        return context.variables.get(FLOW_TYPE_VARIABLE) if context else None

    @staticmethod
    def _screen(screen: Optional[str], data: Dict[str, Any]) -> Dict[str, Any]:
        return {"screen": screen, "data": data}

    async def _resolve_tiers(
        self,
        definition: FlowDefinition,
        initial: bool,
        form_data: Dict[str, Any],
        exec_context: FlowExecutionContext,
        bypass_cache: bool = False,
    ) -> Optional[TierResult]:
        for tier in self.tiers:
            configs = tier.select(definition, initial, form_data)
            if configs:
                logger.debug(f"Tier {tier.name} answers with {len(configs)} component(s)")
                return await self._fetch_components(
                    tier, configs, form_data, exec_context, definition, use_cache=initial, bypass_cache=bypass_cache
                )
        return None

    async def _fetch_components(
        self,
        tier,
        configs: Sequence[Any],
        form_data: Dict[str, Any],
        exec_context: FlowExecutionContext,
        definition: FlowDefinition,
        use_cache: bool,
        bypass_cache: bool,
    ) -> TierResult:
        async def load(config) -> List[Dict[str, Any]]:
            items = await tier.fetch(config, form_data, exec_context)
            return [item.to_wire() for item in items]

        async def cached_load(config) -> List[Dict[str, Any]]:
            # Initial components never depend on submitted fields, so INIT and
            # refresh-on-BACK share one entry per component.
            key = build_component_key(definition.id, config.component_name, {})
            return await self.cache.get_or_set(
                key, lambda: load(config), ttl=settings.integration_cache_ttl, bypass=bypass_cache
            )

        async def fetch_one(config):
            # The deadline covers the Redis round trips as well as the fetch.
            path = cached_load(config) if use_cache else load(config)
            try:
                items = await asyncio.wait_for(path, timeout=settings.integration_timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning(f"Fetch for component {config.component_name} timed out")
                component_fetch_counter.labels(tier=tier.name, status="timeout").inc()
                return config.component_name, [], True
            except Exception as e:
                logger.error(f"Fetch for component {config.component_name} failed: {e}")
                component_fetch_counter.labels(tier=tier.name, status="error").inc()
                return config.component_name, [], True
            component_fetch_counter.labels(tier=tier.name, status="success").inc()
            return config.component_name, items, False

        result = TierResult(tier=tier.name)
        for component_name, items, failed in await asyncio.gather(*(fetch_one(c) for c in configs)):
            result.data[component_name] = items
            if failed:
                result.failed.append(component_name)
        return result

    async def _run_legacy(self, coro, screen: Optional[str]) -> Dict[str, Any]:
        try:
            return await asyncio.wait_for(coro, timeout=settings.integration_timeout_seconds)
        except Exception as e:
            logger.error(f"Legacy handler failed on screen {screen}: {e}")
            return self._screen(ERROR_SCREEN, {"error_message": strings.COMPONENT_FETCH_FAILED})

    async def _complete(self, request: ExchangeRequest, context: Optional[ConversationContextSnapshot]) -> Dict[str, Any]:
        flow_data = dict(request.data)
        if context is not None:
            updated = context.with_flow_output(flow_data)
            if updated is None:
                logger.info(f"Context {context.id} is not awaiting a flow response")
            elif not await self.contexts.save(updated):
                logger.error(f"Failed to store flow response in context {context.id}")
            else:
                logger.info(f"Flow response stored in '{context.pending_output_var}' of context {context.id}")

        return self._screen(
            SUCCESS_SCREEN,
            {"extension_message_response": {"params": {"flow_token": request.flow_token, **flow_data}}},
        )


flow_exchange = FlowExchangeOrchestrator()
