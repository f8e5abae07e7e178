# /flowgate/services/legacy_handlers.py

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from flowgate.config import strings
from flowgate.config.settings import settings
from flowgate.models.exchange import FlowAction
from flowgate.models.flow import DataItem
from flowgate.services.errors import HttpFetchError
from flowgate.services.http_fetcher import HttpFetcher, http_fetcher

# Hardcoded per-screen logic for the catalogue flows that predate stored
# Flow definitions (stock management, price update, low-stock report). It is
# the last tier consulted and only answers screens it knows by name.

logger = logging.getLogger(__name__)

STOCK_MANAGEMENT = "stock_management"
PRICE_UPDATE = "price_update"
LOW_STOCK_REPORT = "low_stock_report"

LEGACY_SUCCESS_SCREEN = "SUCCESS_SCREEN"
LEGACY_ERROR_SCREEN = "ERROR_SCREEN"

# Screens that belong to exactly one legacy flow. PRODUCT_SCREEN and
# CONFIRM_SCREEN are shared and need the flow_type context variable.
SCREEN_FLOW_TYPES = {
    "CATEGORY_SCREEN": STOCK_MANAGEMENT,
    "STOCK_INFO_SCREEN": STOCK_MANAGEMENT,
    "BRAND_SCREEN": PRICE_UPDATE,
    "PRICE_INFO_SCREEN": PRICE_UPDATE,
    "DISCOUNT_SCREEN": PRICE_UPDATE,
    "FILTER_SCREEN": LOW_STOCK_REPORT,
    "REPORT_SCREEN": LOW_STOCK_REPORT,
    "ACTION_SCREEN": LOW_STOCK_REPORT,
    "STOCK_UPDATE_SCREEN": LOW_STOCK_REPORT,
    "ORDER_SCREEN": LOW_STOCK_REPORT,
}

LOW_STOCK_SORTS = {"stock_asc": "stock:asc", "stock_desc": "stock:desc", "name_asc": "name:asc"}
PAGE_SIZE = 100


def format_price(price: Any) -> str:
    try:
        return f"{float(price or 0):,.2f}"
    except (TypeError, ValueError):
        return "0.00"


def discount_percent(original_price: float, sale_price: float) -> int:
    if not original_price:
        return 0
    return round((original_price - sale_price) / original_price * 100)


def _screen(screen: str, **data) -> Dict[str, Any]:
    return {"screen": screen, "data": data}


def _error(message: str) -> Dict[str, Any]:
    return _screen(LEGACY_ERROR_SCREEN, error_message=message)


class CatalogueClient:
    """Minimal client for the Strapi-style catalogue API behind the legacy flows."""

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None, fetcher: Optional[HttpFetcher] = None):
        self.base_url = (base_url if base_url is not None else settings.legacy_catalogue_url or "").rstrip("/")
        self.token = token if token is not None else settings.legacy_catalogue_token
        self.fetcher = fetcher or http_fetcher

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = await self.fetcher.request("GET", f"{self.base_url}{path}", headers=self._headers(), params=params)
        return (response.data or {}).get("data") if isinstance(response.data, dict) else None

    async def _list(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        # Option lists degrade to empty on catalogue errors.
        try:
            return await self._get(path, params) or []
        except HttpFetchError as e:
            logger.error(f"Catalogue request {path} failed: {e}")
            return []

    async def categories(self) -> List[DataItem]:
        return [
            DataItem(id=str(c.get("slug") or c.get("id")), title=str(c.get("name", "")))
            for c in await self._list("/categories")
        ]

    async def brands(self) -> List[DataItem]:
        return [
            DataItem(id=str(b.get("slug") or b.get("name")), title=str(b.get("name", "")))
            for b in await self._list("/brands")
        ]

    async def products(self, filters: Dict[str, Any], sort: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {**filters, "pagination[pageSize]": PAGE_SIZE, "populate": "*"}
        if sort:
            params["sort"] = sort
        return await self._list("/products", params)

    async def product(self, product_id: str) -> Dict[str, Any]:
        product = await self._get(f"/products/{product_id}", {"populate": "*"})
        if not product:
            raise HttpFetchError(f"Product {product_id} not found", status=404)
        return product

    async def update_product(self, product_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.fetcher.request(
            "PUT", f"{self.base_url}/products/{product_id}", headers=self._headers(), body={"data": fields}
        )
        return (response.data or {}).get("data") if isinstance(response.data, dict) else {}


def _product_id(product: Dict[str, Any]) -> str:
    return str(product.get("documentId") or product.get("id"))


def _stock_items(products: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        DataItem(
            id=_product_id(p),
            title=strings.LEGACY_PRODUCT_TITLE.format(name=p.get("name"), stock=p.get("stock") or 0),
        ).to_wire()
        for p in products
    ]


class LegacyScreenHandler:
    """
    Answers INIT for a known `flow_type` and data_exchange for screens
    registered below. `matches` is the tier predicate used by the orchestrator.
    """

    def __init__(self, client: Optional[CatalogueClient] = None):
        self.client = client or CatalogueClient()
        self.init_handlers: Dict[str, Callable[[], Awaitable[Dict[str, Any]]]] = {
            STOCK_MANAGEMENT: self._init_stock_management,
            PRICE_UPDATE: self._init_price_update,
            LOW_STOCK_REPORT: self._init_low_stock_report,
        }
        self.screen_handlers: Dict[tuple, Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]] = {
            (STOCK_MANAGEMENT, "CATEGORY_SCREEN"): self._products_by_category,
            (STOCK_MANAGEMENT, "PRODUCT_SCREEN"): self._stock_info,
            (STOCK_MANAGEMENT, "CONFIRM_SCREEN"): self._confirm_stock,
            (PRICE_UPDATE, "BRAND_SCREEN"): self._products_by_brand,
            (PRICE_UPDATE, "PRODUCT_SCREEN"): self._price_info,
            (PRICE_UPDATE, "PRICE_INFO_SCREEN"): self._discount_preview,
            (PRICE_UPDATE, "CONFIRM_SCREEN"): self._confirm_price,
            (LOW_STOCK_REPORT, "FILTER_SCREEN"): self._low_stock_report,
            (LOW_STOCK_REPORT, "REPORT_SCREEN"): self._report_product,
            (LOW_STOCK_REPORT, "ACTION_SCREEN"): self._choose_action,
            (LOW_STOCK_REPORT, "STOCK_UPDATE_SCREEN"): self._report_stock_update,
            (LOW_STOCK_REPORT, "ORDER_SCREEN"): self._order_request,
        }

    def resolve_flow_type(self, screen: Optional[str], flow_type: Optional[str]) -> Optional[str]:
        if flow_type in self.init_handlers:
            return flow_type
        return SCREEN_FLOW_TYPES.get(screen or "")

    def matches(self, action: str, screen: Optional[str], flow_type: Optional[str]) -> bool:
        if not self.client.configured:
            return False
        if action == FlowAction.INIT.value:
            return flow_type in self.init_handlers
        if action == FlowAction.DATA_EXCHANGE.value:
            return (self.resolve_flow_type(screen, flow_type), screen) in self.screen_handlers
        return False

    async def handle_init(self, flow_type: str) -> Dict[str, Any]:
        logger.debug(f"Legacy INIT for flow type {flow_type}")
        return await self.init_handlers[flow_type]()

    async def handle_data_exchange(self, screen: str, data: Dict[str, Any], flow_type: Optional[str]) -> Dict[str, Any]:
        handler = self.screen_handlers[(self.resolve_flow_type(screen, flow_type), screen)]
        return await handler(data or {})

    # ---------------- Stock management ---------------- #

    async def _init_stock_management(self) -> Dict[str, Any]:
        categories = await self.client.categories()
        return _screen("CATEGORY_SCREEN", categories=[c.to_wire() for c in categories])

    async def _products_by_category(self, data: Dict[str, Any]) -> Dict[str, Any]:
        products = await self.client.products({"filters[category][slug][$eq]": data.get("selected_category")})
        return _screen("PRODUCT_SCREEN", products=_stock_items(products))

    async def _stock_info(self, data: Dict[str, Any]) -> Dict[str, Any]:
        product = await self.client.product(data.get("selected_product"))
        return _screen(
            "STOCK_INFO_SCREEN",
            product_name=product.get("name"),
            product_sku=product.get("sku") or "N/A",
            current_stock=str(product.get("stock") or 0),
        )

    async def _confirm_stock(self, data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            new_stock = int(data.get("new_stock"))
            old_product = await self.client.product(data.get("product_id"))
            await self.client.update_product(data.get("product_id"), {"stock": new_stock})
        except (HttpFetchError, TypeError, ValueError) as e:
            logger.error(f"Stock update failed: {e}")
            return _error(strings.LEGACY_STOCK_UPDATE_FAILED.format(error=e))
        return _screen(
            LEGACY_SUCCESS_SCREEN,
            success_message=strings.LEGACY_STOCK_UPDATED,
            product_name=old_product.get("name"),
            old_stock=str(old_product.get("stock") or 0),
            new_stock=str(new_stock),
        )

    # ---------------- Price update ---------------- #

    async def _init_price_update(self) -> Dict[str, Any]:
        brands = await self.client.brands()
        return _screen("BRAND_SCREEN", brands=[b.to_wire() for b in brands])

    async def _products_by_brand(self, data: Dict[str, Any]) -> Dict[str, Any]:
        brand = data.get("selected_brand")
        products = await self.client.products({"filters[brand][name][$eq]": brand})
        items = [
            DataItem(
                id=_product_id(p),
                title=strings.LEGACY_PRODUCT_PRICE_TITLE.format(name=p.get("name"), price=format_price(p.get("price"))),
            ).to_wire()
            for p in products
        ]
        return _screen("PRODUCT_SCREEN", brand_name=brand, products=items)

    async def _price_info(self, data: Dict[str, Any]) -> Dict[str, Any]:
        product = await self.client.product(data.get("selected_product"))
        discount = product.get("discountPercent")
        return _screen(
            "PRICE_INFO_SCREEN",
            product_name=product.get("name"),
            product_sku=product.get("sku") or "N/A",
            current_price=format_price(product.get("price")),
            original_price=format_price(product.get("originalPrice") or product.get("price")),
            current_discount=f"{discount}%" if discount else "0%",
        )

    async def _discount_preview(self, data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            new_price = float(data.get("new_price"))
            original = float(data["new_original_price"]) if data.get("new_original_price") else new_price
        except (TypeError, ValueError):
            return _error(strings.LEGACY_PRICE_UPDATE_FAILED.format(error="invalid price"))
        return _screen(
            "DISCOUNT_SCREEN",
            calculated_discount=f"{discount_percent(original, new_price)}%",
            price_difference=format_price(original - new_price),
        )

    async def _confirm_price(self, data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            product_id = data.get("product_id")
            new_price = float(data.get("new_price"))
            fields: Dict[str, Any] = {"price": new_price}
            if data.get("new_original_price"):
                fields["originalPrice"] = float(data["new_original_price"])
            if data.get("discount_percent"):
                fields["discountPercent"] = int(str(data["discount_percent"]).rstrip("%"))
            old_product = await self.client.product(product_id)
            await self.client.update_product(product_id, fields)
        except (HttpFetchError, TypeError, ValueError) as e:
            logger.error(f"Price update failed: {e}")
            return _error(strings.LEGACY_PRICE_UPDATE_FAILED.format(error=e))
        return _screen(
            LEGACY_SUCCESS_SCREEN,
            success_message=strings.LEGACY_PRICE_UPDATED,
            product_name=old_product.get("name"),
            old_price=format_price(old_product.get("price")),
            new_price=format_price(new_price),
            discount_percent=f"{fields.get('discountPercent', 0)}%",
        )

    # ---------------- Low stock report ---------------- #

    async def _init_low_stock_report(self) -> Dict[str, Any]:
        return _screen("FILTER_SCREEN")

    async def _low_stock_report(self, data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            threshold = int(data.get("stock_threshold") or 10)
        except (TypeError, ValueError):
            threshold = 10
        sort = LOW_STOCK_SORTS.get(data.get("sort_by") or "stock_asc", "stock:asc")
        products = await self.client.products({"filters[stock][$lte]": threshold}, sort=sort)
        return _screen("REPORT_SCREEN", total_products=str(len(products)), low_stock_products=_stock_items(products))

    async def _report_product(self, data: Dict[str, Any]) -> Dict[str, Any]:
        product = await self.client.product(data.get("selected_product"))
        return _screen(
            "ACTION_SCREEN",
            product_name=product.get("name"),
            product_sku=product.get("sku") or "N/A",
            current_stock=str(product.get("stock") or 0),
            product_price=format_price(product.get("price")),
        )

    async def _choose_action(self, data: Dict[str, Any]) -> Dict[str, Any]:
        action_type = data.get("action_type")
        if action_type == "update_stock":
            return _screen("STOCK_UPDATE_SCREEN")
        if action_type == "create_order":
            return _screen("ORDER_SCREEN")
        return _error(strings.LEGACY_INVALID_ACTION)

    async def _report_stock_update(self, data: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._confirm_stock(data)
        if response["screen"] != LEGACY_SUCCESS_SCREEN:
            return response
        result = response["data"]
        return _screen(
            LEGACY_SUCCESS_SCREEN,
            success_message=strings.LEGACY_STOCK_UPDATED,
            action_details=strings.LEGACY_STOCK_CHANGE.format(old=result["old_stock"], new=result["new_stock"]),
        )

    async def _order_request(self, data: Dict[str, Any]) -> Dict[str, Any]:
        logger.info(
            f"Order requested: product {data.get('product_id')}, quantity {data.get('order_quantity')}, "
            f"priority {data.get('order_priority')}"
        )
        return _screen(
            LEGACY_SUCCESS_SCREEN,
            success_message=strings.LEGACY_ORDER_REQUESTED,
            action_details=strings.LEGACY_ORDER_DETAILS.format(
                quantity=data.get("order_quantity"),
                priority=data.get("order_priority"),
                notes=data.get("order_notes") or "-",
            ),
        )


legacy_screen_handler = LegacyScreenHandler()
