import httpx
import asyncio
import json
from typing import Optional, Dict, Any, List, AsyncIterator
from datetime import datetime
import logging
from app.core.config import Settings
from app.schemas.entities import (
    CreateResult, RemoteCustomer, RemoteProduct, RemoteOrder,
    Warehouse, PaymentMethod, BankAccount,
)
from app.services.exceptions import (
    DolibarrError, ConfigError, TransportError, ApiError, DecodeError,
)

logger = logging.getLogger(__name__)

API_PATH = "/api/index.php"
REDACTED = "***REDACTED***"
STOCK_MOVEMENT_LABEL = "WooCommerce Sync"
PAGE_SIZE = 100

# Повторять при сетевых ошибках можно только идемпотентные запросы
IDEMPOTENT_METHODS = {"GET", "PUT", "DELETE", "HEAD"}

CANNED_ERRORS = {
    401: "Invalid API key. Please check your Dolibarr API configuration.",
    403: "Access denied. Please check your Dolibarr API permissions.",
    404: "Resource not found.",
    500: "Internal server error in Dolibarr.",
}

def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default

def _to_float(value: Any, default: Optional[float] = 0.0) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default

def parse_create_result(response: Any) -> CreateResult:
    """Dolibarr на POST возвращает голый ID; объект с id встречается у старых версий"""
    if isinstance(response, bool):
        raise DecodeError(f"Unexpected create response: {response!r}")
    if isinstance(response, int):
        return CreateResult(id=response)
    if isinstance(response, str) and response.strip().isdigit():
        return CreateResult(id=int(response.strip()))
    if isinstance(response, dict) and response.get("id") is not None:
        return CreateResult(id=_to_int(response["id"]))
    raise DecodeError(f"Unexpected create response: {response!r}")

class DolibarrClient:
    """Клиент для работы с REST API Dolibarr"""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        api_key_header: str = "DOLAPIKEY",
        verify_ssl: bool = True,
        timeout: int = 30,
        max_retries: int = 3,
        debug: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = (base_url or "").rstrip('/')
        self.api_key = api_key
        self.api_key_header = api_key_header
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.debug = debug
        self._transport = transport

        # Сессия HTTP
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "DolibarrClient":
        return cls(
            base_url=settings.DOLIBARR_URL,
            api_key=settings.DOLIBARR_API_KEY,
            api_key_header=settings.DOLIBARR_API_KEY_HEADER,
            verify_ssl=settings.DOLIBARR_SSL_VERIFY,
            timeout=settings.DOLIBARR_TIMEOUT,
            max_retries=settings.DOLIBARR_MAX_RETRIES,
            debug=settings.DEBUG_MODE,
            transport=transport,
        )

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    async def connect(self):
        """Создание HTTP сессии"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                verify=self.verify_ssl,
                transport=self._transport,
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            )
            logger.info(f"Connected to Dolibarr API at {self.base_url}")

    async def disconnect(self):
        """Закрытие HTTP сессии"""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Disconnected from Dolibarr API")

    def is_configured(self) -> bool:
        return bool(self.base_url) and bool(self.api_key)

    def set_credentials(self, base_url: str, api_key: str) -> None:
        self.base_url = (base_url or "").rstrip('/')
        self.api_key = api_key

    def _get_headers(self, extra_headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Получение заголовков для запросов"""
        headers = {
            self.api_key_header: self.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if extra_headers:
            headers.update(extra_headers)
        return headers

    def _sanitize_headers(self, headers: Dict[str, str]) -> Dict[str, str]:
        sanitized = dict(headers)
        for name in sanitized:
            if name.lower() == self.api_key_header.lower():
                sanitized[name] = REDACTED
        return sanitized

    @staticmethod
    def _parse_error_message(response: httpx.Response) -> str:
        try:
            decoded = response.json()
        except ValueError:
            decoded = None

        if isinstance(decoded, dict):
            error = decoded.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])

        if response.status_code in CANNED_ERRORS:
            return CANNED_ERRORS[response.status_code]
        return f"HTTP error {response.status_code}: {response.text[:200]}"

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Optional[Any] = None,
        extra_headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> Any:
        """Выполнение запроса к API Dolibarr.

        Сетевые ошибки идемпотентных запросов повторяются с экспоненциальной
        задержкой; POST не повторяется, чтобы не создать дубликат.
        """
        if not self.is_configured():
            raise ConfigError("Dolibarr API credentials not configured.")

        if self._client is None:
            await self.connect()

        method = method.upper()
        url = f"{self.base_url}{API_PATH}/{endpoint.lstrip('/')}"
        headers = self._get_headers(extra_headers)
        content = None
        if body is not None and method in ("POST", "PUT", "PATCH"):
            content = json.dumps(body)

        if self.debug:
            logger.debug(
                f"API Request: {method} {url}",
                extra={"headers": self._sanitize_headers(headers), "body": body if method != "GET" else None}
            )

        attempts = self.max_retries if method in IDEMPOTENT_METHODS else 1
        response = None
        for attempt in range(attempts):
            try:
                response = await self._client.request(
                    method=method,
                    url=url,
                    headers=headers,
                    params=params,
                    content=content
                )
                break
            except httpx.HTTPError as e:
                if attempt == attempts - 1:
                    logger.error(f"API Request Error: {e} ({method} {endpoint})")
                    raise TransportError(f"Connection failed: {e}", cause=e) from e

                # Экспоненциальная задержка
                wait_time = 2 ** attempt
                logger.warning(f"Retrying {method} {endpoint} in {wait_time}s... (attempt {attempt + 1})")
                await asyncio.sleep(wait_time)

        if self.debug:
            logger.debug(f"API Response: {response.status_code} {endpoint}", extra={"response_body": response.text[:2000]})

        if response.status_code >= 400:
            message = self._parse_error_message(response)
            logger.error(f"API Error {response.status_code}: {message} ({method} {endpoint})")
            try:
                payload = response.json()
            except ValueError:
                payload = response.text
            raise ApiError(response.status_code, message, payload)

        if not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"API Response JSON decode error: {e} ({endpoint})")
            raise DecodeError("Invalid JSON response from Dolibarr API.") from e

    async def _iter_pages(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> AsyncIterator[Dict[str, Any]]:
        """Постраничный обход списка; Dolibarr отвечает 404 на пустую страницу"""
        page = 0
        while True:
            query = {"limit": PAGE_SIZE, "page": page, **(params or {})}
            try:
                items = await self.request(endpoint, params=query)
            except ApiError as e:
                if e.status == 404:
                    return
                raise
            if not items:
                return
            for item in items:
                yield item
            if len(items) < PAGE_SIZE:
                return
            page += 1

    async def test_connection(self) -> Dict[str, Any]:
        """Проверка соединения с Dolibarr (GET /status)"""
        start_time = datetime.now()
        response = await self.request("/status")

        version = None
        if isinstance(response, dict) and isinstance(response.get("success"), dict):
            version = response["success"].get("dolibarr_version")
        if not version:
            raise DecodeError("Invalid response format from Dolibarr API.")

        return {
            "success": True,
            "version": version,
            "message": f"Connection successful! Dolibarr {version} is accessible.",
            "response_time": (datetime.now() - start_time).total_seconds(),
        }

    # Справочники

    async def get_warehouses(self) -> List[Warehouse]:
        response = await self.request("/warehouses")
        return [
            Warehouse(
                id=_to_int(item.get("id")),
                ref=item.get("ref") or "",
                label=item.get("label") or item.get("name") or f"Warehouse {item.get('id')}",
                description=item.get("description") or "",
                address=item.get("address") or "",
                zip=item.get("zip") or "",
                town=item.get("town") or "",
                country=item.get("country") or "",
            )
            for item in response or []
        ]

    async def get_payment_methods(self, lang: str = "en_US") -> List[PaymentMethod]:
        response = await self.request("/setup/dictionary/payment_types", params={"lang": lang})
        return [
            PaymentMethod(
                id=_to_int(item.get("id")),
                code=item.get("code") or "",
                label=item.get("label") or "",
                type=str(item.get("type") or ""),
                module=item.get("module"),
            )
            for item in response or []
        ]

    async def get_bank_accounts(self) -> List[BankAccount]:
        response = await self.request("/bankaccounts")
        return [
            BankAccount(
                id=_to_int(item.get("id")),
                label=item.get("label") or "",
                ref=item.get("ref") or "",
                bank=item.get("bank") or "",
                account_number=item.get("account_number") or "",
                currency_code=item.get("currency_code") or "",
                active=str(item.get("active", "1")) == "1",
            )
            for item in response or []
        ]

    # Контрагенты

    @staticmethod
    def _to_customer(item: Dict[str, Any]) -> RemoteCustomer:
        return RemoteCustomer(
            id=_to_int(item.get("id")),
            name=item.get("name") or "",
            email=item.get("email") or "",
            name_alias=item.get("name_alias") or "",
            phone=item.get("phone") or "",
            code_client=item.get("code_client") or "",
            client=_to_int(item.get("client"), 1),
            status=_to_int(item.get("status"), 1),
        )

    async def get_customers(self, params: Optional[Dict[str, Any]] = None) -> List[RemoteCustomer]:
        response = await self.request("/thirdparties", params=params)
        return [self._to_customer(item) for item in response or []]

    async def iter_customers(self) -> AsyncIterator[RemoteCustomer]:
        async for item in self._iter_pages("/thirdparties"):
            yield self._to_customer(item)

    async def get_customer(self, customer_id: int) -> RemoteCustomer:
        return self._to_customer(await self.request(f"/thirdparties/{customer_id}"))

    async def create_customer(self, customer_data: Dict[str, Any]) -> CreateResult:
        result = parse_create_result(await self.request("/thirdparties", "POST", customer_data))
        logger.info(f"Customer created in Dolibarr: {result.id}")
        return result

    async def update_customer(self, customer_id: int, customer_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request(f"/thirdparties/{customer_id}", "PUT", customer_data)

    async def find_customer_by_email(self, email: str) -> Optional[RemoteCustomer]:
        """Поиск контрагента по email (без учета регистра) по всему списку"""
        if not email:
            return None
        needle = email.strip().lower()
        async for customer in self.iter_customers():
            if customer.email and customer.email.strip().lower() == needle:
                return customer
        return None

    # Товары

    @staticmethod
    def _to_product(item: Dict[str, Any]) -> RemoteProduct:
        stock = item.get("stock_reel")
        return RemoteProduct(
            id=_to_int(item.get("id")),
            ref=item.get("ref") or "",
            label=item.get("label") or "",
            description=item.get("description") or "",
            note=item.get("note") or item.get("note_public") or "",
            price=_to_float(item.get("price"), 0.0),
            stock_reel=_to_float(stock, None) if stock not in (None, "") else None,
            status=_to_int(item.get("status"), 0),
            status_buy=_to_int(item.get("status_buy"), 0),
            product_type=_to_int(item.get("type"), 0),
        )

    async def get_products(self, params: Optional[Dict[str, Any]] = None) -> List[RemoteProduct]:
        response = await self.request("/products", params=params)
        return [self._to_product(item) for item in response or []]

    async def iter_products(self, include_stock: bool = True) -> AsyncIterator[RemoteProduct]:
        params = {"includestockdata": 1} if include_stock else None
        async for item in self._iter_pages("/products", params):
            yield self._to_product(item)

    async def get_product(self, product_id: int) -> RemoteProduct:
        return self._to_product(await self.request(f"/products/{product_id}"))

    async def create_product(self, product_data: Dict[str, Any]) -> CreateResult:
        result = parse_create_result(await self.request("/products", "POST", product_data))
        logger.info(f"Product created in Dolibarr: {result.id}")
        return result

    async def update_product(self, product_id: int, product_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request(f"/products/{product_id}", "PUT", product_data)

    async def get_product_stock(self, product_id: int, warehouse_id: Optional[int] = None) -> Dict[str, Any]:
        params = {"selected_warehouse_id": warehouse_id} if warehouse_id else None
        return await self.request(f"/products/{product_id}/stock", params=params)

    async def update_product_price(self, product_id: int, price: float) -> Dict[str, Any]:
        return await self.update_product(product_id, {
            "price": float(price),
            "price_ttc": float(price),
            "price_base_type": "HT",
        })

    async def create_stock_movement(
        self,
        product_id: int,
        warehouse_id: Optional[int],
        qty: float,
        label: str = STOCK_MOVEMENT_LABEL
    ) -> CreateResult:
        """Движение по складу: положительное qty - приход, отрицательное - расход"""
        data = {
            "product_id": product_id,
            "warehouse_id": warehouse_id,
            "qty": qty,
            "movement": "input" if qty > 0 else "output",
            "label": label,
        }
        return parse_create_result(await self.request("/stockmovements", "POST", data))

    # Заказы

    @staticmethod
    def _to_order(item: Dict[str, Any]) -> RemoteOrder:
        return RemoteOrder(
            id=_to_int(item.get("id")),
            ref=item.get("ref") or "",
            ref_ext=item.get("ref_ext") or "",
            socid=_to_int(item.get("socid")),
            status=_to_int(item.get("statut", item.get("status"))),
            lines=item.get("lines") or [],
        )

    async def get_orders(self, params: Optional[Dict[str, Any]] = None) -> List[RemoteOrder]:
        response = await self.request("/orders", params=params)
        return [self._to_order(item) for item in response or []]

    async def get_order(self, order_id: int) -> RemoteOrder:
        return self._to_order(await self.request(f"/orders/{order_id}"))

    async def create_order(self, order_data: Dict[str, Any]) -> CreateResult:
        result = parse_create_result(await self.request("/orders", "POST", order_data))
        logger.info(f"Order created in Dolibarr: {result.id}")
        return result

    async def update_order(self, order_id: int, order_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request(f"/orders/{order_id}", "PUT", order_data)
