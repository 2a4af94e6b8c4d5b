"""Преобразование сущностей витрины в payload для Dolibarr и обратно.

Все функции чистые: никакого I/O, результат зависит только от входных
данных и MapperOptions. Развертывания могут донастроить результат через
MapperHooks, не трогая код маппинга.
"""
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Callable

from app.core.config import Settings
from app.schemas.entities import (
    LocalCustomer, LocalOrder, LocalProduct, OrderItem, ShippingLine, RemoteProduct,
)

# Коды стран -> ID стран в словаре Dolibarr
COUNTRY_IDS: Dict[str, int] = {
    "US": 1,
    "FR": 2,
    "DE": 3,
    "GB": 4,
    "ES": 5,
    "IT": 6,
    "IN": 7,
}
UNKNOWN_COUNTRY_ID = 0

# Типы контрагента Dolibarr: 1 - клиент, 2 - компания-клиент (проспект)
CLIENT_INDIVIDUAL = 1
CLIENT_COMPANY = 2

LINE_TYPE_PRODUCT = 0
LINE_TYPE_SERVICE = 1

Hook = Callable[[Dict[str, Any], Any], Dict[str, Any]]

class MapperHooks:
    """Реестр пост-обработчиков результата маппинга.

    Обработчик получает готовый payload и исходную сущность и возвращает
    новый payload. Обработчики одного типа применяются в порядке регистрации.
    """

    CUSTOMER = "customer"
    GUEST_CUSTOMER = "guest_customer"
    ORDER = "order"
    ORDER_LINE = "order_line"
    PRODUCT = "product"
    LOCAL_PRODUCT = "local_product"

    def __init__(self):
        self._hooks: Dict[str, List[Hook]] = defaultdict(list)

    def register(self, name: str, hook: Hook) -> None:
        self._hooks[name].append(hook)

    def clear(self, name: Optional[str] = None) -> None:
        if name is None:
            self._hooks.clear()
        else:
            self._hooks.pop(name, None)

    def apply(self, name: str, payload: Dict[str, Any], entity: Any) -> Dict[str, Any]:
        for hook in self._hooks.get(name, []):
            result = hook(dict(payload), entity)
            if result is not None:
                payload = result
        return payload

@dataclass
class MapperOptions:
    enable_tax_sync: bool = False
    default_warehouse_id: Optional[int] = None
    default_payment_method_id: Optional[int] = None
    default_bank_account_id: Optional[int] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "MapperOptions":
        return cls(
            enable_tax_sync=settings.ENABLE_TAX_SYNC,
            default_warehouse_id=settings.DEFAULT_WAREHOUSE_ID,
            default_payment_method_id=settings.DEFAULT_PAYMENT_METHOD_ID,
            default_bank_account_id=settings.DEFAULT_BANK_ACCOUNT_ID,
        )

_NO_HOOKS = MapperHooks()

def round2(value: Optional[float]) -> float:
    return round(float(value or 0), 2)

def country_id(code: Optional[str]) -> int:
    """ID страны Dolibarr; неизвестный код - UNKNOWN_COUNTRY_ID, не ошибка"""
    if not code:
        return UNKNOWN_COUNTRY_ID
    return COUNTRY_IDS.get(code.strip().upper(), UNKNOWN_COUNTRY_ID)

def _timestamp(now: Optional[float]) -> int:
    return int(now if now is not None else time.time())

def map_customer(
    customer: LocalCustomer,
    now: Optional[float] = None,
    hooks: Optional[MapperHooks] = None
) -> Dict[str, Any]:
    """Покупатель -> контрагент Dolibarr"""
    billing = customer.billing
    display_name = customer.display_name or f"{customer.first_name} {customer.last_name}".strip()

    data = {
        "name": display_name,
        "firstname": customer.first_name,
        "lastname": customer.last_name,
        "email": customer.email,
        "phone": billing.phone,
        "address": billing.address_1,
        "zip": billing.postcode,
        "town": billing.city,
        "country_id": country_id(billing.country),
        "state_code": billing.state,
        "client": CLIENT_INDIVIDUAL,
        "status": 1,
        # Уникальность кода обеспечивает метка времени
        "code_client": f"WC{customer.id}-{_timestamp(now)}",
    }

    if billing.company:
        data["name"] = billing.company
        data["name_alias"] = display_name
        data["client"] = CLIENT_COMPANY

    return (hooks or _NO_HOOKS).apply(MapperHooks.CUSTOMER, data, customer)

def map_guest_customer(
    order: LocalOrder,
    now: Optional[float] = None,
    hooks: Optional[MapperHooks] = None
) -> Dict[str, Any]:
    """Гостевой покупатель (по платежному адресу заказа) -> контрагент Dolibarr"""
    billing = order.billing
    full_name = f"{billing.first_name} {billing.last_name}".strip()

    data = {
        "name": full_name or billing.email,
        "firstname": billing.first_name,
        "lastname": billing.last_name,
        "email": billing.email,
        "phone": billing.phone,
        "address": billing.address_1,
        "zip": billing.postcode,
        "town": billing.city,
        "country_id": country_id(billing.country),
        "state_code": billing.state,
        "client": CLIENT_INDIVIDUAL,
        "status": 1,
        "code_client": f"WCG{order.id}-{_timestamp(now)}",
    }

    if billing.company:
        data["name"] = billing.company
        data["name_alias"] = full_name
        data["client"] = CLIENT_COMPANY

    return (hooks or _NO_HOOKS).apply(MapperHooks.GUEST_CUSTOMER, data, order)

def tax_rate(item: OrderItem) -> float:
    if not item.subtotal:
        return 0.0
    return round((item.subtotal_tax / item.subtotal) * 100, 2)

def map_order_line(
    item: OrderItem,
    options: Optional[MapperOptions] = None,
    remote_product_id: Optional[int] = None,
    hooks: Optional[MapperHooks] = None
) -> Dict[str, Any]:
    """Строка заказа -> строка заказа Dolibarr"""
    options = options or MapperOptions()
    quantity = item.quantity or 0
    unit_price = item.subtotal / quantity if quantity > 0 else item.subtotal

    line = {
        "desc": item.name,
        "subprice": round2(unit_price),
        "qty": quantity,
        "product_type": LINE_TYPE_PRODUCT,
    }
    if item.sku:
        line["product_ref"] = item.sku
    if remote_product_id:
        line["fk_product"] = remote_product_id
    if options.enable_tax_sync:
        line["tva_tx"] = tax_rate(item)

    return (hooks or _NO_HOOKS).apply(MapperHooks.ORDER_LINE, line, item)

def map_shipping_line(shipping: ShippingLine) -> Dict[str, Any]:
    return {
        "desc": shipping.name,
        "subprice": round2(shipping.total),
        "qty": 1,
        "product_type": LINE_TYPE_SERVICE,
    }

def map_order(
    order: LocalOrder,
    options: Optional[MapperOptions] = None,
    product_ids: Optional[Dict[int, int]] = None,
    hooks: Optional[MapperHooks] = None
) -> Dict[str, Any]:
    """Заказ -> заказ Dolibarr.

    socid сюда не входит: его подставляет оркестратор после разрешения
    зависимостей. product_ids - уже известные ID товаров в Dolibarr.
    """
    options = options or MapperOptions()
    product_ids = product_ids or {}
    created = order.date_created or order.date_modified

    lines = [
        map_order_line(
            item,
            options,
            product_ids.get(item.product_id) if item.product_id is not None else None,
            hooks,
        )
        for item in order.items
    ]
    lines.extend(map_shipping_line(shipping) for shipping in order.shipping_lines)

    data = {
        "date": int(created.timestamp()) if created else _timestamp(None),
        "type": 0,
        "ref_ext": f"WC-{order.id}",
        "note_private": f"WooCommerce Order #{order.id}",
        "lines": lines,
    }
    if options.default_payment_method_id:
        data["mode_reglement_id"] = options.default_payment_method_id
    if options.default_bank_account_id:
        data["fk_account"] = options.default_bank_account_id
    if options.default_warehouse_id:
        data["warehouse_id"] = options.default_warehouse_id

    return (hooks or _NO_HOOKS).apply(MapperHooks.ORDER, data, order)

def map_product(product: LocalProduct, hooks: Optional[MapperHooks] = None) -> Dict[str, Any]:
    """Товар витрины -> товар Dolibarr"""
    data = {
        "ref": product.sku or f"WC-{product.id}",
        "label": product.name,
        "description": product.description,
        "note_public": product.short_description,
        "status": 1 if product.status == "publish" else 0,
        "status_buy": 1,
        "type": 0,
    }
    if product.price is not None:
        data["price"] = round2(product.price)
        data["price_base_type"] = "HT"

    return (hooks or _NO_HOOKS).apply(MapperHooks.PRODUCT, data, product)

def map_remote_product(remote: RemoteProduct, hooks: Optional[MapperHooks] = None) -> Dict[str, Any]:
    """Товар Dolibarr -> поля товара витрины"""
    data = {
        "name": remote.label,
        "description": remote.description,
        "short_description": remote.note,
        "sku": remote.ref,
        "price": round2(remote.price),
        "status": "publish" if remote.status else "draft",
    }
    if remote.stock_reel is not None:
        data["stock_quantity"] = int(remote.stock_reel)
        data["manage_stock"] = True

    return (hooks or _NO_HOOKS).apply(MapperHooks.LOCAL_PRODUCT, data, remote)
