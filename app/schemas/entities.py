"""Локальные (витрина) и удаленные (Dolibarr) сущности.

Локальные сущности приходят из адаптера витрины, удаленные - нормализованные
ответы API Dolibarr. Маппинг между ними - app/services/mappers.py.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any, Union

@dataclass
class Address:
    first_name: str = ""
    last_name: str = ""
    company: str = ""
    email: str = ""
    phone: str = ""
    address_1: str = ""
    address_2: str = ""
    city: str = ""
    state: str = ""
    postcode: str = ""
    country: str = ""

@dataclass
class LocalCustomer:
    """Зарегистрированный покупатель витрины"""
    id: int
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    display_name: str = ""
    billing: Address = field(default_factory=Address)
    date_modified: Optional[datetime] = None

@dataclass
class LocalProduct:
    """Товар витрины"""
    id: int
    name: str = ""
    sku: str = ""
    description: str = ""
    short_description: str = ""
    price: Optional[float] = None
    stock_quantity: Optional[int] = None
    manage_stock: bool = True
    status: str = "publish"   # publish, draft, private
    product_type: str = "simple"
    date_modified: Optional[datetime] = None

@dataclass
class OrderItem:
    """Строка заказа (товар)"""
    name: str
    quantity: int
    subtotal: float
    subtotal_tax: float = 0.0
    product_id: Optional[int] = None
    sku: Optional[str] = None

@dataclass
class ShippingLine:
    name: str
    total: float

@dataclass
class LocalOrder:
    """Заказ витрины"""
    id: int
    status: str
    customer_id: Optional[int] = None  # None - гостевой заказ
    billing: Address = field(default_factory=Address)
    items: List[OrderItem] = field(default_factory=list)
    shipping_lines: List[ShippingLine] = field(default_factory=list)
    date_created: Optional[datetime] = None
    date_modified: Optional[datetime] = None

    @property
    def billing_email(self) -> str:
        return self.billing.email

LocalEntity = Union[LocalCustomer, LocalOrder, LocalProduct]

# Ссылка на сущность: ID или уже загруженный объект
Ref = Union[int, LocalCustomer, LocalOrder, LocalProduct]

@dataclass
class CreateResult:
    """Результат создания объекта в Dolibarr"""
    id: int

@dataclass
class RemoteCustomer:
    """Контрагент (thirdparty) из Dolibarr"""
    id: int
    name: str = ""
    email: str = ""
    name_alias: str = ""
    phone: str = ""
    code_client: str = ""
    client: int = 1
    status: int = 1

@dataclass
class RemoteProduct:
    """Товар из Dolibarr"""
    id: int
    ref: str = ""
    label: str = ""
    description: str = ""
    note: str = ""
    price: float = 0.0
    stock_reel: Optional[float] = None
    status: int = 1
    status_buy: int = 1
    product_type: int = 0

@dataclass
class RemoteOrder:
    id: int
    ref: str = ""
    ref_ext: str = ""
    socid: int = 0
    status: int = 0
    lines: List[Dict[str, Any]] = field(default_factory=list)

@dataclass
class Warehouse:
    id: int
    ref: str = ""
    label: str = ""
    description: str = ""
    address: str = ""
    zip: str = ""
    town: str = ""
    country: str = ""

@dataclass
class PaymentMethod:
    id: int
    code: str
    label: str
    type: str = ""
    module: Optional[str] = None

@dataclass
class BankAccount:
    id: int
    label: str
    ref: str = ""
    bank: str = ""
    account_number: str = ""
    currency_code: str = ""
    active: bool = True
