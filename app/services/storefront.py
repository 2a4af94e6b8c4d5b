"""Контракт витрины (источника локальных сущностей) и реализация в памяти."""
import itertools
from abc import ABC, abstractmethod
from dataclasses import replace, fields
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Iterable, Type, TypeVar, Union

from app.schemas.entities import LocalCustomer, LocalOrder, LocalProduct

T = TypeVar("T", LocalCustomer, LocalOrder, LocalProduct)

class Storefront(ABC):
    """Источник и приемник локальных сущностей"""

    @abstractmethod
    def get_customer(self, customer_id: int) -> Optional[LocalCustomer]:
        ...

    @abstractmethod
    def get_order(self, order_id: int) -> Optional[LocalOrder]:
        ...

    @abstractmethod
    def get_product(self, product_id: int) -> Optional[LocalProduct]:
        ...

    @abstractmethod
    def list_customers(self, limit: int = 50, offset: int = 0) -> List[LocalCustomer]:
        """Покупатели с непустым email"""

    @abstractmethod
    def count_customers(self) -> int:
        ...

    @abstractmethod
    def list_orders(self, statuses: Iterable[str], limit: int = 25, offset: int = 0) -> List[LocalOrder]:
        """Заказы в указанных статусах, новые первыми"""

    @abstractmethod
    def list_products(self, limit: int = 50, offset: int = 0) -> List[LocalProduct]:
        ...

    @abstractmethod
    def find_product_by_sku(self, sku: str) -> Optional[LocalProduct]:
        ...

    @abstractmethod
    def update_product(self, product_id: int, **changes: Any) -> LocalProduct:
        ...

    @abstractmethod
    def create_product(self, data: Dict[str, Any]) -> int:
        ...

class EntityNotFound(LookupError):
    pass

def resolve_ref(ref: Union[int, T], loader, entity_cls: Type[T]) -> T:
    """Привести ссылку (ID или объект) к объекту сущности"""
    if isinstance(ref, entity_cls):
        return ref
    if isinstance(ref, bool) or not isinstance(ref, int):
        raise TypeError(f"Expected {entity_cls.__name__} or int id, got {type(ref).__name__}")
    entity = loader(ref)
    if entity is None:
        raise EntityNotFound(f"{entity_cls.__name__} {ref} not found")
    return entity

class InMemoryStorefront(Storefront):
    """Витрина в памяти для разработки и тестов"""

    def __init__(
        self,
        customers: Iterable[LocalCustomer] = (),
        orders: Iterable[LocalOrder] = (),
        products: Iterable[LocalProduct] = ()
    ):
        self.customers: Dict[int, LocalCustomer] = {c.id: c for c in customers}
        self.orders: Dict[int, LocalOrder] = {o.id: o for o in orders}
        self.products: Dict[int, LocalProduct] = {p.id: p for p in products}
        start = max(self.products, default=0) + 1
        self._product_ids = itertools.count(start)

    def add_customer(self, customer: LocalCustomer) -> LocalCustomer:
        self.customers[customer.id] = customer
        return customer

    def add_order(self, order: LocalOrder) -> LocalOrder:
        self.orders[order.id] = order
        return order

    def add_product(self, product: LocalProduct) -> LocalProduct:
        self.products[product.id] = product
        return product

    def get_customer(self, customer_id: int) -> Optional[LocalCustomer]:
        return self.customers.get(customer_id)

    def get_order(self, order_id: int) -> Optional[LocalOrder]:
        return self.orders.get(order_id)

    def get_product(self, product_id: int) -> Optional[LocalProduct]:
        return self.products.get(product_id)

    def list_customers(self, limit: int = 50, offset: int = 0) -> List[LocalCustomer]:
        eligible = [c for _, c in sorted(self.customers.items()) if c.email]
        return eligible[offset:offset + limit]

    def count_customers(self) -> int:
        return len(self.customers)

    def list_orders(self, statuses: Iterable[str], limit: int = 25, offset: int = 0) -> List[LocalOrder]:
        wanted = set(statuses)
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        matching = [o for o in self.orders.values() if o.status in wanted]
        matching.sort(key=lambda o: (o.date_created or epoch, o.id), reverse=True)
        return matching[offset:offset + limit]

    def list_products(self, limit: int = 50, offset: int = 0) -> List[LocalProduct]:
        return [p for _, p in sorted(self.products.items())][offset:offset + limit]

    def find_product_by_sku(self, sku: str) -> Optional[LocalProduct]:
        if not sku:
            return None
        for product in self.products.values():
            if product.sku == sku:
                return product
        return None

    def update_product(self, product_id: int, **changes: Any) -> LocalProduct:
        product = self.products.get(product_id)
        if product is None:
            raise EntityNotFound(f"LocalProduct {product_id} not found")
        known = {f.name for f in fields(LocalProduct)}
        values = {k: v for k, v in changes.items() if k in known and k != "id"}
        values.setdefault("date_modified", datetime.now(timezone.utc))
        updated = replace(product, **values)
        self.products[product_id] = updated
        return updated

    def create_product(self, data: Dict[str, Any]) -> int:
        product_id = next(self._product_ids)
        while product_id in self.products:
            product_id = next(self._product_ids)
        known = {f.name for f in fields(LocalProduct)}
        values = {k: v for k, v in data.items() if k in known and k != "id"}
        values.setdefault("date_modified", datetime.now(timezone.utc))
        self.products[product_id] = LocalProduct(id=product_id, **values)
        return product_id
