import logging
from datetime import datetime, timezone
from typing import Optional, List
from app.models.sync import EntityType, SyncDirection
from app.schemas.entities import LocalProduct, Ref
from app.schemas.sync import (
    SyncResult, SyncAction, BulkSyncResult, InventoryItemResult,
)
from app.services.exceptions import DolibarrError, ValidationError
from app.services.mappers import map_product, map_remote_product, round2
from app.services.storefront import resolve_ref, EntityNotFound
from app.services.sync_base import BaseSync, CONNECTION_NOT_VALID
from app.services.sync_ledger import INVENTORY_LAST_UPDATE

logger = logging.getLogger(__name__)

SKIP_MESSAGE = "Product sync disabled or invalid data"

class ProductSync(BaseSync):
    """Выгрузка товаров в Dolibarr, загрузка товаров и остатков обратно"""

    entity_type = EntityType.PRODUCT

    async def export_product(self, ref: Ref, as_dependency: bool = False) -> SyncResult:
        try:
            product = resolve_ref(ref, self.storefront.get_product, LocalProduct)
        except (EntityNotFound, TypeError) as e:
            logger.error(f"Invalid product reference {ref!r}: {e}")
            return SyncResult.error("Invalid product")

        if not as_dependency and not self.settings.SYNC_PRODUCTS:
            return self._record_skip(product.id, SKIP_MESSAGE)

        remote_id: Optional[int] = None
        try:
            if not product.name:
                raise ValidationError(SKIP_MESSAGE)

            remote_id = await self.resolver.resolve(self.entity_type, product)
            data = map_product(product, self.hooks)

            if remote_id:
                await self.client.update_product(remote_id, data)
                action = SyncAction.UPDATED
            else:
                remote_id = (await self.client.create_product(data)).id
                action = SyncAction.CREATED

            message = f"Product {action.value} successfully."
            self._record_success(product.id, remote_id, message)
            return SyncResult.success(message, remote_id, action)

        except ValidationError as e:
            return self._record_skip(product.id, str(e))
        except DolibarrError as e:
            return self._record_error(product.id, str(e), remote_id)
        except Exception as e:
            logger.exception(f"Unexpected error exporting product {product.id}")
            return self._record_error(product.id, f"Product sync failed: {e}", remote_id)

    async def export_all_products(self, limit: Optional[int] = None, offset: int = 0) -> BulkSyncResult:
        return await self._run_bulk(
            "Product",
            lambda size, start: self.storefront.list_products(size, start),
            self.export_product,
            self.settings.BATCH_SIZE * 5,
            limit,
            offset,
        )

    async def import_all_products(self) -> BulkSyncResult:
        """Загрузить все товары Dolibarr на витрину.

        Локальный товар ищется по соответствию, затем по SKU; не найден -
        создается.
        """
        result = BulkSyncResult()
        if not await self._connection_ok():
            result.error = CONNECTION_NOT_VALID
            return result

        try:
            seen = 0
            async for remote in self.client.iter_products():
                if self._checkpoint("Product import", result, seen):
                    break
                seen += 1
                result.total += 1
                local_id = self.ledger.find_local_id(self.entity_type.value, remote.id)
                if local_id is None or self.storefront.get_product(local_id) is None:
                    by_sku = self.storefront.find_product_by_sku(remote.ref)
                    local_id = by_sku.id if by_sku else None

                try:
                    fields = map_remote_product(remote, self.hooks)
                    if local_id is not None:
                        self.storefront.update_product(local_id, **fields)
                        action = SyncAction.UPDATED
                    else:
                        local_id = self.storefront.create_product(fields)
                        action = SyncAction.CREATED
                except Exception as e:
                    logger.error(f"Failed to import Dolibarr product {remote.id}: {e}")
                    result.add(local_id or 0, SyncResult.error(f"Product import failed: {e}", remote.id))
                    continue

                message = f"Product {action.value} successfully."
                self._record_success(local_id, remote.id, message, SyncDirection.DOLIBARR_TO_WC.value)
                result.add(local_id, SyncResult.success(message, remote.id, action))
        except DolibarrError as e:
            result.error = str(e)
            logger.error(f"Product import aborted: {e}")

        logger.info(result.summary("Product import"))
        return result

    async def export_product_inventory(self, ref: Ref) -> InventoryItemResult:
        """Выгрузить остаток и цену одного товара.

        Остаток и цена обновляются независимо: ошибка одного не мешает другому.
        """
        product = resolve_ref(ref, self.storefront.get_product, LocalProduct)
        remote_id = self.ledger.get_remote_id(self.entity_type.value, product.id)
        item = InventoryItemResult(product_id=product.id, remote_id=remote_id, stock="skipped", price="skipped")
        if not remote_id:
            item.stock_error = item.price_error = "Product is not synced with Dolibarr"
            return item

        try:
            remote = await self.client.get_product(remote_id)
        except DolibarrError as e:
            item.stock_error = item.price_error = str(e)
            item.stock = item.price = "error"
            return item

        if product.manage_stock and product.stock_quantity is not None:
            diff = product.stock_quantity - (remote.stock_reel or 0)
            if diff:
                if not self.settings.DEFAULT_WAREHOUSE_ID:
                    item.stock, item.stock_error = "error", "No default warehouse configured."
                else:
                    try:
                        await self.client.create_stock_movement(remote_id, self.settings.DEFAULT_WAREHOUSE_ID, diff)
                        item.stock = f"moved {diff:+g}"
                    except DolibarrError as e:
                        item.stock, item.stock_error = "error", str(e)
            else:
                item.stock = "unchanged"

        if product.price is not None:
            if round2(product.price) != round2(remote.price):
                try:
                    await self.client.update_product_price(remote_id, round2(product.price))
                    item.price = "updated"
                except DolibarrError as e:
                    item.price, item.price_error = "error", str(e)
            else:
                item.price = "unchanged"

        return item

    async def export_inventory(self, product_ids: Optional[List[int]] = None) -> BulkSyncResult:
        """Выгрузить остатки и цены товаров, уже связанных с Dolibarr"""
        result = BulkSyncResult()
        if not await self._connection_ok():
            result.error = CONNECTION_NOT_VALID
            return result

        if product_ids is None:
            products = self._all_products()
        else:
            products = [p for p in (self.storefront.get_product(pid) for pid in product_ids) if p]

        for index, product in enumerate(products):
            if self._checkpoint("Inventory export", result, index):
                break
            result.total += 1
            try:
                item = await self.export_product_inventory(product)
            except Exception as e:
                logger.exception(f"Unexpected error exporting inventory for product {product.id}")
                result.add(product.id, SyncResult.error(f"Inventory sync failed: {e}"))
                continue

            if item.remote_id is None:
                outcome = SyncResult.skipped("Product is not synced with Dolibarr")
            elif item.ok:
                outcome = SyncResult.success(f"Stock: {item.stock}, price: {item.price}", item.remote_id, SyncAction.UPDATED)
            else:
                errors = "; ".join(e for e in (item.stock_error, item.price_error) if e)
                outcome = SyncResult.error(errors, item.remote_id)
            result.add(product.id, outcome)

        self._touch_inventory()
        logger.info(result.summary("Inventory export"))
        return result

    async def import_inventory(self) -> BulkSyncResult:
        """Перенести реальные остатки Dolibarr на связанные товары витрины"""
        result = BulkSyncResult()
        if not await self._connection_ok():
            result.error = CONNECTION_NOT_VALID
            return result

        try:
            seen = 0
            async for remote in self.client.iter_products():
                if self._checkpoint("Inventory import", result, seen):
                    break
                seen += 1
                local_id = self.ledger.find_local_id(self.entity_type.value, remote.id)
                if local_id is None or self.storefront.get_product(local_id) is None:
                    continue
                result.total += 1
                if remote.stock_reel is None:
                    result.add(local_id, SyncResult.skipped("No stock data"))
                    continue
                self.storefront.update_product(local_id, stock_quantity=int(remote.stock_reel), manage_stock=True)
                result.add(local_id, SyncResult.success(
                    f"Stock set to {int(remote.stock_reel)}", remote.id, SyncAction.UPDATED
                ))
        except DolibarrError as e:
            result.error = str(e)
            logger.error(f"Inventory import aborted: {e}")

        self._touch_inventory()
        logger.info(result.summary("Inventory import"))
        return result

    def _all_products(self) -> List[LocalProduct]:
        page_size = self.settings.BATCH_SIZE * 5
        products, offset = [], 0
        while True:
            page = self.storefront.list_products(page_size, offset)
            products.extend(page)
            if len(page) < page_size:
                return products
            offset += page_size

    def _touch_inventory(self) -> None:
        self.ledger.set_option(INVENTORY_LAST_UPDATE, datetime.now(timezone.utc).isoformat())
