# app/schemas/sync.py
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel

class ResultStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    ERROR = "error"

class SyncAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"

@dataclass
class SyncResult:
    """Результат синхронизации одной сущности"""
    status: ResultStatus
    message: str
    remote_id: Optional[int] = None
    action: Optional[SyncAction] = None

    @classmethod
    def success(cls, message: str, remote_id: int, action: SyncAction) -> "SyncResult":
        return cls(ResultStatus.SUCCESS, message, remote_id, action)

    @classmethod
    def skipped(cls, message: str) -> "SyncResult":
        return cls(ResultStatus.SKIPPED, message)

    @classmethod
    def error(cls, message: str, remote_id: Optional[int] = None) -> "SyncResult":
        return cls(ResultStatus.ERROR, message, remote_id)

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "dolibarr_id": self.remote_id,
            "action": self.action.value if self.action else None,
        }

@dataclass
class BulkSyncResult:
    """Итог массовой синхронизации"""
    total: int = 0
    synced: int = 0
    errors: int = 0
    skipped: int = 0
    details: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    stopped_early: bool = False

    def add(self, local_id: int, result: SyncResult) -> None:
        if result.status == ResultStatus.SUCCESS:
            self.synced += 1
        elif result.status == ResultStatus.SKIPPED:
            self.skipped += 1
        else:
            self.errors += 1
        self.details.append({"id": local_id, **result.to_dict()})

    def summary(self, label: str) -> str:
        return (f"{label} sync completed. Total: {self.total}, Synced: {self.synced}, "
                f"Errors: {self.errors}, Skipped: {self.skipped}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

@dataclass
class InventoryItemResult:
    """Результат выгрузки остатков/цены одного товара"""
    product_id: int
    remote_id: Optional[int]
    stock: str
    price: str
    stock_error: Optional[str] = None
    price_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.stock_error is None and self.price_error is None

# Ответы API

class SyncLogResponse(BaseModel):
    id: int
    sync_type: str
    wc_id: int
    dolibarr_id: Optional[str]
    status: str
    message: Optional[str]
    sync_direction: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True

class OrderSyncHistoryResponse(BaseModel):
    order_id: int
    dolibarr_order_id: Optional[str]
    sync_status: str
    sync_type: str
    error_message: Optional[str]
    last_sync_at: Optional[datetime]

    class Config:
        from_attributes = True

class OrderHistoryPage(BaseModel):
    total: int
    items: List[OrderSyncHistoryResponse]

class DashboardStats(BaseModel):
    total_orders_synced: int
    total_customers_synced: int
    inventory_last_update: Optional[str]

class ConnectionStatus(BaseModel):
    has_settings: bool
    is_valid: bool
    message: str
    version: str = ""
