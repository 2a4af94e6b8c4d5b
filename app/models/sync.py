from sqlalchemy import Column, Integer, BigInteger, String, JSON, DateTime, Text, UniqueConstraint, Index
from sqlalchemy.sql import func
import enum
from app.database import Base

class SyncStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"

class EntityType(str, enum.Enum):
    CUSTOMER = "customer"
    ORDER = "order"
    PRODUCT = "product"

class SyncDirection(str, enum.Enum):
    WC_TO_DOLIBARR = "wc_to_dolibarr"
    DOLIBARR_TO_WC = "dolibarr_to_wc"

class SyncLog(Base):
    """Журнал всех попыток синхронизации (только добавление)"""
    __tablename__ = "sync_log"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # customer, order, product, inventory
    sync_type = Column(String(50), nullable=False, index=True)
    wc_id = Column(BigInteger, nullable=False, index=True)
    dolibarr_id = Column(String(50), nullable=True, index=True)

    status = Column(String(20), nullable=False, default=SyncStatus.PENDING.value, index=True)
    message = Column(Text, nullable=True)
    sync_direction = Column(String(20), nullable=False, default=SyncDirection.WC_TO_DOLIBARR.value)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<SyncLog {self.sync_type}:{self.wc_id} ({self.status})>"

class OrderSyncHistory(Base):
    """Последнее известное состояние синхронизации заказа (одна строка на заказ)"""
    __tablename__ = "order_sync_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, nullable=False, unique=True)
    dolibarr_order_id = Column(String(50), nullable=True, index=True)
    dolibarr_invoice_id = Column(String(50), nullable=True)

    sync_status = Column(String(20), nullable=False, default=SyncStatus.PENDING.value, index=True)
    sync_type = Column(String(50), nullable=False, default=EntityType.ORDER.value)
    error_message = Column(Text, nullable=True)

    last_sync_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<OrderSyncHistory {self.order_id} -> {self.dolibarr_order_id} ({self.sync_status})>"

class EntityXref(Base):
    """Соответствие локального ID сущности и ID в Dolibarr"""
    __tablename__ = "entity_xref"
    __table_args__ = (
        UniqueConstraint("entity_type", "local_id", name="uq_entity_xref_local"),
        Index("ix_entity_xref_remote", "entity_type", "remote_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(20), nullable=False)
    local_id = Column(BigInteger, nullable=False)
    remote_id = Column(BigInteger, nullable=True)

    sync_status = Column(String(20), nullable=False, default=SyncStatus.PENDING.value)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<EntityXref {self.entity_type}:{self.local_id} -> {self.remote_id}>"

class IntegrationOption(Base):
    """Небольшое key/value хранилище состояния интеграции"""
    __tablename__ = "integration_options"

    key = Column(String(100), primary_key=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<IntegrationOption {self.key}>"
