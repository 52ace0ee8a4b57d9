from .audit_log import AuditLog
from .product import Product
from .purchase_order import (
    ORDER_STATUS_TRANSITIONS,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderStatus,
    SupplyProgressStatus,
)
from .share_link import ShareLinkStatus, SupplyShareAccess, SupplyShareLink
from .shop import Shop
from .supplier import Supplier
from .supply_record import SupplyRecord, SupplyRecordItem, SupplyRecordStatus
from .user import User

__all__ = [
    "AuditLog",
    "ORDER_STATUS_TRANSITIONS",
    "Product",
    "PurchaseOrder",
    "PurchaseOrderItem",
    "PurchaseOrderStatus",
    "ShareLinkStatus",
    "Shop",
    "Supplier",
    "SupplyProgressStatus",
    "SupplyRecord",
    "SupplyRecordItem",
    "SupplyRecordStatus",
    "SupplyShareAccess",
    "SupplyShareLink",
    "User",
]
