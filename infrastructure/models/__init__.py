"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import CrmOrderModel, CrmOrderLineItemModel

__all__ = [
    "Base",
    "metadata",
    "CrmOrderModel",
    "CrmOrderLineItemModel",
]
