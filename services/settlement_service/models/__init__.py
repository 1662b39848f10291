"""Settlement Service models package."""

# Settlements reference orders.id and stores.id
from services.store_service import models as _store_models  # noqa: F401
from services.settlement_service.models.enums import SettlementStatus
from services.settlement_service.models.settlement import VendorSettlement

__all__ = [
    "SettlementStatus",
    "VendorSettlement",
]
