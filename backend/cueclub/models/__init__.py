# Database models

from cueclub.models.user import User
from cueclub.models.catalog import Product, ProductCategory, Table, TableStatus, TableType
from cueclub.models.setting import VenueSetting
from cueclub.models.snapshots import (
    ROUNDING_STEPS,
    RateSource,
    RoundingMode,
    RoundingPolicySnapshot,
    TableSnapshot,
)
from cueclub.models.session import PlaySession, SessionItem, SessionStatus
from cueclub.models.promotion import (
    BillRule,
    ComboRequirement,
    DiscountTarget,
    DiscountType,
    ProductRule,
    Promotion,
    PromotionScope,
    PromotionView,
    TimeRule,
    parse_rule,
)
from cueclub.models.bill import (
    Bill,
    BillDiscount,
    BillItem,
    PaymentMethod,
    PlayCharge,
    ProductCharge,
)

__all__ = [
    "User",
    "Product",
    "ProductCategory",
    "Table",
    "TableStatus",
    "TableType",
    "VenueSetting",
    "ROUNDING_STEPS",
    "RateSource",
    "RoundingMode",
    "RoundingPolicySnapshot",
    "TableSnapshot",
    "PlaySession",
    "SessionItem",
    "SessionStatus",
    "BillRule",
    "ComboRequirement",
    "DiscountTarget",
    "DiscountType",
    "ProductRule",
    "Promotion",
    "PromotionScope",
    "PromotionView",
    "TimeRule",
    "parse_rule",
    "Bill",
    "BillDiscount",
    "BillItem",
    "PaymentMethod",
    "PlayCharge",
    "ProductCharge",
]
