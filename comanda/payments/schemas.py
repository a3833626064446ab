"""
Contrat de schéma partagé entre les endpoints et la couche de stockage.

- SCHEMA_VERSION est écrit dans les metadata de chaque session Stripe; une
  session produite par une autre version du contrat est refusée au retour.
- Les modèles d'entrée (OrderDraft, LineItem) acceptent le camelCase du front
  et le snake_case interne.
- Les helpers *_row construisent les lignes des tables Supabase: aucune vue ni
  service n'assemble de dict de table à la main.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

SCHEMA_VERSION = 1

ORDERS_TABLE = "orders"
LINE_ITEMS_TABLE = "order_line_items"
COUPON_REDEMPTIONS_TABLE = "coupon_redemptions"
COUPONS_TABLE = "coupons"
REFUNDS_TABLE = "refunds"

ORDER_STATUS_PAID = "paid"
PAYMENT_METHOD_CARD = "credit_card"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class LineItem(_CamelModel):
    product_id: str
    name: str = "Article"
    quantity: int = Field(ge=1)
    unit_price: float = Field(ge=0)
    subtotal: Optional[float] = None

    @field_validator("product_id", mode="before")
    @classmethod
    def _product_id_str(cls, v: Any) -> str:
        v = str(v or "").strip()
        if not v:
            raise ValueError("productId requis")
        return v


class OrderDraft(_CamelModel):
    company_id: str
    address_id: Optional[str] = None
    user_id: str
    line_items: List[LineItem] = Field(min_length=1)
    subtotal: float = Field(default=0, ge=0)
    delivery_fee: float = Field(default=0, ge=0)
    discount: float = Field(default=0, ge=0)
    total: float
    coupon_id: Optional[str] = None
    coupon_discount: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None
    company_name: Optional[str] = None
    loyalty_account_id: Optional[str] = None
    points_used: Optional[int] = Field(default=None, ge=0)
    reward_value: Optional[float] = Field(default=None, ge=0)

    @field_validator("coupon_id", "loyalty_account_id", "notes", "address_id", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def redeemed_discount(self) -> float:
        """Montant imputé au coupon (descontoCupom si fourni, sinon la remise totale)."""
        if self.coupon_discount is not None:
            return self.coupon_discount
        return self.discount


class PaymentSession(BaseModel):
    session_id: str
    status: str  # created | paid | expired | canceled
    amount_minor_units: Optional[int] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    mode: str = "payment"
    redirect_url: Optional[str] = None
    payment_status: Optional[str] = None

    @property
    def paid(self) -> bool:
        return self.status == "paid"


class CheckoutResult(BaseModel):
    success: bool
    order_id: Optional[str] = None
    error: Optional[str] = None
    already_existed: bool = False


def _money(v: Any) -> float:
    return float(Decimal(str(v)).quantize(Decimal("0.01")))


def order_row(draft: OrderDraft, payment_session_id: str, items_subtotal: float, validated_total: float) -> Dict[str, Any]:
    return {
        "company_id": draft.company_id,
        "address_id": draft.address_id,
        "user_id": draft.user_id,
        "status": ORDER_STATUS_PAID,
        "subtotal": _money(items_subtotal),
        "delivery_fee": _money(draft.delivery_fee),
        "discount": _money(draft.discount),
        "total": _money(validated_total),
        "payment_method": PAYMENT_METHOD_CARD,
        "coupon_id": draft.coupon_id,
        "notes": draft.notes,
        "payment_session_id": payment_session_id,
        "payment_status": "paid",
        "created_at": datetime.now(timezone.utc).isoformat(),
    }


def line_item_rows(order_id: str, items: List[LineItem]) -> List[Dict[str, Any]]:
    return [
        {
            "order_id": order_id,
            "product_id": it.product_id,
            "name": it.name,
            "quantity": it.quantity,
            "unit_price": _money(it.unit_price),
            "subtotal": _money(Decimal(str(it.unit_price)) * it.quantity),
        }
        for it in items
    ]


def coupon_redemption_row(coupon_id: str, user_id: str, order_id: str, discount_amount: float) -> Dict[str, Any]:
    return {
        "coupon_id": coupon_id,
        "user_id": user_id,
        "order_id": order_id,
        "discount_amount": _money(discount_amount),
    }
