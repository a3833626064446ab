"""
Sérialisation/désérialisation des métadonnées Stripe (brouillon de commande).

Stripe n'accepte que des valeurs chaînes (500 caractères max, 50 clés max):
les line items sont sérialisés en JSON puis découpés sur items_0..items_n.
"""
import json
from typing import Any, Dict, List

from pydantic import ValidationError

from comanda.errors import InvalidDraft
from .schemas import OrderDraft, SCHEMA_VERSION

# module comanda.payments.metadata
MAX_VALUE_LENGTH = 500
MAX_KEYS = 50
ITEMS_PREFIX = "items_"

_SCALAR_FIELDS = (
    "company_id",
    "address_id",
    "user_id",
    "subtotal",
    "delivery_fee",
    "discount",
    "total",
    "coupon_id",
    "coupon_discount",
    "notes",
    "company_name",
    "loyalty_account_id",
    "points_used",
    "reward_value",
)


def _as_str(name: str, v: Any) -> str:
    if v is None:
        return ""
    text = str(v)
    if len(text) > MAX_VALUE_LENGTH:
        # Jamais tronqué: le brouillon relu au retour doit être identique
        raise InvalidDraft(f"Champ {name} trop long ({len(text)} > {MAX_VALUE_LENGTH} caractères)")
    return text


def _chunks(text: str, size: int) -> List[str]:
    return [text[i:i + size] for i in range(0, len(text), size)] or [""]


def draft_to_metadata(draft: OrderDraft) -> Dict[str, str]:
    """
    Construit le dict metadata d'une session de paiement à partir du brouillon.
    - Champs scalaires: chaînes (vide pour None), InvalidDraft au-delà de 500 caractères.
    - Line items: JSON compact découpé en morceaux de 500 caractères.
    - Soulève InvalidDraft si le brouillon dépasse la limite de clés Stripe.
    """
    meta: Dict[str, str] = {"schema_version": str(SCHEMA_VERSION), "kind": "delivery"}
    for name in _SCALAR_FIELDS:
        meta[name] = _as_str(name, getattr(draft, name))

    items = [
        {"product_id": it.product_id, "name": it.name, "quantity": it.quantity, "unit_price": it.unit_price}
        for it in draft.line_items
    ]
    payload = json.dumps(items, separators=(",", ":"), ensure_ascii=False)
    parts = _chunks(payload, MAX_VALUE_LENGTH)
    if len(meta) + len(parts) > MAX_KEYS:
        raise InvalidDraft("Panier trop volumineux pour la session de paiement")
    for i, part in enumerate(parts):
        meta[f"{ITEMS_PREFIX}{i}"] = part
    return meta


def _items_from_metadata(meta: Dict[str, Any]) -> List[Dict[str, Any]]:
    keys = sorted(
        (k for k in meta if k.startswith(ITEMS_PREFIX) and k[len(ITEMS_PREFIX):].isdigit()),
        key=lambda k: int(k[len(ITEMS_PREFIX):]),
    )
    if not keys:
        raise InvalidDraft("Metadata items manquant")
    try:
        items = json.loads("".join(str(meta[k]) for k in keys))
    except ValueError:
        raise InvalidDraft("Metadata items illisible")
    if not isinstance(items, list):
        raise InvalidDraft("Metadata items illisible")
    return items


def draft_from_metadata(meta: Dict[str, Any]) -> OrderDraft:
    """
    Reconstruit le brouillon depuis les metadata de la session Stripe.
    C'est la seule source de vérité au retour du paiement (le client n'est pas fiable).
    """
    meta = dict(meta or {})
    version = str(meta.get("schema_version") or "")
    if version != str(SCHEMA_VERSION):
        raise InvalidDraft(f"Version de schéma non supportée: {version or 'absente'}")

    data: Dict[str, Any] = {}
    for name in _SCALAR_FIELDS:
        value = meta.get(name)
        if value not in (None, ""):
            data[name] = value
    data["line_items"] = _items_from_metadata(meta)
    try:
        return OrderDraft.model_validate(data)
    except ValidationError as e:
        raise InvalidDraft(f"Metadata de commande invalides: {e.error_count()} erreur(s)")
