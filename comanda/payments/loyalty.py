"""
Points de fidélité appliqués à la création d'une commande.
- Rachat: le brouillon porte loyalty_account_id + points_used => débit du solde (plancher 0).
- Accumulation: sinon, si la config fidélité de l'entreprise est active, crédit de
  floor(subtotal × points_per_unit) points sur le compte de l'utilisateur (créé si absent).
Ne doit jamais faire échouer la commande: les erreurs sont journalisées.
"""
import logging
import math
from typing import Any, Dict, Optional

from . import repository
from comanda.errors import PersistenceFailure
from .schemas import OrderDraft

logger = logging.getLogger(__name__)


def _redeem_points(draft: OrderDraft, order_id: str) -> Optional[Dict[str, Any]]:
    account = repository.get_loyalty_account(draft.loyalty_account_id)
    if not account:
        logger.warning("loyalty.redeem account not found account_id=%s", draft.loyalty_account_id)
        return None
    points = int(draft.points_used or 0)
    balance = max(0, int(account.get("balance") or 0) - points)
    repository.update_loyalty_balance(account["id"], balance)
    return repository.insert_loyalty_transaction({
        "account_id": account["id"],
        "order_id": order_id,
        "points": -points,
        "description": f"Resgate de R$ {float(draft.reward_value or 0):.2f} no pedido",
    })


def _earn_points(draft: OrderDraft, order_id: str, items_subtotal: float) -> Optional[Dict[str, Any]]:
    cfg = repository.get_loyalty_config(draft.company_id)
    rate = float((cfg or {}).get("points_per_unit") or 0)
    if rate <= 0:
        return None
    earned = int(math.floor(items_subtotal * rate))
    if earned <= 0:
        return None

    account = repository.find_loyalty_account(draft.user_id, draft.company_id)
    if account:
        repository.update_loyalty_balance(account["id"], int(account.get("balance") or 0) + earned)
    else:
        account = repository.insert_loyalty_account({
            "user_id": draft.user_id,
            "company_id": draft.company_id,
            "balance": earned,
        })
    return repository.insert_loyalty_transaction({
        "account_id": account["id"],
        "order_id": order_id,
        "points": earned,
        "description": f"+{earned} pontos pela compra de R$ {items_subtotal:.2f}",
    })


def apply(draft: OrderDraft, order_id: str, items_subtotal: float) -> Optional[Dict[str, Any]]:
    """Retourne la transaction fidélité créée, ou None (rien à faire ou échec journalisé)."""
    try:
        if draft.loyalty_account_id and draft.points_used:
            return _redeem_points(draft, order_id)
        return _earn_points(draft, order_id, items_subtotal)
    except (PersistenceFailure, repository.DuplicateRecord):
        logger.warning("loyalty.apply failed order_id=%s user_id=%s", order_id, draft.user_id)
        return None
