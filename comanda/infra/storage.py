"""
Exécution des requêtes PostgREST avec traduction des erreurs.

Une erreur de stockage ne doit jamais passer pour une absence de ligne: elle est
journalisée puis levée en PersistenceFailure. Une violation d'unicité (code
Postgres 23505) est levée en DuplicateRecord pour le « fetch-or-create ».
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from postgrest.exceptions import APIError

# Importer le module (et non les fonctions) pour bénéficier des monkeypatchs de tests
import comanda.infra.supabase_client as supabase_client
from comanda.errors import PersistenceFailure

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


class DuplicateRecord(Exception):
    """La contrainte d'unicité a rejeté l'écriture (ligne déjà présente)."""


def error_code(e: APIError) -> Optional[str]:
    code = getattr(e, "code", None)
    if not code and e.args and isinstance(e.args[0], dict):
        code = e.args[0].get("code")
    return code


def run_query(action: str, build: Callable[[Any], Any]) -> List[Dict[str, Any]]:
    """Construit la requête sur le client service-role, l'exécute et retourne res.data en liste."""
    try:
        res = build(supabase_client.get_service_supabase()).execute()
    except APIError as e:
        if error_code(e) == UNIQUE_VIOLATION:
            raise DuplicateRecord(action)
        logger.exception("storage.%s failed code=%s", action, error_code(e))
        raise PersistenceFailure(f"Erreur de stockage ({action})")
    except Exception:
        logger.exception("storage.%s failed", action)
        raise PersistenceFailure(f"Erreur de stockage ({action})")
    data = getattr(res, "data", None)
    if data is None:
        return []
    return data if isinstance(data, list) else [data]


def first(rows: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    return rows[0] if rows else None
