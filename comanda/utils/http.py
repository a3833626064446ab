"""Lecture des corps JSON communs aux endpoints de checkout (delivery et abonnements)."""
from typing import Any, Dict

from fastapi import Request

from comanda.errors import InvalidDraft


async def json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise InvalidDraft("Corps JSON invalide")
    if not isinstance(body, dict):
        raise InvalidDraft("Corps JSON invalide")
    return body


def session_id_from(request: Request, body: Dict[str, Any]) -> str:
    """sessionId du corps, ou ?session_id=... (retour de redirection Stripe)."""
    session_id = request.query_params.get("session_id") or body.get("sessionId") or body.get("session_id")
    if not session_id or not isinstance(session_id, str):
        raise InvalidDraft("sessionId é obrigatório.")
    return session_id
