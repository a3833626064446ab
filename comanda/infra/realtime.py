"""
Flux de changements en publish/subscribe (remplace les abonnements realtime globaux).

- subscribe(table, filter, callback) enregistre un callback pour un couple (table, filtre).
- publish(event) notifie les callbacks dont le filtre (égalité de colonnes) correspond.
- unsubscribe / listen(): le nettoyage est explicite et garanti en fin de handler.
Une instance par application (créée dans le lifespan), transmise via le contexte de requête.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional
from uuid import uuid4

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    type: str  # INSERT | UPDATE | DELETE
    record: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Subscription:
    id: str
    table: str
    filter: Dict[str, Any]
    callback: Callable[[ChangeEvent], None]

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        return all(str(event.record.get(k)) == str(v) for k, v in self.filter.items())


class ChangeFeed:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: Dict[str, Subscription] = {}

    def subscribe(self, table: str, filter: Optional[Dict[str, Any]], callback: Callable[[ChangeEvent], None]) -> Subscription:
        sub = Subscription(id=str(uuid4()), table=table, filter=dict(filter or {}), callback=callback)
        with self._lock:
            self._subscriptions[sub.id] = sub
        logger.debug("realtime.subscribe id=%s table=%s filter=%s", sub.id, table, sub.filter)
        return sub

    def unsubscribe(self, subscription: Subscription) -> bool:
        with self._lock:
            removed = self._subscriptions.pop(subscription.id, None)
        return removed is not None

    def publish(self, event: ChangeEvent) -> int:
        """Diffuse l'événement; retourne le nombre de callbacks notifiés."""
        with self._lock:
            targets: List[Subscription] = [s for s in self._subscriptions.values() if s.matches(event)]
        delivered = 0
        for sub in targets:
            try:
                sub.callback(event)
                delivered += 1
            except Exception:
                # Un abonné défaillant ne doit pas casser l'émetteur
                logger.exception("realtime.callback failed id=%s table=%s", sub.id, event.table)
        return delivered

    @contextmanager
    def listen(self, table: str, filter: Optional[Dict[str, Any]], callback: Callable[[ChangeEvent], None]) -> Iterator[Subscription]:
        sub = self.subscribe(table, filter, callback)
        try:
            yield sub
        finally:
            self.unsubscribe(sub)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)
