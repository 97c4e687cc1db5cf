from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..core.ports import AmountWords, Clock, DocRenderer, IdAllocator, Notifier, SnapshotStore, SystemClock
from ..utils.words import default_words
from .notifications import DatabaseNotifier
from .store import SqlIdAllocator, SqlSnapshotStore


@dataclass
class ServiceContext:
    """Ports handed to every workflow use case."""

    store: SnapshotStore
    clock: Clock
    notifier: Notifier
    ids: IdAllocator
    words: AmountWords
    renderer: Optional[DocRenderer] = None
    settings: Settings = field(default_factory=get_settings)


def build_context(
    session: Session,
    *,
    clock: Optional[Clock] = None,
    notifier: Optional[Notifier] = None,
    renderer: Optional[DocRenderer] = None,
    settings: Optional[Settings] = None,
) -> ServiceContext:
    return ServiceContext(
        store=SqlSnapshotStore(session),
        clock=clock or SystemClock(),
        notifier=notifier or DatabaseNotifier(session),
        ids=SqlIdAllocator(session),
        words=default_words,
        renderer=renderer,
        settings=settings or get_settings(),
    )
