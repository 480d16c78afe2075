from __future__ import annotations

from typing import Set

from hlwatch.core.types import EventIdentity


class DedupLedger:
    """Append-only set of fill identities seen during this process lifetime.

    Nothing is persisted or evicted; a restart forgets everything and may
    re-notify fills that are still inside the poll window.
    """

    def __init__(self) -> None:
        self._seen: Set[EventIdentity] = set()

    def has(self, identity: EventIdentity) -> bool:
        return identity in self._seen

    def add(self, identity: EventIdentity) -> None:
        self._seen.add(identity)

    def claim(self, identity: EventIdentity) -> bool:
        """Record the identity and return True if it was not seen before.

        Check and insert happen in one synchronous call; there must be no
        await between them.
        """
        if identity in self._seen:
            return False
        self._seen.add(identity)
        return True

    def __contains__(self, identity: object) -> bool:
        return identity in self._seen

    def __len__(self) -> int:
        return len(self._seen)
