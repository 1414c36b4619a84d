"""Upsert-by-pointer binding for rendered views."""

from __future__ import annotations

import logging
from enum import Enum

from signal_leaderboard.objectstore.base import ObjectStore
from signal_leaderboard.objectstore.errors import ContentUnchangedError, ObjectStoreError

logger = logging.getLogger(__name__)


class BindingState(Enum):
    """Whether a view is bound to a published message."""

    UNBOUND = "unbound"
    BOUND = "bound"


class PointerBinding:
    """Binds one rendered view to the message it is published as.

    ``upsert`` always yields a valid pointer or raises:

    - bound: edit in place; an unchanged-content refusal is a success that
      keeps the pointer; any other edit failure falls back to send + pin.
    - unbound: send + pin.

    A failed send raises and leaves the binding (and the previously
    published message) untouched.

    Example:
        >>> binding = PointerBinding(config_pointer_id)
        >>> pointer_id = await binding.upsert(store, channel, html)
    """

    def __init__(self, pointer_id: int | None = None, *, pin: bool = True) -> None:
        self.pointer_id = pointer_id
        self._pin = pin

    @property
    def state(self) -> BindingState:
        return BindingState.UNBOUND if self.pointer_id is None else BindingState.BOUND

    def unbind(self) -> None:
        self.pointer_id = None

    async def upsert(self, store: ObjectStore, channel: str, content: str) -> int:
        if self.pointer_id is not None:
            try:
                await store.edit_text(channel, self.pointer_id, content)
                return self.pointer_id
            except ContentUnchangedError:
                return self.pointer_id
            except ObjectStoreError as e:
                logger.warning(
                    "Edit of message %d in %s failed (%s), sending a new one",
                    self.pointer_id,
                    channel,
                    e,
                )

        new_pointer = await store.send_text(channel, content)
        if self._pin:
            await store.pin(channel, new_pointer)
        self.pointer_id = new_pointer
        return new_pointer
