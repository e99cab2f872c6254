from __future__ import annotations


class ScratcherNotFoundError(ValueError):
    pass


class ScratcherConflictError(ValueError):
    pass


class ScratcherIntegrityError(ValueError):
    """Referenced records disagree with each other (e.g. snapshot store vs report store)."""


class RolloverRequiredError(ScratcherConflictError):
    """An end reading went backwards on a pack that was never replaced.

    ``slots`` lists ``{'slot_id', 'slot_number'}`` for every slot that needs a
    new pack activated before the snapshot can be accepted.
    """

    def __init__(self, slots: list[dict]) -> None:
        super().__init__('Pack rollover detected. Activate a new pack before submitting end snapshot.')
        self.slots = slots
