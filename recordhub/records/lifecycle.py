"""Augmentation lifecycle states and the transitions allowed between them."""

from __future__ import annotations

from enum import Enum


class AugmentationState(str, Enum):
    """Where a record stands in its augmentation lifecycle.

    Failures are not a state: a failed attempt reverts the record to the
    state it held before the attempt started.
    """

    UNAUGMENTED = "UNAUGMENTED"
    PROCESSING = "PROCESSING"
    AUGMENTED = "AUGMENTED"


# Forward transitions. Reverting a failed PROCESSING attempt and clearing
# results are handled separately by the store.
VALID_TRANSITIONS: dict[AugmentationState, set[AugmentationState]] = {
    AugmentationState.UNAUGMENTED: {AugmentationState.PROCESSING},
    AugmentationState.PROCESSING: {AugmentationState.AUGMENTED},
    AugmentationState.AUGMENTED: {AugmentationState.PROCESSING},
}


def can_transition(current: AugmentationState, target: AugmentationState) -> bool:
    return target in VALID_TRANSITIONS.get(current, set())
