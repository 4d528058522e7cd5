"""Tests for augmentation lifecycle states and transitions."""

from recordhub.records.lifecycle import VALID_TRANSITIONS, AugmentationState, can_transition


class TestLifecycle:
    def test_all_states_exist(self):
        assert {s.value for s in AugmentationState} == {"UNAUGMENTED", "PROCESSING", "AUGMENTED"}

    def test_every_state_has_transition_entry(self):
        for state in AugmentationState:
            assert state in VALID_TRANSITIONS

    def test_forward_path(self):
        assert can_transition(AugmentationState.UNAUGMENTED, AugmentationState.PROCESSING)
        assert can_transition(AugmentationState.PROCESSING, AugmentationState.AUGMENTED)

    def test_reaugmentation_allowed(self):
        assert can_transition(AugmentationState.AUGMENTED, AugmentationState.PROCESSING)

    def test_cannot_skip_processing(self):
        assert not can_transition(AugmentationState.UNAUGMENTED, AugmentationState.AUGMENTED)

    def test_no_self_loop_on_processing(self):
        assert not can_transition(AugmentationState.PROCESSING, AugmentationState.PROCESSING)
