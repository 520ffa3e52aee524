"""Unit tests for pending binding request classification."""

from gifts.binding.pending import PendingState, pending_state


def _req(requester: str, target: str) -> dict:
    return {"id": f"{requester}->{target}", "requester_user_id": requester, "target_user_id": target}


class TestPendingState:
    def test_none(self):
        assert pending_state(None, None, "a", "b") is PendingState.NONE

    def test_same_pair_forward(self):
        assert pending_state(_req("a", "b"), None, "a", "b") is PendingState.SAME_PAIR

    def test_same_pair_seen_from_target_side(self):
        assert pending_state(None, _req("a", "b"), "a", "b") is PendingState.SAME_PAIR

    def test_requester_busy_with_someone_else(self):
        assert pending_state(_req("a", "c"), None, "a", "b") is PendingState.REQUESTER_BUSY

    def test_target_busy_with_someone_else(self):
        assert pending_state(None, _req("c", "b"), "a", "b") is PendingState.TARGET_BUSY

    def test_same_pair_wins_over_busy(self):
        assert pending_state(_req("a", "c"), _req("a", "b"), "a", "b") is PendingState.SAME_PAIR

    def test_requester_busy_reported_before_target_busy(self):
        assert pending_state(_req("a", "c"), _req("d", "b"), "a", "b") is PendingState.REQUESTER_BUSY
