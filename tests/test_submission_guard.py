from datetime import timedelta

import pytest

from scribequeue.core.dedup import SubmissionGuard, payload_digest
from scribequeue.domain.errors import DuplicateSubmission, SubmissionRejected

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def guard(clock) -> SubmissionGuard:
    return SubmissionGuard(
        window=timedelta(seconds=30), debounce=timedelta(milliseconds=500), clock=clock
    )


# ---------------------------------------------------------------------------
# payload_digest
# ---------------------------------------------------------------------------


def test_digest_is_stable_and_content_based():
    assert payload_digest(b"abc") == payload_digest(b"abc")
    assert payload_digest(b"abc") != payload_digest(b"abd")
    assert len(payload_digest(b"")) == 64


# ---------------------------------------------------------------------------
# debounce
# ---------------------------------------------------------------------------


def test_double_click_is_rejected(guard: SubmissionGuard):
    guard.debounce_action("process:item-1")
    with pytest.raises(DuplicateSubmission):
        guard.debounce_action("process:item-1")


def test_debounce_is_per_action(guard: SubmissionGuard):
    guard.debounce_action("process:item-1")
    guard.debounce_action("process:item-2")


def test_action_allowed_again_after_debounce(guard: SubmissionGuard, clock):
    guard.debounce_action("process:item-1")
    clock.advance(milliseconds=500)
    guard.debounce_action("process:item-1")


# ---------------------------------------------------------------------------
# payload dedup
# ---------------------------------------------------------------------------


def test_same_payload_within_window_is_rejected(guard: SubmissionGuard, clock):
    digest = payload_digest(b"recording")
    guard.claim_payload(digest)
    clock.advance(seconds=29)
    with pytest.raises(SubmissionRejected):
        guard.claim_payload(digest)


def test_same_payload_after_window_is_allowed(guard: SubmissionGuard, clock):
    digest = payload_digest(b"recording")
    guard.claim_payload(digest)
    clock.advance(seconds=30)
    guard.claim_payload(digest)


def test_different_payloads_do_not_collide(guard: SubmissionGuard):
    guard.claim_payload(payload_digest(b"one"))
    guard.claim_payload(payload_digest(b"two"))


def test_released_payload_can_be_claimed_again(guard: SubmissionGuard):
    digest = payload_digest(b"recording")
    guard.claim_payload(digest)
    guard.release_payload(digest)
    guard.claim_payload(digest)
    guard.release_payload("never-claimed")
