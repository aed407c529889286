"""
Tests for the per-round completion ledger.
"""

from __future__ import annotations

from solders.keypair import Keypair

from evore_crank.scheduler.completion import RoundCompletionTracker


def test_mark_and_query():
    tracker = RoundCompletionTracker()
    a, b = Keypair().pubkey(), Keypair().pubkey()
    tracker.mark_submitted(a, 10)
    assert tracker.is_submitted(a, 10)
    assert not tracker.is_submitted(a, 11)
    assert not tracker.is_submitted(b, 10)
    assert len(tracker) == 1


def test_round_change_keeps_only_new_round():
    tracker = RoundCompletionTracker()
    a, b = Keypair().pubkey(), Keypair().pubkey()
    tracker.mark_submitted(a, 10)
    tracker.mark_submitted(b, 11)
    tracker.on_round_change(11)
    assert tracker.entries() == frozenset({(b, 11)})


def test_checkpoint_marks():
    tracker = RoundCompletionTracker()
    a = Keypair().pubkey()
    tracker.mark_checkpoint_submitted(a, 9)
    assert tracker.is_checkpoint_submitted(a, 9)
    tracker.forget_checkpoint(a, 9)
    assert not tracker.is_checkpoint_submitted(a, 9)
    tracker.forget_checkpoint(a, 9)


def test_round_change_clears_checkpoints():
    tracker = RoundCompletionTracker()
    a = Keypair().pubkey()
    tracker.mark_checkpoint_submitted(a, 9)
    tracker.on_round_change(11)
    assert not tracker.is_checkpoint_submitted(a, 9)
