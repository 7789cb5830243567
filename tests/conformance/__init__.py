"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the BNSL engine.

The tests are organized by invariant:
1. test_schedule.py - Payout count, value and dates
2. test_immutability.py - Locked values never change
3. test_idempotency.py - Repeated steps never pay twice
4. test_concurrency.py - Per-plan serialization, one transition per plan
5. test_transitions.py - One-directional plan state machine

These tests use hypothesis for property-based testing.
"""
