"""Stateful invariant fuzzing engine.

Implements handler-based invariant testing with:
  - Bounded, precondition-gated actions over a fixed actor pool
  - Ghost-state reference model updated in lockstep with the SUT
  - Invariant checks after every step, rejected steps included
  - Delta-debugging and numeric shrinking of failing sequences
"""
