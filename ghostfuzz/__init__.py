"""ghostfuzz — stateful invariant fuzzing with ghost-state bookkeeping and shrinking."""

from ghostfuzz.core.config import FuzzConfig
from ghostfuzz.core.logging import setup_logging
from ghostfuzz.core.types import FailureReport, OutcomeKind, Severity, StepRecord, Verdict
from ghostfuzz.fuzzer.actors import Actor, ActorPool
from ghostfuzz.fuzzer.bounds import bound
from ghostfuzz.fuzzer.driver import CampaignResult, FuzzCampaign
from ghostfuzz.fuzzer.errors import (
    BoundError,
    FuzzError,
    HandlerError,
    HarnessExhaustedError,
    RegistrationError,
)
from ghostfuzz.fuzzer.ghost import GhostState, GhostView
from ghostfuzz.fuzzer.handlers import (
    Action,
    CallResult,
    HandlerRegistry,
    InputKind,
    InputSpec,
    SystemUnderTest,
    actor_input,
    boolean,
    dynamic,
    sint,
    uint,
)
from ghostfuzz.fuzzer.invariants import Invariant, InvariantSet, Violation

__version__ = "0.1.0"

__all__ = [
    "Action",
    "Actor",
    "ActorPool",
    "BoundError",
    "CallResult",
    "CampaignResult",
    "FailureReport",
    "FuzzCampaign",
    "FuzzConfig",
    "FuzzError",
    "GhostState",
    "GhostView",
    "HandlerError",
    "HandlerRegistry",
    "HarnessExhaustedError",
    "InputKind",
    "InputSpec",
    "Invariant",
    "InvariantSet",
    "OutcomeKind",
    "RegistrationError",
    "Severity",
    "StepRecord",
    "SystemUnderTest",
    "Verdict",
    "Violation",
    "actor_input",
    "bound",
    "boolean",
    "dynamic",
    "setup_logging",
    "sint",
    "uint",
]
