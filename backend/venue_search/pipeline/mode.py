from __future__ import annotations

from dataclasses import dataclass

from ..errors import FailureReason
from ..models import Mode, ParsedIntent


@dataclass(slots=True, frozen=True)
class ModeInputs:
    intent: ParsedIntent
    result_count: int
    has_location: bool
    error_reason: FailureReason | None = None


@dataclass(slots=True, frozen=True)
class ModeDecision:
    mode: Mode
    failure_reason: FailureReason


CAPABILITY_FAILURES = frozenset(
    {
        FailureReason.PROVIDER_ERROR,
        FailureReason.GEOCODING_FAILED,
        FailureReason.TIMEOUT,
        FailureReason.QUOTA_EXCEEDED,
        FailureReason.CAPACITY_EXCEEDED,
    }
)


def classify_mode(inputs: ModeInputs, recovery_threshold: float = 0.6) -> ModeDecision:
    """Pick the single response mode. CLARIFY outranks RECOVERY, which outranks NORMAL."""
    intent = inputs.intent
    if intent.ambiguous_tokens:
        return ModeDecision(Mode.CLARIFY, FailureReason.AMBIGUOUS_QUERY)
    if intent.requires_location and not inputs.has_location:
        return ModeDecision(Mode.CLARIFY, FailureReason.MISSING_LOCATION)

    if inputs.error_reason is not None and inputs.error_reason in CAPABILITY_FAILURES:
        return ModeDecision(Mode.RECOVERY, inputs.error_reason)
    if inputs.result_count == 0:
        return ModeDecision(Mode.RECOVERY, FailureReason.NO_RESULTS)
    if intent.confidence < recovery_threshold:
        return ModeDecision(Mode.RECOVERY, FailureReason.LOW_CONFIDENCE)
    return ModeDecision(Mode.NORMAL, FailureReason.NONE)


__all__ = ["ModeInputs", "ModeDecision", "classify_mode", "CAPABILITY_FAILURES"]
