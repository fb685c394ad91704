"""
Map a replay's (success, revert message) pair to a ValidationOutcome.

The execution host reports failures only as revert strings, so the cause is
told apart by message prefix. The prefixes belong to the host and change
between its releases; pass a different rule table rather than editing the
replay loop when they do.
"""

from typing import Sequence, Tuple

from .models import ValidationOutcome, ValidationResult

Rule = Tuple[str, ValidationOutcome]

DEFAULT_RULES: Tuple[Rule, ...] = (
    ("Mock Transaction Reverted:", ValidationOutcome.REPLAY_FAILURE),
    ("Assertion Executor Error: ForkTxExecutionError", ValidationOutcome.REPLAY_FAILURE),
    ("Expected 1 assertion to be executed, but 0", ValidationOutcome.SKIPPED),
)


class RevertClassifier:
    def __init__(self, rules: Sequence[Rule] = DEFAULT_RULES):
        self.rules = tuple(rules)

    def classify(self, success: bool, message: str = "") -> ValidationResult:
        if success:
            return ValidationResult(ValidationOutcome.SUCCESS)
        for prefix, outcome in self.rules:
            if message.startswith(prefix):
                return ValidationResult(outcome, message)
        # anything unrecognised is treated as a genuine assertion failure
        return ValidationResult(ValidationOutcome.ASSERTION_FAILED, message)

    __call__ = classify
