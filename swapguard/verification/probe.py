"""
Verification Probe
~~~~~~~~~~~~~~~~~~

Checks post-mutation state against a list of criteria and reports
pass/fail per criterion.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from swapguard.core.models import PredicateResult, VerificationReport
from swapguard.verification.criteria import BaseCriterion

__all__ = ["VerificationProbe"]

logger = logging.getLogger(__name__)


class VerificationProbe:
    """
    Runs every criterion, even after one fails, so the report names
    every unmet expectation.
    """

    def check(self, criteria: Iterable[BaseCriterion]) -> VerificationReport:
        """
        Evaluate all criteria.

        Args:
            criteria: The expectations to check.

        Returns:
            VerificationReport with one PredicateResult per criterion. A
            criterion that raises is recorded as failed with the error.
        """
        report = VerificationReport()
        for criterion in criteria:
            try:
                result = criterion.check()
            except Exception as exc:
                logger.warning("Criterion %r raised: %s", criterion.name, exc)
                result = PredicateResult(
                    name=criterion.name,
                    passed=False,
                    detail=f"{type(exc).__name__}: {exc}",
                )
            if result.passed:
                logger.debug("Criterion passed: %s", result.name)
            else:
                logger.warning("Criterion failed: %s (%s)", result.name, result.detail)
            report.results.append(result)
        return report
