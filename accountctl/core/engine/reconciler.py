"""
Result reconciler — folds per-app Results into one job status.

Precedence is a total order, worst first:

    error > partial > pending > success

The overall status is the worst status across all apps, so a single
failed application is never hidden behind others' success.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from accountctl.core.models.provisioning import RESULT_STATUSES, Result

# Index in RESULT_STATUSES is the severity rank
_RANK = {status: rank for rank, status in enumerate(RESULT_STATUSES)}


def _statuses(results: Mapping[str, Result] | Iterable[Result]) -> list[str]:
    if isinstance(results, Mapping):
        results = results.values()
    return [r.status for r in results]


def reconcile(results: Mapping[str, Result] | Iterable[Result]) -> str:
    """Overall status for a set of per-app Results.

    Raises:
        ValueError: If there are no results (an empty request must be
            rejected before it gets here).
    """
    statuses = _statuses(results)
    if not statuses:
        raise ValueError("Cannot reconcile an empty result set")
    return max(statuses, key=_RANK.__getitem__)


def summarize(results: Mapping[str, Result] | Iterable[Result]) -> dict[str, int]:
    """Count of apps per status, every status present."""
    counts = dict.fromkeys(RESULT_STATUSES, 0)
    for status in _statuses(results):
        counts[status] += 1
    return counts
