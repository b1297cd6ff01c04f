"""
Tiered platform fee policy.

The fee withheld from positive daily profit depends on how many
investors are currently active. Tier boundaries are business
configuration (``FEE_TIERS``), so the schedule is built from a table
rather than hardcoded branches.
"""
from typing import List, Optional, Sequence, Tuple

from config import DEFAULT_FEE_TIERS


class FeeSchedule:
    """
    Maps an active-investor count to a fee rate.

    ``tiers`` is a sequence of ``(max_investors, rate)`` pairs in
    ascending order of ``max_investors``; the last tier may use ``None``
    as an open upper bound. Counts beyond the last bounded tier clamp to
    the last tier, negative counts clamp to the first.
    """

    def __init__(self, tiers: Optional[Sequence[Tuple[Optional[int], float]]] = None):
        tiers = list(tiers if tiers is not None else DEFAULT_FEE_TIERS)
        if not tiers:
            raise ValueError("Fee schedule needs at least one tier.")

        bounds = [bound for bound, _ in tiers]
        if any(bound is None for bound in bounds[:-1]):
            raise ValueError("Only the last fee tier may be unbounded.")
        bounded = [bound for bound in bounds if bound is not None]
        if bounded != sorted(bounded) or len(set(bounded)) != len(bounded):
            raise ValueError("Fee tier bounds must be strictly ascending.")
        for _, rate in tiers:
            if not 0.0 <= rate <= 1.0:
                raise ValueError(f"Fee rate {rate} is outside [0, 1].")

        self.tiers: List[Tuple[Optional[int], float]] = [(b, float(r)) for b, r in tiers]

    def _tier_index(self, active_investors: int) -> int:
        count = max(0, int(active_investors))
        for index, (bound, _) in enumerate(self.tiers):
            if bound is None or count <= bound:
                return index
        return len(self.tiers) - 1

    def rate(self, active_investors: int) -> float:
        return self.tiers[self._tier_index(active_investors)][1]

    __call__ = rate

    def describe(self, active_investors: int) -> str:
        """Human readable label of the tier the count falls into, e.g. '2-5 active investors'."""
        index = self._tier_index(active_investors)
        bound = self.tiers[index][0]
        lower = self.tiers[index - 1][0] + 1 if index > 0 else 0

        if bound is None:
            return f"over {lower - 1} active investors" if lower > 0 else "any number of active investors"
        if index == 0:
            return f"under {bound + 1} active investors"
        if lower == bound:
            return f"{bound} active investors"
        return f"{lower}-{bound} active investors"

    def simulate(self, gross_profit: float, active_investors: int) -> dict:
        """Estimate the fee taken on a hypothetical day."""
        rate = self.rate(active_investors)
        estimated_fee = gross_profit * rate if gross_profit > 0 else 0.0
        return {
            "active_investors": active_investors,
            "fee_rate": rate,
            "tier": self.describe(active_investors),
            "gross_profit": gross_profit,
            "estimated_fee": estimated_fee,
            "estimated_net_profit": gross_profit - estimated_fee,
        }


_default_schedule = FeeSchedule()


def fee_rate(active_investors: int) -> float:
    """Fee rate under the default tier table."""
    return _default_schedule.rate(active_investors)
