"""Pure GCRA (Generic Cell Rate Algorithm) decision functions.

The bucket is described by a single theoretical arrival time (TAT): the
instant at which it would be fully drained if no further requests came.
Absent state is equivalent to TAT = now. All arithmetic is on integer
microseconds so admission boundaries are exact and reproducible.

The Lua scripts in redis_lua.py implement the same arithmetic and must be
kept in step with this module.
"""

from typing import Optional, Tuple

from cellgate.exceptions import InvalidSpecError
from cellgate.services.gcra.models import NEVER_US, Decision, RateSpec


def _validate_cost(cost: int) -> None:
    if isinstance(cost, bool) or not isinstance(cost, int):
        raise InvalidSpecError(f"cost must be an integer, got {cost!r}")
    if cost < 1:
        raise InvalidSpecError(f"cost must be at least 1, got {cost}")


def _headroom(tat_us: int, now_us: int, spec: RateSpec) -> int:
    """Whole units that could be admitted at now_us, clamped to [0, burst]."""
    units = (now_us - (tat_us - spec.burst_offset_us)) // spec.emission_interval_us
    return max(0, min(spec.burst, units))


def evaluate(
    previous_tat_us: Optional[int],
    now_us: int,
    spec: RateSpec,
    cost: int = 1,
) -> Tuple[Optional[int], Decision]:
    """Decide whether `cost` units may be admitted at `now_us`.

    Args:
        previous_tat_us: Stored TAT for the key, or None if the key is absent
        now_us: Current time in microseconds
        spec: Rate specification
        cost: Units requested (>= 1)

    Returns:
        (new_tat_us, Decision). On denial new_tat_us is previous_tat_us
        unchanged, which may be None: a denial never consumes quota.

    Raises:
        InvalidSpecError: If cost is not a positive integer
    """
    _validate_cost(cost)
    interval = spec.emission_interval_us
    tat = now_us if previous_tat_us is None else max(previous_tat_us, now_us)

    if cost > spec.burst:
        # Larger than the bucket could ever hold
        return previous_tat_us, Decision(
            allowed=False,
            limit=spec.burst,
            remaining=_headroom(tat, now_us, spec),
            retry_after_us=NEVER_US,
            reset_after_us=tat - now_us,
        )

    new_tat = tat + cost * interval
    allow_at = new_tat - spec.burst_offset_us

    if allow_at <= now_us:
        remaining = max(0, min(spec.burst, (now_us - allow_at) // interval))
        return new_tat, Decision(
            allowed=True,
            limit=spec.burst,
            remaining=remaining,
            retry_after_us=0,
            reset_after_us=new_tat - now_us,
            admitted=cost,
        )

    return previous_tat_us, Decision(
        allowed=False,
        limit=spec.burst,
        remaining=_headroom(tat, now_us, spec),
        retry_after_us=allow_at - now_us,
        reset_after_us=tat - now_us,
    )


def evaluate_at_most(
    previous_tat_us: Optional[int],
    now_us: int,
    spec: RateSpec,
    n: int,
) -> Tuple[Optional[int], Decision]:
    """Admit as many of `n` units as the bucket currently holds.

    Allowed whenever at least one unit is available; Decision.admitted
    tells how many were consumed. When nothing is available the call is
    denied with retry_after set to the time until one unit frees up.
    """
    _validate_cost(n)
    interval = spec.emission_interval_us
    tat = now_us if previous_tat_us is None else max(previous_tat_us, now_us)
    available = _headroom(tat, now_us, spec)

    if available < 1:
        allow_at = tat - spec.burst_offset_us + interval
        return previous_tat_us, Decision(
            allowed=False,
            limit=spec.burst,
            remaining=0,
            retry_after_us=allow_at - now_us,
            reset_after_us=tat - now_us,
        )

    admitted = min(n, available)
    new_tat = tat + admitted * interval
    return new_tat, Decision(
        allowed=True,
        limit=spec.burst,
        remaining=available - admitted,
        retry_after_us=0,
        reset_after_us=new_tat - now_us,
        admitted=admitted,
    )
