"""Registry of settlement stages, in pipeline order."""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from leasely.settlement import deposit, expire, payin, payout, reversal, transfer
from leasely.settlement.batch import BatchSummary
from leasely.settlement.deps import SettlementDeps

StageRunner = Callable[[datetime, SettlementDeps], BatchSummary]

STAGES: dict[str, StageRunner] = {
    expire.STAGE: expire.run,
    payin.STAGE: payin.run,
    transfer.STAGE: transfer.run,
    payout.STAGE: payout.run,
    reversal.STAGE: reversal.run,
    deposit.STAGE: deposit.run,
}


class UnknownStageError(KeyError):
    """Raised for a stage name not in STAGES."""


def run_stage(stage: str, now: datetime, deps: SettlementDeps) -> BatchSummary:
    try:
        runner = STAGES[stage]
    except KeyError:
        raise UnknownStageError(stage) from None
    return runner(now, deps)
