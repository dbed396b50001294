"""Optional run-history enrichment read from an agent's pointer index."""

from __future__ import annotations

import logging

from pydantic import BaseModel

from memledger.errors import RetrievalFailure
from memledger.memory.pointer import PointerProtocol
from memledger.memory.schemas import PointerIndex

logger = logging.getLogger(__name__)


class RunStats(BaseModel):
    runs_count: int = 0
    best_floor: int = 0
    victories: int = 0


def summarize_runs(index: PointerIndex | None) -> RunStats:
    if index is None:
        return RunStats()
    past = index.rpg.past_runs
    return RunStats(
        runs_count=len(past),
        best_floor=max((run.outcome_floor for run in past), default=0),
        victories=sum(1 for run in past if run.victory),
    )


async def load_run_stats(pointer: PointerProtocol, agent_id: str) -> RunStats | None:
    """Run statistics for *agent_id*, or ``None`` if the index is unreadable."""
    try:
        index = await pointer.read_index(agent_id)
    except RetrievalFailure as exc:
        logger.warning("Run history unavailable for agent %s: %s", agent_id, exc)
        return None
    return summarize_runs(index)
