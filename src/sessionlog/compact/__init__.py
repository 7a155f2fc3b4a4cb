"""Daily and monthly compaction of rendered transcripts."""

from sessionlog.compact.chunking import CompactionDocument, build_monthly_input, plan_chunks
from sessionlog.compact.daily import (
    DailyReport,
    DayOutcome,
    extract_session,
    find_pending_days,
    run_dailies,
)
from sessionlog.compact.monthly import (
    ChunkReport,
    MonthlyCompactor,
    MonthlyRun,
    MonthlyState,
    find_pending_months,
    run_pending_monthlies,
)
from sessionlog.compact.synthesizer import CompactionError, CompactionSynthesizer

__all__ = [
    "ChunkReport",
    "CompactionDocument",
    "CompactionError",
    "CompactionSynthesizer",
    "DailyReport",
    "DayOutcome",
    "MonthlyCompactor",
    "MonthlyRun",
    "MonthlyState",
    "build_monthly_input",
    "extract_session",
    "find_pending_days",
    "find_pending_months",
    "plan_chunks",
    "run_dailies",
    "run_pending_monthlies",
]
