"""
Automated data-quality checks.

Modules:
    rules: Heuristics producing tagged flags (low accuracy, outlier, unexpected range)
    engine: Batch flagging, auto-approval and campaign statistics
    scheduler: APScheduler job running the engine periodically

Usage:
    engine = QualityEngine(async_session_maker)
    flagged = await engine.flag_suspicious_readings()
    approved = await engine.auto_approve_qualified()
"""

from quality.rules import QualityRules, Baseline, compute_baseline
from quality.engine import QualityEngine, AUTO_APPROVAL_NOTE
from quality.scheduler import QualityScheduler

__all__ = [
    "QualityRules",
    "Baseline",
    "compute_baseline",
    "QualityEngine",
    "AUTO_APPROVAL_NOTE",
    "QualityScheduler",
]
