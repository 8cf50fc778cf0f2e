# ABOUTME: Struggle and dependency analytics computed from interaction streams.
# ABOUTME: Re-exports the CSI, adaptive threshold, and HDI entry points.

from .hdi import HDIComponents, HDIResult, calculate_hdi, generate_hdi_report
from .struggle import (
    AdjustmentFactors,
    AdjustmentResult,
    CSIResult,
    StrugglePattern,
    analyze_learner_history,
    calculate_adaptive_threshold,
    calculate_csi,
    detect_struggle_pattern,
    get_adaptive_profile_thresholds,
)

__all__ = [
    "AdjustmentFactors",
    "AdjustmentResult",
    "CSIResult",
    "HDIComponents",
    "HDIResult",
    "StrugglePattern",
    "analyze_learner_history",
    "calculate_adaptive_threshold",
    "calculate_csi",
    "calculate_hdi",
    "detect_struggle_pattern",
    "generate_hdi_report",
    "get_adaptive_profile_thresholds",
]
