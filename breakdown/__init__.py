# Breakdown Store + Merge Applier
from .contract import MergeReport, apply_amendment, apply_amendment_strict
from .merge import MergeOptions, clear_amendment_flags, merge_snapshot

__all__ = [
    "MergeReport",
    "MergeOptions",
    "apply_amendment",
    "apply_amendment_strict",
    "clear_amendment_flags",
    "merge_snapshot",
]
