"""Scheduling core: recurrence, blocks, conflicts, availability and materialization."""

from .availability_resolver import find_free_intervals, split_into_slots
from .conflict_detector import Conflict, check_conflict
from .occurrence_materializer import MaterializationResult, materialize
from .recurrence_expander import expand
from .schedule_blocks import apply_template, is_open_at, validate_blocks

__all__ = [
    "find_free_intervals",
    "split_into_slots",
    "Conflict",
    "check_conflict",
    "MaterializationResult",
    "materialize",
    "expand",
    "apply_template",
    "is_open_at",
    "validate_blocks",
]
