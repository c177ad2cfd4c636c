"""
Routing Resolver -- approval path and first-line approver for a request.

Responsibility:
    Turns (student cohort, category) into the ordered approval path and the
    year-band / first-line approver identity for the cohort.  Also owns the
    block-name normalization used by every scope comparison.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - ``approval_path(EMERGENCY)`` is ``approval_path(NORMAL)`` with the
      first-line role removed.  It is a total function over ``Category``.
    - Identical input gives an identical ``RoutePlan``; the plan is stored
      on the request at creation and never recomputed.
"""

from __future__ import annotations

from dataclasses import dataclass

from permit_kernel.domain.permission import (
    FLOOR_SCOPED_ROLES,
    ApproverProfile,
    ApproverRole,
    Category,
    FirstLineRoute,
    StudentCohort,
)

NORMAL_PATH: tuple[ApproverRole, ...] = (
    ApproverRole.FLOOR_INCHARGE,
    ApproverRole.HOSTEL_INCHARGE,
    ApproverRole.WARDEN,
)

FIRST_LINE_ROLE = NORMAL_PATH[0]

# (upper semester bound inclusive, band number, band label)
YEAR_BANDS: tuple[tuple[int, int, str], ...] = (
    (2, 1, "1st"),
    (4, 2, "2nd"),
    (6, 3, "3rd"),
)
FINAL_YEAR_BAND: tuple[int, str] = (4, "4th")

_WOMENS_BLOCK_VARIANTS = frozenset({"w-block", "womens-block", "women's-block"})


def approval_path(category: Category) -> tuple[ApproverRole, ...]:
    """Ordered roles a request of ``category`` must clear."""
    if category == Category.EMERGENCY:
        return NORMAL_PATH[1:]
    return NORMAL_PATH


def year_band(semester: int) -> tuple[int, str]:
    """Map a semester to (band number, band label): 1-2, 3-4, 5-6, 7+."""
    sem = semester or 1
    for upper, number, label in YEAR_BANDS:
        if sem <= upper:
            return number, label
    return FINAL_YEAR_BAND


def block_suffix(block: str | None, default: str = "d") -> str:
    """Single-letter block code used in approver mailbox names."""
    if not block:
        return default
    first = block.strip().lower()[:1]
    if first in ("d", "e", "w"):
        return first
    return default


def canonical_block(block: str | None) -> str:
    """Comparison key for a block name; W-Block and Womens-Block collapse."""
    key = (block or "").strip().lower()
    if key in _WOMENS_BLOCK_VARIANTS:
        return "w-block"
    return key


def block_variants(block: str) -> tuple[str, ...]:
    """Every stored spelling that names the same block as ``block``."""
    if canonical_block(block) == "w-block":
        return ("W-Block", "Womens-Block")
    return (block,)


def scope_key(block: str, floor: str) -> str:
    """Real-time topic for approver consoles watching one block/floor."""
    return f"{block}-{floor}"


class AcademicCohortMapper:
    """
    Maps (semester, block) to the year band and first-line approver mailbox.

    Mailboxes follow ``floorincharge{band}.{suffix}@{domain}``.
    """

    def __init__(self, email_domain: str = "kietgroup.com", default_suffix: str = "d"):
        self._email_domain = email_domain
        self._default_suffix = default_suffix

    def map(self, semester: int, block: str) -> FirstLineRoute:
        number, label = year_band(semester)
        suffix = block_suffix(block, self._default_suffix)
        return FirstLineRoute(
            year_band=label,
            approver_email=f"floorincharge{number}.{suffix}@{self._email_domain}",
        )


@dataclass(frozen=True)
class RoutePlan:
    """Path and first-line route, computed once at submission."""

    path: tuple[ApproverRole, ...]
    first_line: FirstLineRoute

    @property
    def first_role(self) -> ApproverRole:
        return self.path[0]


def resolve_route(
    cohort: StudentCohort,
    category: Category,
    mapper: AcademicCohortMapper,
) -> RoutePlan:
    """Compute the route for a new request."""
    return RoutePlan(
        path=approval_path(category),
        first_line=mapper.map(cohort.semester, cohort.block),
    )


def covers(approver: ApproverProfile, block: str, floor: str) -> bool:
    """True when the approver's assigned scope contains block (and floor)."""
    target = canonical_block(block)
    if not any(canonical_block(b) == target for b in approver.assigned_blocks):
        return False
    if approver.role in FLOOR_SCOPED_ROLES:
        return str(floor) in {str(f) for f in approver.assigned_floors}
    return True
