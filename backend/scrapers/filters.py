"""
Criteria filter.

Post-filters extracted loads against constraints the marketplace search form
cannot express. Pure functions: no I/O, input order preserved.
"""

from typing import List, Optional

from .base import ScrapedLoad, SearchCriteria


def filter_loads(
    loads: List[ScrapedLoad],
    min_rate: Optional[float] = None,
    equipment: Optional[str] = None,
    min_weight: Optional[float] = None,
    max_weight: Optional[float] = None,
) -> List[ScrapedLoad]:
    """
    Drop loads that fail any configured constraint.

    - rate below min_rate
    - equipment not containing the equipment substring (case-insensitive)
    - known weight outside [min_weight, max_weight]; loads whose weight
      could not be extracted are kept
    """
    equipment_needle = equipment.strip().lower() if equipment and equipment.strip() else None

    result = []
    for load in loads:
        if min_rate is not None and load.rate < min_rate:
            continue
        if equipment_needle and equipment_needle not in (load.equipment or '').lower():
            continue
        if load.is_known('weight') and load.weight > 0:
            if min_weight is not None and load.weight < min_weight:
                continue
            if max_weight is not None and load.weight > max_weight:
                continue
        result.append(load)
    return result


def filter_by_criteria(loads: List[ScrapedLoad], criteria: SearchCriteria) -> List[ScrapedLoad]:
    """Apply a SearchCriteria's post-filters."""
    return filter_loads(
        loads,
        min_rate=criteria.min_rate,
        equipment=criteria.equipment_type,
        min_weight=criteria.min_weight,
        max_weight=criteria.max_weight,
    )
