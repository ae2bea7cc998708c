"""Interest balance enforcement over advisor rankings.

Two heuristic themes are recognized: food and cultural. A theme is requested
when any interest term contains one of its interest keywords, and a POI
belongs to a theme when its category contains one of the theme's category
keywords. Matching is case-insensitive substring matching.
"""

import logging
from collections.abc import Callable

from journey_planner.app.models.provider import PointOfInterest

logger = logging.getLogger(__name__)

FOOD_INTEREST_KEYWORDS = ("food", "restaurant", "dining", "cafe", "cuisine")
CULTURAL_INTEREST_KEYWORDS = ("museum", "historic", "cultural", "monument")

FOOD_CATEGORY_KEYWORDS = ("restaurant", "cafe", "food", "japanese", "chinese", "italian", "bar", "pub")
CULTURAL_CATEGORY_KEYWORDS = (
    "museum",
    "gallery",
    "historic",
    "monument",
    "landmark",
    "church",
    "cathedral",
    "temple",
    "building",
)

MAX_FOOD_STOPS = 2
MAX_INJECTED_PER_THEME = 2


def _mentions(terms: list[str], keywords: tuple[str, ...]) -> bool:
    return any(keyword in term.lower() for term in terms for keyword in keywords)


def wants_food(interests: list[str]) -> bool:
    return _mentions(interests, FOOD_INTEREST_KEYWORDS)


def wants_cultural(interests: list[str]) -> bool:
    return _mentions(interests, CULTURAL_INTEREST_KEYWORDS)


def _category_matches(category: str | None, keywords: tuple[str, ...]) -> bool:
    if not category:
        return False
    lowered = category.lower()
    return any(keyword in lowered for keyword in keywords)


def is_food_poi(poi: PointOfInterest) -> bool:
    return _category_matches(poi.category, FOOD_CATEGORY_KEYWORDS)


def is_cultural_poi(poi: PointOfInterest) -> bool:
    return _category_matches(poi.category, CULTURAL_CATEGORY_KEYWORDS)


def enforce_interest_balance(
    candidates: list[PointOfInterest],
    ranked_ids: list[str],
    interests: list[str],
    max_pois: int,
) -> list[str]:
    """Correct an advisor ranking so every requested theme is represented.

    - Fewer than two interests: ranking returned unchanged.
    - Requested theme with zero ranked POIs: up to two matching candidates
      are pulled from the full pool and placed inside the first max_pois
      slots, ahead of the lower-ranked tail.
    - More than two food POIs ranked: the lowest-ranked extras are dropped.
    - Otherwise the ranking is returned unchanged.

    POIs of themes the user did not request are kept in ranked order.

    Args:
        candidates: Full candidate pool after filtering
        ranked_ids: Advisor ranking (ids known to the pool)
        interests: Parsed interest terms
        max_pois: Stop cap used by greedy selection

    Returns:
        Balanced ranking of POI ids
    """
    if len(interests) < 2:
        logger.debug("Single interest - balance enforcement skipped")
        return list(ranked_ids)

    by_id = {poi.id: poi for poi in candidates}
    ranked = [by_id[poi_id] for poi_id in ranked_ids if poi_id in by_id]

    food_requested = wants_food(interests)
    cultural_requested = wants_cultural(interests)
    ranked_food = [poi for poi in ranked if is_food_poi(poi)]
    ranked_cultural = [poi for poi in ranked if is_cultural_poi(poi)]

    needs_food_fix = food_requested and not ranked_food
    needs_cultural_fix = cultural_requested and not ranked_cultural
    needs_food_limit = len(ranked_food) > MAX_FOOD_STOPS

    if not (needs_food_fix or needs_cultural_fix or needs_food_limit):
        return list(ranked_ids)

    logger.warning(
        "Ranking needs balance correction",
        extra={
            "structured": {
                "food_fix": needs_food_fix,
                "cultural_fix": needs_cultural_fix,
                "food_limit": needs_food_limit,
            }
        },
    )

    excess_food = {poi.id for poi in ranked_food[MAX_FOOD_STOPS:]}
    kept = [poi.id for poi in ranked if poi.id not in excess_food]

    injected: list[str] = []
    taken = set(kept)
    if needs_cultural_fix:
        injected.extend(_pick(candidates, is_cultural_poi, taken))
    if needs_food_fix:
        injected.extend(_pick(candidates, is_food_poi, taken))

    if injected:
        logger.info("Injected %d candidates to restore interest coverage", len(injected))

    head = max(max_pois - len(injected), 0)
    return kept[:head] + injected + kept[head:]


def _pick(
    candidates: list[PointOfInterest],
    matches: Callable[[PointOfInterest], bool],
    taken: set[str],
) -> list[str]:
    picked: list[str] = []
    for poi in candidates:
        if len(picked) >= MAX_INJECTED_PER_THEME:
            break
        if poi.id not in taken and matches(poi):
            picked.append(poi.id)
            taken.add(poi.id)
    return picked


def validate_interest_coverage(selected: list[PointOfInterest], interests: list[str]) -> list[str]:
    """Diagnostic pass over the final selection. Returns problems found, never raises."""
    problems: list[str] = []
    food_count = sum(1 for poi in selected if is_food_poi(poi))
    cultural_count = sum(1 for poi in selected if is_cultural_poi(poi))

    if wants_food(interests) and food_count == 0:
        problems.append("food requested but no food stops selected")
    if wants_cultural(interests) and cultural_count == 0:
        problems.append("cultural sites requested but no cultural stops selected")
    if food_count > MAX_FOOD_STOPS:
        problems.append(f"too many food stops selected ({food_count})")

    for problem in problems:
        logger.warning("Interest coverage: %s", problem)

    return problems
