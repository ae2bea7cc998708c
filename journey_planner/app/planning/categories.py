"""Category taxonomy filters used around interest-to-category mapping."""

from journey_planner.app.models.provider import PoiCategory

MAX_RELEVANT_CATEGORIES = 50
GENERAL_FALLBACK_COUNT = 3

RELEVANT_CATEGORY_NAMES = (
    "restaurant",
    "museum",
    "landmark",
    "park",
    "church",
    "temple",
    "cathedral",
    "gallery",
    "monument",
    "historic",
    "market",
    "cafe",
    "shopping",
    "theater",
    "attraction",
    "entertainment",
    "cultural",
    "scenic",
    "viewpoint",
    "beach",
    "hotel",
    "accommodation",
    "transport",
    "station",
    "airport",
    "hospital",
    "pharmacy",
    "bank",
    "atm",
    "gas",
    "fuel",
    "parking",
)

GENERAL_CATEGORY_NAMES = ("restaurant", "landmark", "park", "museum", "attraction")


def _labels(category: PoiCategory) -> list[str]:
    return [label.lower() for label in category.all_labels if label.strip()]


def is_relevant_category(category: PoiCategory) -> bool:
    """Travel and tourism categories; a label matches when either contains the other."""
    return any(
        name in label or label in name
        for name in RELEVANT_CATEGORY_NAMES
        for label in _labels(category)
    )


def is_general_category(category: PoiCategory) -> bool:
    """Broadly useful categories used when interest mapping fails."""
    return any(name in label for name in GENERAL_CATEGORY_NAMES for label in _labels(category))


def relevant_categories(
    taxonomy: list[PoiCategory], limit: int = MAX_RELEVANT_CATEGORIES
) -> list[PoiCategory]:
    """Pre-filter the taxonomy before handing it to the advisor."""
    return [c for c in taxonomy if is_relevant_category(c)][:limit]


def general_category_ids(
    taxonomy: list[PoiCategory], limit: int = GENERAL_FALLBACK_COUNT
) -> list[str]:
    return [c.id for c in taxonomy if is_general_category(c)][:limit]


def validate_category_ids(category_ids: list[str], taxonomy: list[PoiCategory]) -> list[str]:
    """Keep ids present in the taxonomy, in order, without duplicates."""
    known = {c.id for c in taxonomy}
    valid: list[str] = []
    for category_id in category_ids:
        category_id = str(category_id)
        if category_id in known and category_id not in valid:
            valid.append(category_id)
    return valid


def category_name(category_id: str, taxonomy: list[PoiCategory]) -> str | None:
    for category in taxonomy:
        if category.id == category_id:
            return category.name
    return None
