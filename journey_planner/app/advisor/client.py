"""Planning advisor with OpenAI integration.

Security: Reads API key from settings (environment) only, never hardcoded.
Provides a deterministic heuristic advisor when no key is present and as the
fallback for any failed advisor call.
"""

import json
import logging
from typing import Any, Protocol

from openai import AsyncOpenAI

from journey_planner.app.config import Settings
from journey_planner.app.models.common import TravelMode
from journey_planner.app.models.provider import PoiCategory, PointOfInterest
from journey_planner.app.planning.categories import general_category_ids, relevant_categories

logger = logging.getLogger(__name__)

# Static dwell table used when the advisor cannot estimate (exact category match)
FALLBACK_DWELL_MINUTES = {
    "museum": 120,
    "restaurant": 90,
    "attraction": 60,
    "shop": 30,
}
FALLBACK_DWELL_DEFAULT = 60


class AdvisorError(Exception):
    """Advisor returned an unusable response."""

    pass


def clamp_minutes(minutes: int, floor: int, ceiling: int) -> int:
    return max(floor, min(ceiling, minutes))


class PlanningAdvisor(Protocol):
    """Protocol for planning advisor implementations."""

    async def map_interests_to_categories(
        self,
        interests: str,
        language: str,
        city: str,
        categories: list[PoiCategory],
    ) -> list[str]:
        """Map free-text interests onto provider category ids.

        Args:
            interests: Raw comma-separated interests
            language: Preferred language code
            city: Locality the trip starts in
            categories: Full provider taxonomy

        Returns:
            Category ids (caller validates them against the taxonomy)
        """
        ...

    async def estimate_dwell_minutes(
        self,
        poi: PointOfInterest,
        language: str,
        defaults: dict[str, int],
        floor: int,
        ceiling: int,
    ) -> int:
        """Estimate minutes spent on site, clamped to [floor, ceiling]."""
        ...

    async def rank_pois(
        self,
        candidates: list[PointOfInterest],
        interests: list[str],
        language: str,
        mode: TravelMode,
        max_pois: int,
        budget_minutes: int,
    ) -> list[str]:
        """Select and order up to max_pois candidate ids."""
        ...

    async def generate_descriptions(
        self,
        stops: list[PointOfInterest],
        language: str,
        city: str,
    ) -> dict[str, str]:
        """Localized descriptions keyed by POI id."""
        ...


class HeuristicPlanningAdvisor:
    """Deterministic advisor (no API key required)."""

    async def map_interests_to_categories(
        self,
        interests: str,
        language: str,
        city: str,
        categories: list[PoiCategory],
    ) -> list[str]:
        return general_category_ids(categories)

    async def estimate_dwell_minutes(
        self,
        poi: PointOfInterest,
        language: str,
        defaults: dict[str, int],
        floor: int,
        ceiling: int,
    ) -> int:
        category = (poi.category or "").lower()
        minutes = FALLBACK_DWELL_MINUTES.get(category, FALLBACK_DWELL_DEFAULT)
        return clamp_minutes(minutes, floor, ceiling)

    async def rank_pois(
        self,
        candidates: list[PointOfInterest],
        interests: list[str],
        language: str,
        mode: TravelMode,
        max_pois: int,
        budget_minutes: int,
    ) -> list[str]:
        return [poi.id for poi in candidates[:max_pois]]

    async def generate_descriptions(
        self,
        stops: list[PointOfInterest],
        language: str,
        city: str,
    ) -> dict[str, str]:
        return {poi.id: poi.description or poi.name for poi in stops}


class OpenAIPlanningAdvisor:
    """OpenAI-backed planning advisor using JSON-object responses."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        ranking_model: str = "gpt-4o",
        timeout_seconds: float = 30.0,
        client: AsyncOpenAI | None = None,
    ):
        """Initialize OpenAI advisor.

        Args:
            api_key: OpenAI API key (read from environment)
            model: Model for category mapping and dwell estimation
            ranking_model: Model for ranking and descriptions
            timeout_seconds: Per-request timeout
            client: Optional preconfigured client (for testing)
        """
        self.client = client or AsyncOpenAI(api_key=api_key, timeout=timeout_seconds)
        self.model = model
        self.ranking_model = ranking_model

    async def _complete_json(self, model: str, system_prompt: str, user_prompt: str) -> dict[str, Any]:
        response = await self.client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            response_format={"type": "json_object"},
            temperature=0.3,
        )

        content = response.choices[0].message.content or ""
        if not content.strip():
            raise AdvisorError("OpenAI returned empty response")

        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            raise AdvisorError(f"OpenAI returned invalid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise AdvisorError("OpenAI response is not a JSON object")
        return payload

    async def map_interests_to_categories(
        self,
        interests: str,
        language: str,
        city: str,
        categories: list[PoiCategory],
    ) -> list[str]:
        category_lines = "\n".join(
            f"ID: {c.id}, Name: {c.name}, Synonyms: [{', '.join(c.synonyms)}]"
            for c in relevant_categories(categories)
        )
        user_prompt = (
            f"User interests: {interests}\n"
            f"City: {city}\n"
            f"Language preference: {language}\n\n"
            f"Available POI categories:\n{category_lines}"
        )

        payload = await self._complete_json(self.model, CATEGORY_MAPPING_PROMPT, user_prompt)
        category_ids = payload.get("categoryIds")
        if not isinstance(category_ids, list):
            raise AdvisorError("Category mapping response missing categoryIds")
        return [str(category_id) for category_id in category_ids]

    async def estimate_dwell_minutes(
        self,
        poi: PointOfInterest,
        language: str,
        defaults: dict[str, int],
        floor: int,
        ceiling: int,
    ) -> int:
        user_prompt = (
            f"POI category: {poi.category}\n"
            f"POI name: {poi.name}\n"
            f"Location context: {poi.address}\n"
            f"Default estimates by category: {json.dumps(defaults)}\n"
            f"Minimum floor: {floor} minutes\n"
            f"Maximum ceiling: {ceiling} minutes"
        )

        payload = await self._complete_json(self.model, DWELL_ESTIMATION_PROMPT, user_prompt)
        minutes = payload.get("estimatedMinutes")
        if isinstance(minutes, bool) or not isinstance(minutes, (int, float)):
            raise AdvisorError("Dwell estimation response missing estimatedMinutes")
        return clamp_minutes(int(minutes), floor, ceiling)

    async def rank_pois(
        self,
        candidates: list[PointOfInterest],
        interests: list[str],
        language: str,
        mode: TravelMode,
        max_pois: int,
        budget_minutes: int,
    ) -> list[str]:
        candidates_json = json.dumps(
            [
                {
                    "id": poi.id,
                    "name": poi.name,
                    "category": poi.category,
                    "rating": poi.rating,
                    "estimatedVisitMinutes": poi.estimated_min_visit_minutes,
                }
                for poi in candidates
            ]
        )
        user_prompt = (
            f"POI candidates: {candidates_json}\n"
            f"User interests: {', '.join(interests)}\n"
            f"Travel mode: {mode.value}\n"
            f"Maximum POIs to select: {max_pois}\n"
            f"Total time budget: {budget_minutes} minutes\n"
            f"Language preference: {language}"
        )

        payload = await self._complete_json(self.ranking_model, RANKING_PROMPT, user_prompt)
        ranked_ids = payload.get("rankedIds")
        if not isinstance(ranked_ids, list):
            raise AdvisorError("Ranking response missing rankedIds")
        return [str(poi_id) for poi_id in ranked_ids]

    async def generate_descriptions(
        self,
        stops: list[PointOfInterest],
        language: str,
        city: str,
    ) -> dict[str, str]:
        stops_json = json.dumps(
            [
                {
                    "id": poi.id,
                    "name": poi.name,
                    "address": poi.address,
                    "category": poi.category,
                    "description": poi.description,
                    "rating": poi.rating,
                    "reviewCount": poi.review_count,
                    "tags": poi.tags,
                    "estimatedVisitMinutes": poi.estimated_min_visit_minutes,
                }
                for poi in stops
            ]
        )
        user_prompt = f"POIs to describe: {stops_json}\nTarget language: {language}\nCity: {city}"

        payload = await self._complete_json(self.ranking_model, DESCRIPTION_PROMPT, user_prompt)
        descriptions = payload.get("descriptions")
        if not isinstance(descriptions, dict):
            raise AdvisorError("Description response missing descriptions")
        return {str(k): str(v) for k, v in descriptions.items() if isinstance(v, str) and v.strip()}


async def get_planning_advisor(settings: Settings) -> PlanningAdvisor:
    """Factory function to get appropriate advisor based on config.

    Returns:
        OpenAIPlanningAdvisor if API key is configured, HeuristicPlanningAdvisor otherwise
    """
    api_key = settings.openai_api_key

    if api_key and api_key.get_secret_value():
        logger.info("Using OpenAI planning advisor")
        return OpenAIPlanningAdvisor(
            api_key=api_key.get_secret_value(),
            model=settings.openai_model,
            ranking_model=settings.openai_ranking_model,
            timeout_seconds=settings.advisor_timeout_seconds,
        )
    else:
        logger.warning("No OpenAI API key configured, using heuristic planning advisor")
        return HeuristicPlanningAdvisor()


CATEGORY_MAPPING_PROMPT = """You are an experienced travel advisor who knows the POI category taxonomy well.

Map the traveler's interests to category IDs from the list provided.

RULES:
1. Every distinct interest the traveler mentions must be covered by at least one category.
2. One interest: choose 3-5 categories for depth.
3. Two interests: choose 2-3 categories for each.
4. Three or more interests: choose 1-2 categories for each.
5. If food is mentioned, include at least one food category (for example restaurant and cafe).
6. Only use IDs that appear in the list.

Respond with JSON only:
{"categoryIds": ["7317", "9361"], "reasoning": "how each interest is covered"}"""

DWELL_ESTIMATION_PROMPT = """You are a practical travel planner.

Estimate the minimum realistic time, in minutes, a visitor spends at the place described.
Start from the default estimate for its category, then adjust for the kind of place,
its likely size and typical visitor behavior. Stay within the given floor and ceiling.

Respond with JSON only:
{"estimatedMinutes": 90, "reasoning": "one sentence"}"""

RANKING_PROMPT = """You are a travel curator choosing stops for a short, time-boxed outing.

Select and order POI IDs from the candidates so that:
1. Every interest type the traveler mentions has at least one stop.
2. At most 2 stops are food related, and at least 1 when food is mentioned.
3. Museums, historic sites or landmarks are included when culture is mentioned.
4. Within those rules, prefer the best rated places that fit the time budget and travel mode.
5. No more than the maximum number of POIs is returned.

Respond with JSON only:
{"rankedIds": ["id1", "id2"], "reasoning": "how each interest is represented"}"""

DESCRIPTION_PROMPT = """You are a local guide who has lived in this city for many years.

For each POI write 2-3 sentences in the target language, speaking directly to a traveler
who is standing there: why locals value the place, what they will see and hear, and one
practical tip (best time, what to ask for, what to look out for). Avoid brochure phrases.

Respond with JSON only:
{"descriptions": {"poi_id": "description"}}"""
