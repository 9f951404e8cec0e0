"""AI-backed recipe operations.

Each operation binds a prompt, a pydantic target model and a rule-based
fallback to the shared fallback-chain mechanics. The fallback always returns
an instance of the same model, so callers never need to know which path
answered, only ``ai_generated`` tells them.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Iterable, List, Literal, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from . import prompts
from .fallback import FallbackOrchestrator

__all__ = [
    "SearchParams",
    "Recommendations",
    "RecipeAnalysis",
    "RecipeModification",
    "WeatherSuggestion",
    "OperationResult",
    "StructuredOperation",
    "SEARCH_NORMALIZER",
    "RECOMMENDER",
    "ANALYZER",
    "DIETARY_CONVERTER",
    "WEATHER_SUGGESTER",
]

M = TypeVar("M", bound=BaseModel)


class _Payload(BaseModel):
    # Models answer in camelCase; Python code uses snake_case.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------------
# Payload models
# ---------------------------------------------------------------------------


class SearchParams(_Payload):
    query: str = Field(..., min_length=1)
    cuisine: Optional[str] = None
    diet: Optional[str] = None
    intolerances: Optional[str] = None
    meal_type: Optional[str] = None
    include_ingredients: Optional[str] = None
    exclude_ingredients: Optional[str] = None
    max_ready_time: Optional[int] = Field(None, ge=1)

    @field_validator("query")
    @classmethod
    def _strip_query(cls, v: str) -> str:
        v = " ".join(v.split())
        if not v:
            raise ValueError("query must not be blank")
        return v

    @field_validator("cuisine", "diet", "intolerances", "meal_type", "include_ingredients", "exclude_ingredients", mode="before")
    @classmethod
    def _join_lists(cls, v: Any) -> Any:
        if isinstance(v, list):
            v = ",".join(str(x) for x in v if x)
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    def to_filters(self) -> Dict[str, Any]:
        """Search API parameters, without the query itself."""
        mapping = {
            "cuisine": self.cuisine,
            "diet": self.diet,
            "intolerances": self.intolerances,
            "type": self.meal_type,
            "includeIngredients": self.include_ingredients,
            "excludeIngredients": self.exclude_ingredients,
            "maxReadyTime": self.max_ready_time,
        }
        return {k: v for k, v in mapping.items() if v is not None}


class Recommendations(_Payload):
    queries: List[str] = Field(..., min_length=1)
    reason: str = ""

    @field_validator("queries")
    @classmethod
    def _clean(cls, v: List[str]) -> List[str]:
        cleaned = [" ".join(q.split()) for q in v if q and q.strip()]
        if not cleaned:
            raise ValueError("at least one query is required")
        return cleaned


class HealthScore(_Payload):
    score: int = Field(..., ge=0, le=100)
    explanation: Optional[str] = None


class NutritionAnalysis(_Payload):
    summary: Optional[str] = None
    strengths: List[str] = Field(default_factory=list)
    concerns: List[str] = Field(default_factory=list)


class Substitution(_Payload):
    original: str
    substitute: str
    reason: Optional[str] = None
    dietary_benefit: Optional[str] = None


class Allergen(_Payload):
    allergen: str
    severity: Literal["low", "medium", "high"] = "medium"
    sources: List[str] = Field(default_factory=list)


class CookingDifficulty(_Payload):
    level: Literal["beginner", "intermediate", "advanced"]
    explanation: Optional[str] = None
    tips: List[str] = Field(default_factory=list)


class TimeValidation(_Payload):
    estimated_time: Optional[int] = Field(None, ge=0)
    discrepancy: Optional[str] = None


class RecipeAnalysis(_Payload):
    health_score: HealthScore
    nutrition_analysis: NutritionAnalysis = Field(default_factory=NutritionAnalysis)
    ingredient_substitutions: List[Substitution] = Field(default_factory=list)
    allergens: List[Allergen] = Field(default_factory=list)
    cooking_difficulty: Optional[CookingDifficulty] = None
    time_validation: Optional[TimeValidation] = None


class IngredientSwap(_Payload):
    original: str
    substitute: str
    reason: Optional[str] = None


class RecipeModification(_Payload):
    modified_ingredients: List[IngredientSwap] = Field(default_factory=list)
    modified_instructions: Optional[str] = None
    explanation: str = ""
    tips: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _not_empty(self) -> "RecipeModification":
        if not (self.modified_ingredients or self.modified_instructions or self.explanation.strip()):
            raise ValueError("modification carries no ingredients, instructions or explanation")
        return self


class WeatherSuggestion(_Payload):
    queries: List[str] = Field(..., min_length=1)
    reasoning: str = ""


# ---------------------------------------------------------------------------
# Operation plumbing
# ---------------------------------------------------------------------------


@dataclass
class OperationResult(Generic[M]):
    data: M
    ai_generated: bool
    provider: Optional[str] = None


class StructuredOperation(Generic[M]):
    """One logical AI operation on top of a FallbackOrchestrator."""

    def __init__(
        self,
        name: str,
        system_prompt: str,
        render_prompt: Callable[..., str],
        model: Type[M],
        fallback: Callable[..., M],
    ) -> None:
        self.name = name
        self.system_prompt = system_prompt
        self.render_prompt = render_prompt
        self.model = model
        self.fallback = fallback

    async def run(self, orchestrator: FallbackOrchestrator, **inputs: Any) -> OperationResult[M]:
        result = await orchestrator.complete(
            self.system_prompt,
            self.render_prompt(**inputs),
            fallback=lambda: self.fallback(**inputs),
            expect=dict,
            validate=self.model.model_validate,
            operation=self.name,
        )
        return OperationResult(data=result.payload, ai_generated=result.ai_generated, provider=result.provider)

    def __repr__(self) -> str:
        return f"<StructuredOperation {self.name} -> {self.model.__name__}>"


# ---------------------------------------------------------------------------
# Recipe helpers shared by prompts and fallbacks
# ---------------------------------------------------------------------------


def ingredient_names(recipe: Mapping[str, Any]) -> List[str]:
    names = []
    for item in recipe.get("extendedIngredients") or recipe.get("ingredients") or []:
        if isinstance(item, str):
            names.append(item)
        elif isinstance(item, Mapping):
            name = item.get("original") or item.get("name") or item.get("nameClean")
            if name:
                names.append(str(name))
    return names


def instruction_steps(recipe: Mapping[str, Any]) -> List[str]:
    steps: List[str] = []
    for block in recipe.get("analyzedInstructions") or []:
        for step in block.get("steps", []):
            if step.get("step"):
                steps.append(step["step"])
    if not steps and recipe.get("instructions"):
        text = re.sub(r"<[^>]+>", " ", str(recipe["instructions"]))
        steps = [s.strip() for s in re.split(r"(?<=[.!?])\s+|\n+", text) if s.strip()]
    return steps


def _bullets(items: Iterable[str]) -> str:
    lines = [f"- {i}" for i in items]
    return "\n".join(lines) if lines else "- (none listed)"


def _numbered(items: Iterable[str]) -> str:
    lines = [f"{n}. {s}" for n, s in enumerate(items, start=1)]
    return "\n".join(lines) if lines else "(no instructions)"


def _words(text: str) -> set:
    return set(re.findall(r"[a-z]+", text.lower()))


# ---------------------------------------------------------------------------
# 1. Search query normalizer
# ---------------------------------------------------------------------------


def _search_fallback(query: str) -> SearchParams:
    return SearchParams(query=" ".join(query.split()) or query)


SEARCH_NORMALIZER: StructuredOperation[SearchParams] = StructuredOperation(
    name="search_normalizer",
    system_prompt=prompts.SEARCH_NORMALIZER_SYSTEM,
    render_prompt=lambda query: prompts.SEARCH_NORMALIZER_USER.format(query=query.strip()),
    model=SearchParams,
    fallback=_search_fallback,
)


# ---------------------------------------------------------------------------
# 2. Recommendation generator
# ---------------------------------------------------------------------------


def _render_recommend(ingredients: List[str], preferences: Optional[str] = None, diet: Optional[str] = None) -> str:
    return prompts.RECOMMENDER_USER.format(
        ingredients=", ".join(ingredients) or "none given",
        preferences=preferences or "none given",
        diet=diet or "no restriction",
    )


def _recommend_fallback(ingredients: List[str], preferences: Optional[str] = None, diet: Optional[str] = None) -> Recommendations:
    prefix = f"{diet} " if diet else ""
    queries: List[str] = []
    if ingredients:
        queries.append(prefix + " ".join(ingredients[:3]))
        queries.extend(prefix + i for i in ingredients[:3])
    if preferences:
        queries.append(prefix + preferences)
    if not queries:
        queries.append(prefix + "quick dinner")
    queries = list(dict.fromkeys(" ".join(q.split()) for q in queries))[:5]
    basis = "the ingredients you have" if ingredients else "your preferences"
    return Recommendations(queries=queries, reason=f"Recipes matching {basis}.")


RECOMMENDER: StructuredOperation[Recommendations] = StructuredOperation(
    name="recommender",
    system_prompt=prompts.RECOMMENDER_SYSTEM,
    render_prompt=_render_recommend,
    model=Recommendations,
    fallback=_recommend_fallback,
)


# ---------------------------------------------------------------------------
# 3. Nutrition / health analyzer
# ---------------------------------------------------------------------------

ALLERGEN_KEYWORDS: Dict[str, List[str]] = {
    "gluten": ["flour", "wheat", "bread", "pasta", "spaghetti", "noodles", "barley", "rye", "couscous", "breadcrumbs"],
    "dairy": ["milk", "butter", "cheese", "cream", "yogurt", "yoghurt", "parmesan", "mozzarella", "ghee"],
    "eggs": ["egg", "eggs", "mayonnaise"],
    "nuts": ["almond", "almonds", "walnut", "walnuts", "pecan", "pecans", "cashew", "cashews", "hazelnut", "pistachio"],
    "peanuts": ["peanut", "peanuts"],
    "soy": ["soy", "tofu", "edamame", "tempeh", "miso"],
    "shellfish": ["shrimp", "prawn", "prawns", "crab", "lobster", "mussels", "clams", "scallops"],
    "fish": ["salmon", "tuna", "cod", "anchovy", "anchovies", "fish", "sardines"],
    "sesame": ["sesame", "tahini"],
}

_HIGH_SEVERITY = {"peanuts", "nuts", "shellfish"}


def _detect_allergens(ingredients: List[str]) -> List[Allergen]:
    found: List[Allergen] = []
    for allergen, keywords in ALLERGEN_KEYWORDS.items():
        kw = set(keywords)
        sources = [i for i in ingredients if _words(i) & kw]
        if sources:
            found.append(Allergen(
                allergen=allergen,
                severity="high" if allergen in _HIGH_SEVERITY else "medium",
                sources=sources,
            ))
    return found


def _render_analyze(recipe: Mapping[str, Any]) -> str:
    return prompts.ANALYZER_USER.format(
        title=recipe.get("title", "Untitled"),
        ready_in_minutes=recipe.get("readyInMinutes", "unknown"),
        servings=recipe.get("servings", "unknown"),
        ingredients=_bullets(ingredient_names(recipe)),
        instructions=_numbered(instruction_steps(recipe)),
    )


def _analyze_fallback(recipe: Mapping[str, Any]) -> RecipeAnalysis:
    ingredients = ingredient_names(recipe)
    steps = instruction_steps(recipe)

    score = recipe.get("healthScore")
    if isinstance(score, (int, float)):
        score = int(max(0, min(100, round(score))))
        explanation = "Score reported by the recipe source."
    else:
        score = 50
        explanation = "No nutrition data available; neutral score."

    if len(steps) <= 5 and len(ingredients) <= 8:
        level = "beginner"
    elif len(steps) <= 10 and len(ingredients) <= 15:
        level = "intermediate"
    else:
        level = "advanced"

    strengths, concerns = [], []
    if recipe.get("vegetarian"):
        strengths.append("Vegetarian")
    if recipe.get("veryHealthy"):
        strengths.append("Marked very healthy by the source")
    if recipe.get("dairyFree"):
        strengths.append("Dairy free")
    if score < 40:
        concerns.append("Low overall health score")

    ready = recipe.get("readyInMinutes")
    return RecipeAnalysis(
        health_score=HealthScore(score=score, explanation=explanation),
        nutrition_analysis=NutritionAnalysis(
            summary=f"{len(ingredients)} ingredients, {len(steps)} steps.",
            strengths=strengths,
            concerns=concerns,
        ),
        allergens=_detect_allergens(ingredients),
        cooking_difficulty=CookingDifficulty(
            level=level,
            explanation=f"Based on {len(steps)} steps and {len(ingredients)} ingredients.",
        ),
        time_validation=TimeValidation(estimated_time=ready if isinstance(ready, int) else None),
    )


ANALYZER: StructuredOperation[RecipeAnalysis] = StructuredOperation(
    name="analyzer",
    system_prompt=prompts.ANALYZER_SYSTEM,
    render_prompt=_render_analyze,
    model=RecipeAnalysis,
    fallback=_analyze_fallback,
)


# ---------------------------------------------------------------------------
# 4. Dietary conversion generator
# ---------------------------------------------------------------------------

# keyword -> substitute, per diet
SUBSTITUTIONS: Dict[str, Dict[str, str]] = {
    "vegan": {
        "butter": "plant-based butter",
        "milk": "oat milk",
        "cream": "coconut cream",
        "cheese": "nutritional yeast",
        "parmesan": "nutritional yeast",
        "yogurt": "soy yogurt",
        "egg": "flax egg",
        "eggs": "flax eggs",
        "honey": "maple syrup",
        "chicken": "chickpeas",
        "beef": "lentils",
        "pork": "smoked tofu",
        "bacon": "smoked tempeh",
        "fish": "marinated tofu",
        "gelatin": "agar agar",
    },
    "vegetarian": {
        "chicken": "chickpeas",
        "beef": "mushrooms",
        "pork": "smoked tofu",
        "bacon": "smoked tempeh",
        "fish": "halloumi",
        "shrimp": "king oyster mushrooms",
        "anchovies": "capers",
        "gelatin": "agar agar",
    },
    "gluten free": {
        "flour": "gluten-free flour blend",
        "pasta": "gluten-free pasta",
        "spaghetti": "gluten-free spaghetti",
        "bread": "gluten-free bread",
        "breadcrumbs": "gluten-free breadcrumbs",
        "couscous": "quinoa",
        "soy sauce": "tamari",
        "barley": "brown rice",
    },
    "dairy free": {
        "butter": "olive oil",
        "milk": "almond milk",
        "cream": "coconut cream",
        "cheese": "dairy-free cheese",
        "yogurt": "coconut yogurt",
    },
    "keto": {
        "sugar": "erythritol",
        "flour": "almond flour",
        "pasta": "zucchini noodles",
        "spaghetti": "zucchini noodles",
        "rice": "cauliflower rice",
        "potato": "cauliflower",
        "potatoes": "cauliflower",
        "bread": "lettuce wraps",
    },
}

_DIET_ALIASES = {
    "gluten-free": "gluten free",
    "glutenfree": "gluten free",
    "dairy-free": "dairy free",
    "dairyfree": "dairy free",
    "ketogenic": "keto",
}


def normalize_diet(diet: str) -> str:
    key = " ".join(diet.lower().replace("_", " ").split())
    return _DIET_ALIASES.get(key, key)


def _render_convert(recipe: Mapping[str, Any], diet: str) -> str:
    return prompts.DIETARY_CONVERTER_USER.format(
        diet=diet,
        title=recipe.get("title", "Untitled"),
        ingredients=_bullets(ingredient_names(recipe)),
        instructions=_numbered(instruction_steps(recipe)),
    )


def _keyword_pattern(keyword: str) -> re.Pattern:
    return re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE)


def _convert_fallback(recipe: Mapping[str, Any], diet: str) -> RecipeModification:
    table = SUBSTITUTIONS.get(normalize_diet(diet), {})
    # longest keywords first so "soy sauce" wins over "soy"
    ordered = sorted(table.items(), key=lambda kv: -len(kv[0]))

    swaps: List[IngredientSwap] = []
    for ingredient in ingredient_names(recipe):
        for keyword, substitute in ordered:
            if _keyword_pattern(keyword).search(ingredient):
                swaps.append(IngredientSwap(
                    original=ingredient,
                    substitute=substitute,
                    reason=f"{keyword} is not {diet}",
                ))
                break

    steps = instruction_steps(recipe)
    instructions = None
    if steps:
        text = "\n".join(steps)
        for keyword, substitute in ordered:
            text = _keyword_pattern(keyword).sub(substitute, text)
        instructions = text

    if not table:
        explanation = f"No automatic substitutions are known for '{diet}'."
    elif swaps:
        explanation = f"Swapped {len(swaps)} ingredient(s) using standard {diet} substitutes."
    else:
        explanation = f"The recipe already appears to be {diet}."
    return RecipeModification(
        modified_ingredients=swaps,
        modified_instructions=instructions,
        explanation=explanation,
        tips=["Check labels of packaged ingredients."] if table else [],
    )


DIETARY_CONVERTER: StructuredOperation[RecipeModification] = StructuredOperation(
    name="dietary_converter",
    system_prompt=prompts.DIETARY_CONVERTER_SYSTEM,
    render_prompt=_render_convert,
    model=RecipeModification,
    fallback=_convert_fallback,
)


# ---------------------------------------------------------------------------
# 5. Weather-based suggestions
# ---------------------------------------------------------------------------

HOT_THRESHOLD_C = 25.0
COLD_THRESHOLD_C = 10.0
_WET_CONDITIONS = {"rain", "drizzle", "thunderstorm", "snow"}


def _render_weather(temperature_c: float, condition: str, description: str = "", location: str = "") -> str:
    return prompts.WEATHER_SUGGESTER_USER.format(
        temperature_c=temperature_c,
        condition=condition,
        description=description or condition,
        location=location or "unknown",
    )


def _weather_fallback(temperature_c: float, condition: str, description: str = "", location: str = "") -> WeatherSuggestion:
    if temperature_c >= HOT_THRESHOLD_C:
        queries = ["salad", "cold soup", "grilled vegetables", "ceviche"]
        reasoning = f"It is hot ({temperature_c:.0f} C), so light and cold dishes fit best."
    elif temperature_c <= COLD_THRESHOLD_C:
        queries = ["soup", "stew", "chili", "casserole"]
        reasoning = f"It is cold ({temperature_c:.0f} C), so warming dishes fit best."
    elif condition.lower() in _WET_CONDITIONS:
        queries = ["risotto", "curry", "baked pasta"]
        reasoning = f"It is {condition.lower()} outside, a good day for comfort food."
    else:
        queries = ["pasta", "stir fry", "tacos"]
        reasoning = f"Mild weather ({temperature_c:.0f} C) suits everyday favourites."
    return WeatherSuggestion(queries=queries, reasoning=reasoning)


WEATHER_SUGGESTER: StructuredOperation[WeatherSuggestion] = StructuredOperation(
    name="weather_suggester",
    system_prompt=prompts.WEATHER_SUGGESTER_SYSTEM,
    render_prompt=_render_weather,
    model=WeatherSuggestion,
    fallback=_weather_fallback,
)
