from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ExtractionMethod(str, Enum):
    JSON_LD = "JsonLd"
    LLM = "Llm"
    MANUAL = "Manual"


class _RecipeModel(BaseModel):
    # camelCase on the wire so JSON pointer paths in normalize patches read naturally
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Ingredient(_RecipeModel):
    name: str
    quantity: float = 0
    unit: Optional[str] = None
    notes: Optional[str] = None


class NutritionInfo(_RecipeModel):
    calories: Optional[float] = None
    protein_grams: Optional[float] = None
    carbs_grams: Optional[float] = None
    fat_grams: Optional[float] = None
    fiber_grams: Optional[float] = None
    sugar_grams: Optional[float] = None
    sodium_mg: Optional[float] = None


class Recipe(_RecipeModel):
    """Canonical recipe shape shared by extraction, validation and normalize."""

    id: str
    name: str
    description: Optional[str] = None
    ingredients: List[Ingredient] = Field(default_factory=list)
    instructions: List[str] = Field(default_factory=list)
    cuisine: Optional[str] = None
    diet_type: Optional[str] = None
    prep_time_minutes: int = 0
    cook_time_minutes: int = 0
    servings: int = 0
    nutrition: Optional[NutritionInfo] = None
    tags: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_document(self) -> dict:
        """JSON-ready camelCase document, the shape stored and patched."""
        return self.model_dump(mode="json", by_alias=True)


class RecipeSource(_RecipeModel):
    url: str
    url_hash: str
    site_name: Optional[str] = None
    author: Optional[str] = None
    retrieved_at: datetime
    extraction_method: ExtractionMethod
    license_hint: Optional[str] = None


class StoredRecipeRead(BaseModel):
    id: str
    name: str
    document: Recipe
    source_json: Optional[dict] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
