"""Shared vocabularies for ingredient and yield parsing."""

COMMON_UNITS = {
    "tsp",
    "teaspoon",
    "tbsp",
    "tbs",
    "tablespoon",
    "cup",
    "c",
    "oz",
    "ounce",
    "fl",
    "lb",
    "pound",
    "g",
    "gram",
    "kg",
    "kilogram",
    "mg",
    "ml",
    "milliliter",
    "millilitre",
    "l",
    "liter",
    "litre",
    "pint",
    "pt",
    "quart",
    "qt",
    "gallon",
    "gal",
    "stick",
    "clove",
    "can",
    "package",
    "pkg",
    "slice",
    "piece",
    "pinch",
    "dash",
    "bunch",
    "sprig",
    "head",
    "inch",
    "jar",
    "bottle",
    "bag",
    "handful",
}

FRACTION_MAP = {
    "¼": 0.25,
    "½": 0.5,
    "¾": 0.75,
    "⅐": 1 / 7,
    "⅑": 1 / 9,
    "⅒": 0.1,
    "⅓": 1 / 3,
    "⅔": 2 / 3,
    "⅕": 0.2,
    "⅖": 0.4,
    "⅗": 0.6,
    "⅘": 0.8,
    "⅙": 1 / 6,
    "⅚": 5 / 6,
    "⅛": 0.125,
    "⅜": 0.375,
    "⅝": 0.625,
    "⅞": 0.875,
}

FRACTION_CHARS = "".join(FRACTION_MAP.keys())

DEFAULT_SERVINGS = 4
