from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Tuple


MODELS_TABLE = "models"
MEDIA_TABLE = "models_media"
TARGET_TABLES = (MODELS_TABLE, MEDIA_TABLE)

FIELD_TYPES = ("text", "numeric", "url", "enum", "array")


@dataclass(frozen=True)
class FieldDescriptor:
    name: str
    type: str
    description: str = ""
    values: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.type not in FIELD_TYPES:
            raise ValueError(f"Unknown field type for {self.name}: {self.type}")

    def to_prompt(self) -> Dict:
        out: Dict = {"type": self.type}
        if self.description:
            out["description"] = self.description
        if self.values:
            out["values"] = list(self.values)
        return out


def _uniq(*values: str) -> Tuple[str, ...]:
    seen: list[str] = []
    for v in values:
        if v not in seen:
            seen.append(v)
    return tuple(seen)


BOARD_CATEGORIES = _uniq(
    "image", "mainboard", "a_new_face", "development", "non_binary_aka_x_division",
    "direct", "youth", "classic", "timeless", "curve", "teen", "commercial",
    "preview", "verve", "big_and_tall", "a_family", "couples", "petite",
    "lifestyle", "fit", "runway", "streetcast", "elite", "premier",
)

HAIR_COLOURS = _uniq(
    "platinum_blonde", "ash_blonde", "sandy_blonde", "strawberry_blonde", "honey_blonde",
    "black", "grey", "yellow", "green", "blue", "purple", "lavender", "emerald_green",
    "rose_gold", "dark_brown", "medium_brown", "light_brown", "chestnut_brown",
    "golden_brown", "ash_brown", "reddish_brown", "mahogany_brown", "blonde",
    "dirty_blonde", "light_blonde", "medium_blonde", "dark_blonde", "red", "copper_red",
    "ginger_red", "auburn", "deep_red", "strawberry_red", "white", "silver_gray",
    "salt_and_pepper", "steel_gray", "orange", "purple", "lavender", "lilac", "magenta",
    "electric_blue", "turquoise", "teal", "aqua", "sky_blue", "mint_green", "neon_green",
    "pastel_pink", "flamingo_pink", "hot_pink", "burgundy", "wine_red", "blood_red",
    "platinum_silver", "gunmetal_gray", "chestnut",
)

EYE_COLOURS = _uniq(
    "brown", "blue", "green", "hazel", "gray", "gray_green", "blue_green", "green_hazel",
    "dark_brown", "light_brown", "blue_grey", "black", "grey_green",
)

GENDERS = ("male", "female", "transgender", "non-binary", "transman", "transwoman")


def _fields(*descriptors: FieldDescriptor) -> Dict[str, FieldDescriptor]:
    return {d.name: d for d in descriptors}


MODELS_FIELDS: Dict[str, FieldDescriptor] = _fields(
    FieldDescriptor("model_name", "text"),
    FieldDescriptor("profile_url", "url", "The model's profile URL"),
    FieldDescriptor("min_estimated_age", "numeric", "The model's minimum estimated age in years"),
    FieldDescriptor("max_estimated_age", "numeric", "The model's maximum estimated age in years"),
    FieldDescriptor("height", "numeric", "The model's height in centimeters (cm)"),
    FieldDescriptor("dress_size", "numeric", "The model's dress size in UK size scale"),
    FieldDescriptor("bra_size", "numeric", "The model's bra size in UK size scale"),
    FieldDescriptor("bikini_bottom_size", "numeric", "The model's bikini bottom size in UK size scale"),
    FieldDescriptor("chest_bust", "numeric", "The model's chest or bust measurement in centimeters (cm)"),
    FieldDescriptor("waist", "numeric", "The model's waist measurement in centimeters (cm)"),
    FieldDescriptor("hips", "numeric", "The model's hips measurement in centimeters (cm)"),
    FieldDescriptor("jeans_size", "numeric", "The model's jeans size in UK size scale"),
    FieldDescriptor("shoe_size", "numeric", "The model's shoe size in UK size scale"),
    FieldDescriptor("instagram_account", "url", "The model's Instagram account URL"),
    FieldDescriptor("model_board_category", "enum", "The category of the model's board", BOARD_CATEGORIES),
    FieldDescriptor("hair_colour", "enum", "The model's hair colour", HAIR_COLOURS),
    FieldDescriptor("eye_colour", "enum", "The model's eye colour", EYE_COLOURS),
    FieldDescriptor("sexuality", "enum", "The model's sexual orientation", ("gay", "bisexual", "pansexual", "asexual")),
    FieldDescriptor("gender", "enum", "The model's gender orientation", GENDERS),
    FieldDescriptor(
        "pronouns", "enum", "The model's preferred pronouns",
        ("they_them", "he_him_his", "she_her_hers", "she_they", "she_he"),
    ),
    FieldDescriptor(
        "body_type", "array",
        "List of text values representing attributes of the model's body type",
        ("petite", "curve", "plus_size", "athletic", "muscular"),
    ),
    FieldDescriptor("hobby_interest_talent", "text", "The model's hobbies, interests, or talents"),
    FieldDescriptor(
        "location", "text",
        "Model location priority: use Instagram location if present; never use agency/office "
        "locations (e.g., 'Fabbrica Milano Management (Milan) Italy'); use Models.com (MDC) "
        "location only if no other location column exists. Example values: 'UK', 'USA', 'France'.",
    ),
    FieldDescriptor("models_dot_com_profile", "text", "Direct link to the model's Models.com profile"),
    FieldDescriptor(
        "mdc_achievements", "text",
        "Achievements listed on the ModelsDotCom profile, e.g., Legends, Top 50, Hot List",
    ),
    FieldDescriptor(
        "data_source", "text",
        "The source of the data, for example the name of the .csv file used to ingest the data",
    ),
)

# id and model_id are generated/linked by the system and must not be mapped
MODELS_MEDIA_FIELDS: Dict[str, FieldDescriptor] = _fields(
    FieldDescriptor("link", "url", "Direct URL to an image or media resource for the model"),
)

TABLE_FIELDS: Dict[str, Dict[str, FieldDescriptor]] = {
    MODELS_TABLE: MODELS_FIELDS,
    MEDIA_TABLE: MODELS_MEDIA_FIELDS,
}

# Never accepted from a user- or model-supplied mapping.
RESERVED_FIELDS: Dict[str, Tuple[str, ...]] = {
    MODELS_TABLE: ("data_source",),
    MEDIA_TABLE: ("id", "model_id"),
}

MEDIA_LINK_KEY = f"{MEDIA_TABLE}.link"

NAME_FIELD = "model_name"
IDENTITY_ALT_FIELD = "instagram_account"

LENGTH_FIELDS = frozenset({"height", "chest_bust", "waist", "hips"})

SHOE_TRANSFORM_BY_FIELD = {
    "shoe_size": "toUkShoeMin",
}


def enum_values(column: str) -> Tuple[str, ...]:
    d = MODELS_FIELDS.get(column)
    if d is None or d.type != "enum":
        return ()
    return d.values


def is_known_column(table: str, column: str) -> bool:
    return column in TABLE_FIELDS.get(table, {})


def is_reserved(table: str, column: str) -> bool:
    return column in RESERVED_FIELDS.get(table, ())


def fields_for_prompt(table: str) -> Dict[str, Dict]:
    return {name: d.to_prompt() for name, d in TABLE_FIELDS[table].items()}
