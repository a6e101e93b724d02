"""Canonical equipment vocabulary and free-text normalization.

Exercise records and client questionnaires spell equipment inconsistently
("Dumbbells", "DB", "pull-up bar"). Every comparison goes through
``normalize_equipment`` so that both sides land on the same tag.
"""
import re
from collections import Counter
from functools import lru_cache

CANONICAL_EQUIPMENT: tuple[str, ...] = (
    "barbell", "dumbbell", "kettlebell", "cable_machine", "smith_machine",
    "resistance_band", "pull_up_bar", "bench", "squat_rack", "leg_press",
    "leg_curl_machine", "lat_pulldown_machine", "rowing_machine", "treadmill",
    "bike", "box", "plyo_box", "medicine_ball", "stability_ball", "foam_roller",
    "trx", "landmine", "sled", "battle_ropes", "agility_ladder", "cones", "yoga_mat",
)

EQUIPMENT_ALIASES: dict[str, str] = {
    "dumbbells": "dumbbell",
    "barbells": "barbell",
    "kettlebells": "kettlebell",
    "cables": "cable_machine",
    "cable": "cable_machine",
    "bands": "resistance_band",
    "band": "resistance_band",
    "resistance_bands": "resistance_band",
    "cones_set": "cones",
    "db": "dumbbell",
    "bb": "barbell",
    "kb": "kettlebell",
    "pull_up": "pull_up_bar",
    "pullup": "pull_up_bar",
    "pullup_bar": "pull_up_bar",
    "pull-up_bar": "pull_up_bar",
    "chin_up_bar": "pull_up_bar",
    "chinup_bar": "pull_up_bar",
    "battle_rope": "battle_ropes",
    "plyo": "plyo_box",
    "med_ball": "medicine_ball",
    "swiss_ball": "stability_ball",
    "exercise_ball": "stability_ball",
    "smith": "smith_machine",
    "lat_pulldown": "lat_pulldown_machine",
    "leg_curl": "leg_curl_machine",
    "leg_press_machine": "leg_press",
    "rower": "rowing_machine",
    "erg": "rowing_machine",
    "treadmills": "treadmill",
    "bikes": "bike",
    "boxes": "box",
    "mat": "yoga_mat",
    "foam_rollers": "foam_roller",
    "sleds": "sled",
    "agility_ladders": "agility_ladder",
}

FUZZY_THRESHOLD = 0.7

_CANONICAL_SET = frozenset(CANONICAL_EQUIPMENT)
_WHITESPACE = re.compile(r"\s+")


def _bigrams(value: str) -> Counter:
    return Counter(value[i:i + 2] for i in range(len(value) - 1))


def bigram_similarity(a: str, b: str) -> float:
    """Sørensen-Dice coefficient over character bigram multisets."""
    if len(a) < 2 or len(b) < 2:
        return 0.0
    overlap = sum((_bigrams(a) & _bigrams(b)).values())
    return 2 * overlap / (len(a) + len(b) - 2)


def _clean(name: str) -> str:
    return _WHITESPACE.sub("_", name.strip().lower())


def _lookup(name: str) -> str | None:
    if name in EQUIPMENT_ALIASES:
        return EQUIPMENT_ALIASES[name]
    if name in _CANONICAL_SET:
        return name
    return None


@lru_cache(maxsize=1024)
def normalize_equipment(name: str) -> str:
    """Map a free-text equipment name onto the canonical vocabulary.

    Resolution stops at the first hit: alias table or canonical membership,
    then the same lookup with a trailing plural "s" removed, then the most
    similar canonical tag if its bigram similarity is at least 0.7. Anything
    else comes back cleaned but otherwise unchanged, so it later fails the
    availability check instead of being ignored.
    """
    cleaned = _clean(name)

    hit = _lookup(cleaned)
    if hit is not None:
        return hit

    if cleaned.endswith("s") and not cleaned.endswith("ss") and len(cleaned) > 3:
        hit = _lookup(cleaned[:-1])
        if hit is not None:
            return hit

    best_match, best_score = "", 0.0
    for canonical in CANONICAL_EQUIPMENT:
        score = bigram_similarity(cleaned, canonical)
        if score > best_score:
            best_match, best_score = canonical, score

    if best_score >= FUZZY_THRESHOLD:
        return best_match
    return cleaned


def normalize_equipment_list(names: list[str] | None) -> list[str]:
    """Normalize and de-duplicate, keeping first-seen order."""
    return list(dict.fromkeys(normalize_equipment(n) for n in names or [] if n and n.strip()))
