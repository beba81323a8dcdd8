"""
Place category taxonomy: inference from provider categories and names,
and per-category silence thresholds used by auto-deactivation.
"""

import re
from typing import Optional

PLAY = "놀이"
PARK = "공원/놀이터"
EXHIBIT = "전시/체험"
PERFORMANCE = "공연"
NATURE = "동물/자연"
FOOD = "식당/카페"
LIBRARY = "도서관"
SWIM = "수영/물놀이"
CULTURE_EVENT = "문화행사"
FACILITY = "편의시설"

CATEGORIES = (
    PLAY, PARK, EXHIBIT, PERFORMANCE, NATURE,
    FOOD, LIBRARY, SWIM, CULTURE_EVENT, FACILITY,
)

# Days without a mention before a place becomes a revalidation target
CATEGORY_SILENCE_DAYS = {
    PLAY: 90,
    PARK: 180,
    EXHIBIT: 180,
    PERFORMANCE: 90,     # seasonal
    NATURE: 180,
    FOOD: 120,
    LIBRARY: 365,        # stable
    SWIM: 180,
    CULTURE_EVENT: 90,   # seasonal
    FACILITY: 365,       # reference data
}
DEFAULT_SILENCE_DAYS = 180

# Substrings of the provider taxonomy string, checked in order
_PROVIDER_CATEGORY_RULES = (
    (("키즈카페", "실내놀이"), PLAY),
    (("카페", "음식점"), FOOD),
    (("문화시설", "박물관", "미술관"), EXHIBIT),
    (("관광", "동물", "아쿠아"), NATURE),
    (("도서관",), LIBRARY),
)

# Name patterns, checked in order
_NAME_RULES = (
    (re.compile(r"키즈카페|볼풀|실내놀이"), PLAY),
    (re.compile(r"공원|놀이터"), PARK),
    (re.compile(r"박물관|과학관|미술관|체험"), EXHIBIT),
    (re.compile(r"동물원|아쿠아|농장"), NATURE),
    (re.compile(r"도서관"), LIBRARY),
    (re.compile(r"수영|물놀이|키즈풀"), SWIM),
    (re.compile(r"식당|카페|맛집|이유식"), FOOD),
)


def silence_days_for(category: Optional[str]) -> int:
    return CATEGORY_SILENCE_DAYS.get(category or "", DEFAULT_SILENCE_DAYS)


def guess_category_from_name(name: str) -> str:
    for pattern, category in _NAME_RULES:
        if pattern.search(name or ""):
            return category
    return PLAY


def infer_category(provider_category: Optional[str], name: str) -> str:
    """Provider taxonomy first, then the place name, then PLAY."""
    if provider_category:
        lowered = provider_category.lower()
        for needles, category in _PROVIDER_CATEGORY_RULES:
            if any(n in lowered for n in needles):
                return category
    return guess_category_from_name(name)


def sub_category_from(provider_category: Optional[str]) -> Optional[str]:
    """Last segment of "가정,생활 > 어린이시설 > 키즈카페" -> "키즈카페"."""
    if not provider_category:
        return None
    last = provider_category.split(">")[-1].strip()
    return last or None
