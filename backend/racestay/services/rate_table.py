"""
Static province -> points-per-night table.

Pure lookups, no I/O. The database-backed override in `province_rates`
wins over this table (see services.cost_calculator); this table is the
fallback whenever that lookup has nothing to say.

Rates follow local accommodation prices: big-city and island provinces sit
in the premium tier, most inland provinces in the low tier.
"""

import unicodedata

from racestay.core.config import get_settings

settings = get_settings()

PROVINCE_RATES: dict[str, int] = {
    # premium
    "madrid": 45,
    "barcelona": 45,
    "baleares": 45,
    "gipuzkoa": 42,
    # high
    "bizkaia": 40,
    "malaga": 40,
    "las palmas": 38,
    "santa cruz de tenerife": 38,
    "valencia": 35,
    "sevilla": 35,
    "cantabria": 35,
    "navarra": 35,
    "girona": 35,
    "alicante": 32,
    "cadiz": 32,
    "araba": 32,
    "tarragona": 32,
    # medium
    "asturias": 30,
    "a coruna": 30,
    "pontevedra": 30,
    "zaragoza": 30,
    "granada": 28,
    "la rioja": 28,
    "murcia": 28,
    "castellon": 28,
    "salamanca": 26,
    "valladolid": 26,
    "burgos": 25,
    "leon": 25,
    "huesca": 25,
    "lleida": 25,
    "cordoba": 25,
    "almeria": 25,
    "huelva": 25,
    "segovia": 25,
    "toledo": 24,
    "guadalajara": 22,
    "ourense": 22,
    "lugo": 22,
    # low
    "caceres": 20,
    "badajoz": 20,
    "jaen": 20,
    "ciudad real": 20,
    "albacete": 20,
    "palencia": 20,
    "avila": 20,
    "zamora": 18,
    "soria": 18,
    "teruel": 18,
    "cuenca": 18,
    "ceuta": 30,
    "melilla": 30,
}

# Co-official and historic names that point at the same province
PROVINCE_ALIASES: dict[str, str] = {
    "vizcaya": "bizkaia",
    "biscay": "bizkaia",
    "guipuzcoa": "gipuzkoa",
    "alava": "araba",
    "araba/alava": "araba",
    "illes balears": "baleares",
    "islas baleares": "baleares",
    "balears": "baleares",
    "la coruna": "a coruna",
    "coruna": "a coruna",
    "gerona": "girona",
    "lerida": "lleida",
    "orense": "ourense",
    "castello": "castellon",
    "alacant": "alicante",
    "tenerife": "santa cruz de tenerife",
    "gran canaria": "las palmas",
    "rioja": "la rioja",
    "principado de asturias": "asturias",
    "region de murcia": "murcia",
    "comunidad de madrid": "madrid",
}


def normalize_province(name: str | None) -> str | None:
    """Lower-case, strip accents and collapse whitespace; fold aliases."""
    if not name:
        return None
    decomposed = unicodedata.normalize("NFKD", name)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    key = " ".join(stripped.lower().split())
    if not key:
        return None
    return PROVINCE_ALIASES.get(key, key)


def points_per_night(province: str | None) -> int:
    key = normalize_province(province)
    if key is None:
        return settings.FALLBACK_POINTS_PER_NIGHT
    return PROVINCE_RATES.get(key, settings.FALLBACK_POINTS_PER_NIGHT)


def is_known_province(province: str | None) -> bool:
    return normalize_province(province) in PROVINCE_RATES


def rate_tier(points: int) -> str:
    if points <= 20:
        return "low"
    if points <= 30:
        return "medium"
    if points <= 40:
        return "high"
    return "premium"


def all_rates() -> list[dict]:
    """All provinces with their rate and tier, most expensive first."""
    rows = [
        {"province": province, "points_per_night": points, "tier": rate_tier(points)}
        for province, points in PROVINCE_RATES.items()
    ]
    rows.sort(key=lambda r: (-r["points_per_night"], r["province"]))
    return rows
