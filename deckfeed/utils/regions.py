"""
Region strings: canonical "City, Admin, Country" form and store alias variants.

Canonicalization maps what users and geocoders type ("nyc, ny, usa") to the
one shape records are matched on ("Nyc, New York, United States"). Alias
expansion goes the other way, producing the differently-formatted spellings
that older stored records may carry.
"""

import re
import unicodedata
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

_COUNTRY_CANONICAL = {
    'us': 'United States',
    'usa': 'United States',
    'u.s.': 'United States',
    'u.s.a.': 'United States',
    'united states of america': 'United States',
    'united states': 'United States',
    'ca': 'Canada',
    'can': 'Canada',
    'canada': 'Canada',
}

_US_STATE_PAIRS = [
    ('Alabama', 'AL'), ('Alaska', 'AK'), ('Arizona', 'AZ'), ('Arkansas', 'AR'),
    ('California', 'CA'), ('Colorado', 'CO'), ('Connecticut', 'CT'), ('Delaware', 'DE'),
    ('Florida', 'FL'), ('Georgia', 'GA'), ('Hawaii', 'HI'), ('Idaho', 'ID'),
    ('Illinois', 'IL'), ('Indiana', 'IN'), ('Iowa', 'IA'), ('Kansas', 'KS'),
    ('Kentucky', 'KY'), ('Louisiana', 'LA'), ('Maine', 'ME'), ('Maryland', 'MD'),
    ('Massachusetts', 'MA'), ('Michigan', 'MI'), ('Minnesota', 'MN'), ('Mississippi', 'MS'),
    ('Missouri', 'MO'), ('Montana', 'MT'), ('Nebraska', 'NE'), ('Nevada', 'NV'),
    ('New Hampshire', 'NH'), ('New Jersey', 'NJ'), ('New Mexico', 'NM'), ('New York', 'NY'),
    ('North Carolina', 'NC'), ('North Dakota', 'ND'), ('Ohio', 'OH'), ('Oklahoma', 'OK'),
    ('Oregon', 'OR'), ('Pennsylvania', 'PA'), ('Rhode Island', 'RI'), ('South Carolina', 'SC'),
    ('South Dakota', 'SD'), ('Tennessee', 'TN'), ('Texas', 'TX'), ('Utah', 'UT'),
    ('Vermont', 'VT'), ('Virginia', 'VA'), ('Washington', 'WA'), ('West Virginia', 'WV'),
    ('Wisconsin', 'WI'), ('Wyoming', 'WY'),
]

_CA_PROVINCE_PAIRS = [
    ('Alberta', 'AB'), ('British Columbia', 'BC'), ('Manitoba', 'MB'),
    ('New Brunswick', 'NB'), ('Newfoundland and Labrador', 'NL'), ('Nova Scotia', 'NS'),
    ('Ontario', 'ON'), ('Prince Edward Island', 'PE'), ('Quebec', 'QC'),
    ('Saskatchewan', 'SK'), ('Northwest Territories', 'NT'), ('Nunavut', 'NU'),
    ('Yukon', 'YT'),
]

# Canonicalization lookups (lowercase abbreviation -> full name)
_ADMIN_US: Dict[str, str] = {abbr.lower(): name for name, abbr in _US_STATE_PAIRS}
_ADMIN_US['dc'] = 'District of Columbia'
_ADMIN_CA: Dict[str, str] = {abbr.lower(): name for name, abbr in _CA_PROVINCE_PAIRS}

# Alias-expansion lookups (exact spelling, both directions)
_US_STATE_ABBR = dict(_US_STATE_PAIRS)
_US_ABBR_STATE = {abbr: name for name, abbr in _US_STATE_PAIRS}
_CA_PROV_ABBR = dict(_CA_PROVINCE_PAIRS)
_CA_ABBR_PROV = {abbr: name for name, abbr in _CA_PROVINCE_PAIRS}

# No alias for Canada: "CA" would collide with California
_STORE_COUNTRY_ALIASES = {
    'United States': ['USA', 'US', 'United States of America'],
    'USA': ['United States', 'US', 'United States of America'],
    'US': ['USA', 'United States', 'United States of America'],
    'United Kingdom': ['UK', 'Great Britain', 'GB'],
    'UK': ['United Kingdom', 'Great Britain', 'GB'],
    'UAE': ['United Arab Emirates'],
    'United Arab Emirates': ['UAE'],
}

_US_NAMES = {'USA', 'US', 'UNITED STATES', 'UNITED STATES OF AMERICA'}

_WORD_START = re.compile(r"(^|[ \-/])([a-z])")
_AFTER_APOSTROPHE = re.compile(r"([A-Za-z])'([a-z])")


@dataclass(frozen=True)
class RegionParts:
    city: str
    admin: str
    country: str

    @property
    def string(self) -> str:
        return ', '.join(p for p in (self.city, self.admin, self.country) if p)


def _clean(value: Optional[str]) -> str:
    text = str(value or '').replace('\u200b', '')
    return re.sub(r'\s+', ' ', text).strip()


def _lc(value: Optional[str]) -> str:
    return _clean(value).lower()


def title_case_geo(value: str) -> str:
    """Title-case across spaces, hyphens and slashes; O'neill -> O'Neill."""
    text = _clean(value).lower()
    text = _WORD_START.sub(lambda m: m.group(1) + m.group(2).upper(), text)
    return _AFTER_APOSTROPHE.sub(lambda m: f"{m.group(1)}'{m.group(2).upper()}", text)


def canonical_country(raw: Optional[str]) -> str:
    key = _lc(raw)
    if not key:
        return ''
    return _COUNTRY_CANONICAL.get(key) or _COUNTRY_CANONICAL.get(key.replace('.', '')) or title_case_geo(raw)


def canonical_admin(raw: Optional[str], country_full: str) -> str:
    key = _lc(raw)
    if not key:
        return ''
    table = None
    if country_full == 'United States':
        table = _ADMIN_US
    elif country_full == 'Canada':
        table = _ADMIN_CA
    if table:
        full = table.get(key) or table.get(key.replace('.', ''))
        if not full:
            full = next((name for name in table.values() if name.lower() == key), None)
        if full:
            return full
    return title_case_geo(raw)


def parse_region(value: Optional[str]) -> RegionParts:
    parts = [_clean(p) for p in _clean(value).split(',')]
    if len(parts) == 1:
        return RegionParts(parts[0], '', '')
    if len(parts) == 2:
        return RegionParts(parts[0], parts[1], '')
    country = parts[-1]
    city = parts[0]
    admin = _clean(', '.join(parts[1:-1]))
    return RegionParts(city, admin, country)


def normalize_region(value: Optional[str]) -> RegionParts:
    parts = parse_region(value)
    country = canonical_country(parts.country)
    admin = canonical_admin(parts.admin, country)
    city = title_case_geo(parts.city)
    return RegionParts(city, admin, country)


def canonical_region(value: Optional[str]) -> str:
    """Canonical "City, Admin, Country" string ('' for blank input)."""
    return normalize_region(value).string


def norm_key(value: Optional[str]) -> str:
    """Lowercase compare key for a region string."""
    parts = normalize_region(value)
    return '|'.join([_lc(parts.city), _lc(parts.admin), _lc(parts.country)])


def uniq_strings(values: Iterable[Optional[str]], case_insensitive: bool = True) -> List[str]:
    """Trimmed, non-empty strings in first-seen order."""
    seen = set()
    out = []
    for value in values:
        text = str(value or '').strip()
        if not text:
            continue
        key = text.lower() if case_insensitive else text
        if key in seen:
            continue
        seen.add(key)
        out.append(text)
    return out


def _strip_accents(value: str) -> str:
    decomposed = unicodedata.normalize('NFD', value)
    return ''.join(ch for ch in decomposed if not unicodedata.combining(ch))


def _country_variants(region: str) -> List[str]:
    parts = [p.strip() for p in region.split(',')]
    if len(parts) < 2:
        return [region]
    aliases = _STORE_COUNTRY_ALIASES.get(parts[-1])
    if not aliases:
        return [region]
    head = ', '.join(parts[:-1])
    return [region] + [f"{head}, {alt}" for alt in aliases]


def _admin_variants(regions: List[str]) -> List[str]:
    out = list(regions)
    for region in regions:
        parts = [p.strip() for p in region.split(',')]
        if len(parts) != 3:
            continue
        city, admin, country = parts
        if country.upper() in _US_NAMES:
            if admin in _US_STATE_ABBR:
                out.append(f"{city}, {_US_STATE_ABBR[admin]}, {country}")
            if admin in _US_ABBR_STATE:
                out.append(f"{city}, {_US_ABBR_STATE[admin]}, {country}")
        elif country.lower() == 'canada':
            abbr = _CA_PROV_ABBR.get(admin) or _CA_PROV_ABBR.get(_strip_accents(admin))
            if abbr:
                out.append(f"{city}, {abbr}, {country}")
            if admin in _CA_ABBR_PROV:
                out.append(f"{city}, {_CA_ABBR_PROV[admin]}, {country}")
    return out


def expand_location_aliases(regions: Iterable[str]) -> List[str]:
    """
    Every spelling a stored record for these regions might use.

    The inputs come first, followed by country-name variants and then
    state/province full-name and abbreviation variants.
    """
    base = uniq_strings(regions, case_insensitive=False)
    expanded: List[str] = []
    for region in base:
        expanded.extend(_country_variants(region))
    expanded = _admin_variants(uniq_strings(expanded, case_insensitive=False))
    return uniq_strings(base + expanded, case_insensitive=False)
