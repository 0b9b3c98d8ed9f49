"""
Hourly rate tables and rate resolution for Quote Hub budgets.

Rates are looked up by (rate card, role display name). Some display names are
priced under a different name (see ROLE_RATE_ALIASES). Lookups walk a fallback
chain: the current 2025 rate cards first, then the legacy CSV-derived cards.
A rate that cannot be found anywhere resolves to 0, which callers surface as a
visibly wrong total rather than an error.
"""

import logging

logger = logging.getLogger(__name__)

DEFAULT_RATE_CARD = 'Standard'

RATE_SOURCE_CURRENT = 'current'
RATE_SOURCE_LEGACY = 'legacy'
RATE_SOURCE_UNRESOLVED = 'unresolved'

# Display name -> name the role is priced under
ROLE_RATE_ALIASES = {
    'Creative': 'Conceptor',
}

# Role catalog by department, in display order
ROLES_BY_DEPARTMENT = {
    'Accounts': [
        'Managing Director',
        'Vice President',
        'Senior Account Director',
        'Account Director',
        'Account Supervisor',
        'Account Manager',
        'Account Executive',
        'Account Coordinator',
    ],
    'Creative': [
        'Executive Creative Director',
        'Group Creative Director',
        'Creative Director',
        'Associate Creative Director',
        'Creative',
        'Copywriter',
    ],
    'Design': [
        'Designer',
        '3D Designer',
        'Design Director',
        '3D Design Director',
        'VP, Design',
        'Sr Designer',
        'Sr 3D Designer',
        'Asc Design Director',
        'Asc 3D Design Director',
    ],
    'Creator': [
        'Director, Creator Marketing',
        'Supervisor, Creator Marketing',
        'Creator Marketing Manager',
    ],
    'Studio': [
        'Executive Producer',
        'Production Director',
        'Senior Producer',
        'Producer',
        'Production Manager',
        'Production Coordinator',
    ],
    'Strategy': [
        'VP, Strategy',
        'Sr Director, Strategy / Planning',
        'Director, Strategy / Planning',
        'Strategist',
    ],
    'Omni Shopper': [
        'Director, Omni Shopper',
        'Omni Shopper Manager',
    ],
    'Social': [
        'Director, Social',
        'Social Manager',
        'Community Manager',
    ],
    'Media': [
        'Vice President, Media',
        'Media Director',
        'Media Planner',
    ],
    'Digital': [
        'Director, Digital',
        'Digital Producer',
        'Developer',
    ],
}

# Departments whose dropdown follows a fixed seniority order
DEPARTMENT_ROLE_ORDER = {
    'Design': [
        'VP, Design',
        'Design Director',
        '3D Design Director',
        'Sr Designer',
        'Sr 3D Designer',
        'Asc Design Director',
        'Asc 3D Design Director',
        'Designer',
        '3D Designer',
    ],
}

# Standard card, 2025
_STANDARD_RATES = {
    'Managing Director': 295,
    'Vice President': 265,
    'Senior Account Director': 235,
    'Account Director': 210,
    'Account Supervisor': 185,
    'Account Manager': 165,
    'Account Executive': 140,
    'Account Coordinator': 115,
    'Executive Creative Director': 295,
    'Group Creative Director': 260,
    'Creative Director': 235,
    'Associate Creative Director': 205,
    'Conceptor': 170,
    'Copywriter': 160,
    'VP, Design': 260,
    'Design Director': 220,
    '3D Design Director': 225,
    'Sr Designer': 185,
    'Sr 3D Designer': 190,
    'Asc Design Director': 200,
    'Asc 3D Design Director': 205,
    'Designer': 150,
    '3D Designer': 160,
    'Director, Creator Marketing': 215,
    'Supervisor, Creator Marketing': 180,
    'Creator Marketing Manager': 160,
    'Executive Producer': 240,
    'Production Director': 215,
    'Senior Producer': 185,
    'Producer': 165,
    'Production Manager': 150,
    'Production Coordinator': 120,
    'VP, Strategy': 275,
    'Sr Director, Strategy / Planning': 245,
    'Director, Strategy / Planning': 220,
    'Strategist': 175,
    'Director, Omni Shopper': 215,
    'Omni Shopper Manager': 165,
    'Director, Social': 210,
    'Social Manager': 160,
    'Community Manager': 125,
    'Vice President, Media': 260,
    'Media Director': 215,
    'Media Planner': 145,
    'Director, Digital': 220,
    'Digital Producer': 165,
    'Developer': 175,
}

# Card multipliers against the Standard card
_RATE_CARD_FACTORS = {
    'Labatt': 0.88,
    'RBC': 0.5,
    'Toyota Retainer': 0.94,
    'Hershey Retainer': 0.82,
    'ABI': 1.09,
    'Rogers': 1.18,
    'Standard': 1.0,
}

# Blended card prices every role it carries at one rate
_BLENDED_RATE = 165
_BLENDED_EXCLUDED = {'Conceptor', '3D Design Director', 'Sr 3D Designer', 'Asc 3D Design Director'}

# Roles priced in the previous CSV export but renamed or dropped in 2025
_LEGACY_STANDARD_RATES = {
    'Conceptor': 170,
    'Sr. Design Director': 185,
    'Associate 3d Design Director': 205,
    'Senior Designer': 185,
    'Associate Design Director': 200,
    'Senior Producer': 185,
    'Strategy Director': 220,
}

_LEGACY_BLENDED_RATE = 165


def _scale(rates, factor):
    """Scale a rate table, rounding each rate to the nearest 5"""
    return {name: int(5 * round(rate * factor / 5)) for name, rate in rates.items()}


def _build_current_cards():
    cards = {card: _scale(_STANDARD_RATES, factor) for card, factor in _RATE_CARD_FACTORS.items()}
    cards['Blended'] = {
        name: _BLENDED_RATE for name in _STANDARD_RATES if name not in _BLENDED_EXCLUDED
    }
    return cards


def _build_legacy_cards():
    cards = {card: _scale(_LEGACY_STANDARD_RATES, factor) for card, factor in _RATE_CARD_FACTORS.items()}
    cards['Blended'] = {name: _LEGACY_BLENDED_RATE for name in _LEGACY_STANDARD_RATES}
    return cards


# Loaded once; treat as read-only
RATE_CARDS = _build_current_cards()
LEGACY_RATE_CARDS = _build_legacy_cards()

RATE_SOURCES = (
    (RATE_SOURCE_CURRENT, RATE_CARDS),
    (RATE_SOURCE_LEGACY, LEGACY_RATE_CARDS),
)


def list_rate_cards():
    """Return the names of all selectable rate cards"""
    return list(RATE_CARDS.keys())


def rate_lookup_name(role_name):
    """Return the name a role display name is priced under"""
    return ROLE_RATE_ALIASES.get(role_name, role_name)


def resolve_rate_info(rate_card, role_name):
    """
    Resolve an hourly rate and report where it came from.

    Args:
        rate_card: Rate card name (falls back to Standard when empty)
        role_name: Role display name

    Returns:
        dict: {'rate', 'source', 'lookup_name'}; source is 'unresolved' when
        no table carries a non-zero rate
    """
    if not role_name or not str(role_name).strip():
        return {'rate': 0, 'source': RATE_SOURCE_UNRESOLVED, 'lookup_name': ''}

    card = rate_card or DEFAULT_RATE_CARD
    lookup_name = rate_lookup_name(role_name)

    for source, cards in RATE_SOURCES:
        rate = cards.get(card, {}).get(lookup_name) or 0
        if rate:
            return {'rate': rate, 'source': source, 'lookup_name': lookup_name}

    logger.warning(f"No rate for role '{role_name}' (looked up as '{lookup_name}') on rate card '{card}'")
    return {'rate': 0, 'source': RATE_SOURCE_UNRESOLVED, 'lookup_name': lookup_name}


def resolve_rate(rate_card, role_name):
    """Resolve the hourly rate for a role on a rate card; 0 means unknown"""
    return resolve_rate_info(rate_card, role_name)['rate']


def roles_for_department(department, rate_card=None):
    """
    Get the ordered role catalog for a department.

    Args:
        department: Department name
        rate_card: When given, only roles with a non-zero rate on that card are returned

    Returns:
        list: Role display names
    """
    available = ROLES_BY_DEPARTMENT.get(department, [])

    custom_order = DEPARTMENT_ROLE_ORDER.get(department)
    if custom_order:
        ordered = [role for role in custom_order if role in available]
        ordered += [role for role in available if role not in custom_order]
        available = ordered

    if rate_card:
        available = [role for role in available if resolve_rate(rate_card, role) > 0]

    return list(available)
