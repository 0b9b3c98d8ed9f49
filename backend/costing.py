"""
Costing model for Quote Hub budgets.

A quote's plan is a plain JSON-like tree keyed by phase name:

    phaseData = {
        'Planning': [                       # stages, in column order
            {'id', 'name', 'duration', 'phase',
             'departments': [
                 {'id', 'name', 'output', 'assignedTo', 'assignedName', 'status',
                  'roles': [{'id', 'name', 'weeks', 'allocation', 'hours', 'rate', 'totalDollars'}]}
             ]}
        ],
        ...
    }

Everything here is read-only over that tree. Malformed nodes are skipped,
never raised on.
"""

from decimal import Decimal, ROUND_HALF_UP
import copy
import logging

logger = logging.getLogger(__name__)

HOURS_PER_WEEK = 40
ALLOCATION_STEPS = (10, 20, 40, 60, 80, 100)
MIN_STAGE_DURATION = 1
MAX_STAGE_DURATION = 52
MAX_PLANNING_STAGES = 5

RESOURCING_FEE_RATE = 0.015
RESOURCING_FEE_DEPARTMENTS = ('Creative', 'Design')


class Phase:
    """Phase identity"""
    PLANNING = 'Planning'
    PRODUCTION = 'Production/Execution'
    POST_PRODUCTION = 'Post Production/Wrap'

    ALL = [PLANNING, PRODUCTION, POST_PRODUCTION]


class Department:
    """Department catalog"""
    ACCOUNTS = 'Accounts'
    DESIGN = 'Design'
    CREATIVE = 'Creative'
    CREATOR = 'Creator'
    STUDIO = 'Studio'
    STRATEGY = 'Strategy'
    OMNI_SHOPPER = 'Omni Shopper'
    SOCIAL = 'Social'
    MEDIA = 'Media'
    DIGITAL = 'Digital'

    ALL = [ACCOUNTS, DESIGN, CREATIVE, CREATOR, STUDIO, STRATEGY, OMNI_SHOPPER, SOCIAL, MEDIA, DIGITAL]


class DepartmentStatus:
    UNASSIGNED = 'unassigned'
    ASSIGNED = 'assigned'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'

    ALL = [UNASSIGNED, ASSIGNED, IN_PROGRESS, COMPLETED]


STAGE_OPTIONS = {
    Phase.PLANNING: ['Strategic Check In', 'Strategy Presentation', 'Creative Tissue',
                     'Refined Concepts', 'Final Concepts', 'Custom'],
    Phase.PRODUCTION: ['Pre-Production', 'In Field Execution', 'Custom'],
    Phase.POST_PRODUCTION: ['Post Production', 'Reporting', 'Custom'],
}

# Phase names written by older versions of the app
LEGACY_PHASE_NAMES = {
    'planning': Phase.PLANNING,
    'production': Phase.PRODUCTION,
    'execution': Phase.PRODUCTION,
    'production/execution': Phase.PRODUCTION,
    'production / execution': Phase.PRODUCTION,
    'post production': Phase.POST_PRODUCTION,
    'post-production': Phase.POST_PRODUCTION,
    'postproduction': Phase.POST_PRODUCTION,
    'wrap': Phase.POST_PRODUCTION,
    'post production/wrap': Phase.POST_PRODUCTION,
    'post production / wrap': Phase.POST_PRODUCTION,
}

DEFAULT_PHASE_SETTINGS = {'includeProjectFees': True, 'includeProductionCosts': False}

# Line item groups of a production cost category
PRODUCTION_ITEM_GROUPS = ('standardItems', 'mediaItems', 'fieldStaffItems')


def stage_options(phase):
    """Get the predefined stage names for a phase"""
    return list(STAGE_OPTIONS.get(phase, ['Custom']))


# ---------------------------------------------------------------------------
# Tree access helpers
# ---------------------------------------------------------------------------

def _number(value):
    """Coerce a JSON value to a number, treating junk as 0"""
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0


def iter_stages(phase_data, phase):
    """Yield well-formed stages of a phase"""
    if not isinstance(phase_data, dict):
        return
    stages = phase_data.get(phase)
    if not isinstance(stages, list):
        return
    for stage in stages:
        if isinstance(stage, dict):
            yield stage


def iter_departments(stage):
    departments = stage.get('departments') if isinstance(stage, dict) else None
    if not isinstance(departments, list):
        return
    for department in departments:
        if isinstance(department, dict):
            yield department


def iter_roles(department):
    roles = department.get('roles') if isinstance(department, dict) else None
    if not isinstance(roles, list):
        return
    for role in roles:
        if isinstance(role, dict):
            yield role


def active_phases(project):
    phases = (project or {}).get('phases') or []
    return [phase for phase in phases if isinstance(phase, str)]


def phase_settings(project, phase):
    settings = ((project or {}).get('phaseSettings') or {}).get(phase) or {}
    return {**DEFAULT_PHASE_SETTINGS, **settings}


def phase_is_billable(project, phase):
    """A phase counts toward the grand total only when active and not excluded by its settings"""
    if phase not in active_phases(project):
        return False
    return phase_settings(project, phase).get('includeProjectFees', True) is not False


# ---------------------------------------------------------------------------
# Legacy migration
# ---------------------------------------------------------------------------

def migrate_phase_name(name):
    """Map a legacy phase name to its canonical name; unknown names pass through"""
    if not isinstance(name, str):
        return name
    if name in Phase.ALL:
        return name
    return LEGACY_PHASE_NAMES.get(name.strip().lower(), name)


def migrate_quote(project, phase_data, default_rate_card='Standard', default_currency='CAD'):
    """
    One-time load migration of a stored quote to the current shape.

    Renames legacy phase keys, reconciles the legacy date aliases and fills
    defaults that older records lack.

    Args:
        project: Project record (dict)
        phase_data: Phase -> stages tree

    Returns:
        tuple: (project, phase_data) as new objects
    """
    project = copy.deepcopy(project) if isinstance(project, dict) else {}
    source = phase_data if isinstance(phase_data, dict) else {}

    migrated = {}
    for phase, stages in source.items():
        canonical = migrate_phase_name(phase)
        stages = copy.deepcopy(stages) if isinstance(stages, list) else []
        for stage in stages:
            if isinstance(stage, dict):
                stage['phase'] = canonical
                for department in iter_departments(stage):
                    department.setdefault('status', DepartmentStatus.UNASSIGNED)
                    department.setdefault('output', '')
        if canonical in migrated:
            logger.info(f"Merging legacy phase '{phase}' into '{canonical}'")
            migrated[canonical].extend(stages)
        else:
            migrated[canonical] = stages

    phases = []
    for phase in project.get('phases') or []:
        canonical = migrate_phase_name(phase)
        if canonical not in phases:
            phases.append(canonical)
    project['phases'] = phases

    settings = {}
    for phase, value in (project.get('phaseSettings') or {}).items():
        settings[migrate_phase_name(phase)] = {**DEFAULT_PHASE_SETTINGS, **(value or {})}
    for phase in phases:
        settings.setdefault(phase, dict(DEFAULT_PHASE_SETTINGS))
    project['phaseSettings'] = settings

    if not project.get('startDate') and project.get('inMarketDate'):
        project['startDate'] = project['inMarketDate']
    if not project.get('endDate') and project.get('projectCompletionDate'):
        project['endDate'] = project['projectCompletionDate']
    if not project.get('inMarketDate') and project.get('startDate'):
        project['inMarketDate'] = project['startDate']
    if not project.get('projectCompletionDate') and project.get('endDate'):
        project['projectCompletionDate'] = project['endDate']

    project['rateCard'] = project.get('rateCard') or default_rate_card
    project['currency'] = project.get('currency') or default_currency

    return project, migrated


def migrate_production_costs(production_cost_data):
    """Rename legacy phase keys of the production cost tree"""
    migrated = {}
    if not isinstance(production_cost_data, dict):
        return migrated
    for phase, categories in production_cost_data.items():
        if not isinstance(categories, dict):
            continue
        migrated.setdefault(migrate_phase_name(phase), {}).update(copy.deepcopy(categories))
    return migrated


# ---------------------------------------------------------------------------
# Role math
# ---------------------------------------------------------------------------

def calculate_hours(weeks, allocation):
    """Hours for a role: weeks * 40 * allocation / 100"""
    return _number(weeks) * HOURS_PER_WEEK * _number(allocation) / 100


def round_dollars(amount):
    """Round to whole dollars, halves away from zero"""
    return int(Decimal(str(amount)).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def calculate_total_dollars(hours, rate):
    return round_dollars(_number(hours) * _number(rate))


def price_role(role, rate=None):
    """
    Return a copy of a role with hours and totalDollars recomputed.

    Args:
        role: Role dict
        rate: New hourly rate; keeps the role's current rate when None

    Returns:
        dict: Updated role
    """
    priced = dict(role)
    if rate is not None:
        priced['rate'] = rate
    priced['hours'] = calculate_hours(priced.get('weeks'), priced.get('allocation'))
    priced['totalDollars'] = calculate_total_dollars(priced['hours'], priced.get('rate'))
    return priced


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def _empty_total():
    return {'hours': 0, 'dollars': 0}


def department_total(department):
    """Sum hours and dollars over a department's roles"""
    total = _empty_total()
    for role in iter_roles(department):
        total['hours'] += _number(role.get('hours'))
        total['dollars'] += _number(role.get('totalDollars'))
    return total


def stage_total(stage):
    total = _empty_total()
    for department in iter_departments(stage):
        dept_total = department_total(department)
        total['hours'] += dept_total['hours']
        total['dollars'] += dept_total['dollars']
    return total


def phase_total(project, phase_data, phase):
    """
    Sum a phase's stages. Phases that are not active (or whose project fees are
    switched off) contribute nothing, even when they still hold data.
    """
    total = _empty_total()
    if not phase_is_billable(project, phase):
        return total
    for stage in iter_stages(phase_data, phase):
        s_total = stage_total(stage)
        total['hours'] += s_total['hours']
        total['dollars'] += s_total['dollars']
    return total


def department_totals_across_project(phase_data, department_name):
    """Total one department across every phase and stage of the plan"""
    total = _empty_total()
    if not isinstance(phase_data, dict):
        return total
    for phase in phase_data:
        for stage in iter_stages(phase_data, phase):
            for department in iter_departments(stage):
                if department.get('name') == department_name:
                    dept_total = department_total(department)
                    total['hours'] += dept_total['hours']
                    total['dollars'] += dept_total['dollars']
    return total


def department_breakdown(phase_data):
    """Dollars per department across the whole plan"""
    breakdown = {}
    if not isinstance(phase_data, dict):
        return breakdown
    for phase in phase_data:
        for stage in iter_stages(phase_data, phase):
            for department in iter_departments(stage):
                name = department.get('name')
                if not name:
                    continue
                breakdown[name] = breakdown.get(name, 0) + department_total(department)['dollars']
    return breakdown


# ---------------------------------------------------------------------------
# Resourcing fee (surcharge)
# ---------------------------------------------------------------------------

def resourcing_fee(creative_total, design_total):
    """
    Fixed 1.5% project management & resourcing fee on the Creative and Design
    department totals.

    Args:
        creative_total: Creative department dollars across the plan
        design_total: Design department dollars across the plan

    Returns:
        dict: {'creativeFee', 'designFee'}; a zero department total yields a zero fee
    """
    creative_fee = creative_total * RESOURCING_FEE_RATE if creative_total else 0
    design_fee = design_total * RESOURCING_FEE_RATE if design_total else 0
    return {'creativeFee': creative_fee, 'designFee': design_fee}


def calculate_resourcing_fees(phase_data):
    creative = department_totals_across_project(phase_data, Department.CREATIVE)['dollars']
    design = department_totals_across_project(phase_data, Department.DESIGN)['dollars']
    fees = resourcing_fee(creative, design)
    return {
        'creativeTotal': creative,
        'designTotal': design,
        **fees,
        'totalFee': fees['creativeFee'] + fees['designFee'],
    }


# ---------------------------------------------------------------------------
# Production costs
# ---------------------------------------------------------------------------

def production_category_total(category_data):
    """Sum of totalCost over the standard, media and field staff items of one category"""
    total = 0
    if not isinstance(category_data, dict):
        return total
    for group in PRODUCTION_ITEM_GROUPS:
        items = category_data.get(group)
        if not isinstance(items, list):
            continue
        for item in items:
            if isinstance(item, dict):
                total += _number(item.get('totalCost'))
    return total


def production_costs_by_phase(production_cost_data, project=None):
    """
    Production cost dollars per phase.

    With a project, only its active phases whose includeProductionCosts
    setting is on are counted; without one every phase in the tree is.

    Args:
        production_cost_data: Phase -> category -> item groups tree
        project: Project record, or None

    Returns:
        dict: Phase -> dollars
    """
    totals = {}
    if not isinstance(production_cost_data, dict):
        return totals
    for phase, categories in production_cost_data.items():
        if project is not None:
            if phase not in active_phases(project):
                continue
            if not phase_settings(project, phase).get('includeProductionCosts'):
                continue
        if not isinstance(categories, dict):
            continue
        totals[phase] = sum(production_category_total(data) for data in categories.values())
    return totals


def production_costs_total(production_cost_data, project=None):
    return sum(production_costs_by_phase(production_cost_data, project).values())


def calculate_project_totals(project, phase_data, production_cost_data=None):
    """
    Roll the plan up into phase, department and grand totals.

    The resourcing fee is billed once and shown on the Planning phase,
    independent of where the Creative and Design hours were booked.
    Production costs are reported beside the project fees and only enter
    quote_total.

    Args:
        project: Project record
        phase_data: Phase -> stages tree
        production_cost_data: Phase -> category -> item groups tree (optional)

    Returns:
        dict: Phase totals (raw and displayed), department totals, fees,
            production costs and grand totals
    """
    phases = active_phases(project)
    phase_totals = {phase: phase_total(project, phase_data, phase) for phase in phases}

    department_totals = {}
    for phase in phases:
        if not phase_is_billable(project, phase):
            continue
        for stage in iter_stages(phase_data, phase):
            for department in iter_departments(stage):
                name = department.get('name')
                if not name:
                    continue
                entry = department_totals.setdefault(name, _empty_total())
                dept_total = department_total(department)
                entry['hours'] += dept_total['hours']
                entry['dollars'] += dept_total['dollars']

    fees = calculate_resourcing_fees(phase_data)

    displayed = {}
    for phase, total in phase_totals.items():
        dollars = total['dollars']
        if phase == Phase.PLANNING and total['hours'] > 0:
            dollars += fees['totalFee']
        displayed[phase] = {'hours': total['hours'], 'dollars': dollars}

    grand_hours = sum(total['hours'] for total in phase_totals.values())
    grand_dollars = sum(total['dollars'] for total in phase_totals.values())
    production = production_costs_by_phase(production_cost_data, project or {})
    production_total = sum(production.values())

    return {
        'currency': (project or {}).get('currency'),
        'phase_totals': phase_totals,
        'displayed_phase_totals': displayed,
        'department_totals': department_totals,
        'resourcing_fees': fees,
        'production_costs': production,
        'production_costs_total': production_total,
        'grand_total_hours': grand_hours,
        'grand_total_dollars': grand_dollars,
        'grand_total_with_fees': grand_dollars + fees['totalFee'],
        'quote_total': grand_dollars + fees['totalFee'] + production_total,
    }


def calculate_quote_revenue(phase_data, production_cost_data=None, project=None):
    """
    Revenue stored on a quote record: every role, the resourcing fee and the
    production costs. The project, when given, gates production costs by phase.
    """
    total = sum(department_breakdown(phase_data).values())
    total += calculate_resourcing_fees(phase_data)['totalFee']
    return total + production_costs_total(production_cost_data, project)


# ---------------------------------------------------------------------------
# Warnings and department status
# ---------------------------------------------------------------------------

def find_duration_warnings(phase_data):
    """
    List roles booked for more weeks than their stage lasts.

    Returns:
        list: Warning dicts; the values themselves are left untouched
    """
    warnings = []
    if not isinstance(phase_data, dict):
        return warnings
    for phase in phase_data:
        for stage in iter_stages(phase_data, phase):
            duration = _number(stage.get('duration'))
            for department in iter_departments(stage):
                for role in iter_roles(department):
                    weeks = _number(role.get('weeks'))
                    if duration and weeks > duration:
                        warnings.append({
                            'phase': phase,
                            'stage_id': stage.get('id'),
                            'stage_name': stage.get('name'),
                            'department': department.get('name'),
                            'role_id': role.get('id'),
                            'role_name': role.get('name'),
                            'weeks': weeks,
                            'duration': duration,
                            'message': f"{role.get('name') or 'Unnamed role'} is booked for {weeks} weeks "
                                       f"but {stage.get('name') or 'the stage'} lasts {duration}"
                        })
    return warnings


def is_department_complete(phase_data, phase, department_name):
    """A department is complete once any stage copy has a named, priced role"""
    for stage in iter_stages(phase_data, phase):
        for department in iter_departments(stage):
            if department.get('name') != department_name:
                continue
            for role in iter_roles(department):
                name = role.get('name') or ''
                if _number(role.get('hours')) > 0 and _number(role.get('totalDollars')) > 0 and name.strip():
                    return True
    return False


def department_assignment_status(phase_data, phase, department_name):
    """Return 'completed', 'assigned' or None for a department across a phase"""
    assigned = any(
        department.get('assignedTo')
        for stage in iter_stages(phase_data, phase)
        for department in iter_departments(stage)
        if department.get('name') == department_name
    )
    if not assigned:
        return None
    if is_department_complete(phase_data, phase, department_name):
        return DepartmentStatus.COMPLETED
    return DepartmentStatus.ASSIGNED
