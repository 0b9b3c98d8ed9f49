"""
Resource derivation for the project-management view of a quote.

The costing tree is consolidated per phase into one resource assignment for
each (department, role name) pair, with scheduling dates computed from the
project window. Derivation is one-way: nothing here writes back into the
costing tree.
"""

from collections import defaultdict
from datetime import date, datetime, timedelta
import copy
import logging
import math
import uuid

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta

from costing import HOURS_PER_WEEK, _number, active_phases, iter_stages, iter_departments, iter_roles
from engine import department_assignee
from errors import NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_RESOURCE_ALLOCATION = 25
DEFAULT_RESOURCE_DAYS = 30
UNASSIGNED_LABEL = 'Unassigned'

RESOURCE_EDITABLE_FIELDS = ('role', 'assignee', 'assigneeEmail', 'startDate', 'endDate', 'totalWeeks', 'allocation')


def parse_date(value):
    """Parse an ISO date or timestamp string into a date; None when missing or unparseable"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        return isoparse(value).date()
    except (ValueError, OverflowError):
        logger.warning(f"Ignoring unparseable date '{value}'")
        return None


def weeks_between(start, end):
    """Whole weeks spanned by a date range, rounded up"""
    return math.ceil((end - start).days / 7)


def project_window(project):
    """
    Resolve the project's scheduling window.

    Returns:
        tuple: (start, end) dates; end is None when the project has no end date
    """
    project = project or {}
    start = parse_date(project.get('startDate') or project.get('inMarketDate'))
    end = parse_date(project.get('endDate') or project.get('projectCompletionDate'))
    return start, end


def has_resource_assignments(pm_data):
    """True when the PM data already holds at least one resource assignment"""
    if not isinstance(pm_data, dict):
        return False
    assignments = pm_data.get('resourceAssignments')
    if not isinstance(assignments, dict):
        return False
    for departments in assignments.values():
        if not isinstance(departments, dict):
            continue
        for resources in departments.values():
            if isinstance(resources, list) and resources:
                return True
    return False


def consolidate_phase(stages):
    """
    Group the roles of a phase's stages by (department, role name).

    Args:
        stages: List of stage dicts for one phase

    Returns:
        dict: department -> role name -> {'weeks', 'hours', 'dollars', 'allocation'},
        in first-seen order
    """
    consolidated = {}
    for stage in iter_stages({'stages': stages}, 'stages'):
        for department in iter_departments(stage):
            dept_name = department.get('name')
            if not dept_name:
                continue
            roles = consolidated.setdefault(dept_name, {})
            for role in iter_roles(department):
                name = (role.get('name') or '').strip()
                if not name:
                    continue
                entry = roles.get(name)
                if entry is None:
                    entry = roles[name] = {
                        'weeks': 0,
                        'hours': 0,
                        'dollars': 0,
                        'allocation': role.get('allocation') or 100,
                    }
                entry['weeks'] += _number(role.get('weeks'))
                entry['hours'] += _number(role.get('hours'))
                entry['dollars'] += _number(role.get('totalDollars'))
    return consolidated


def derive_resource_assignments(project, phase_data, existing_pm_data=None, today=None):
    """
    Build resource assignments from the costing tree.

    When the existing PM data already holds resource assignments they are
    returned untouched, so manual edits survive reloads.

    Args:
        project: Project record (phases and date bounds are read)
        phase_data: Phase -> stages tree
        existing_pm_data: Stored PM data for the quote, if any
        today: Start date used when the project has none (defaults to today)

    Returns:
        dict: phase -> department -> list of resource assignment dicts
    """
    if has_resource_assignments(existing_pm_data):
        logger.info("Resource assignments already exist - keeping the stored schedule")
        return copy.deepcopy(existing_pm_data['resourceAssignments'])

    start, end = project_window(project)
    if start is None:
        start = today or date.today()

    derived = {}
    for phase in active_phases(project):
        derived[phase] = {}
        stages = phase_data.get(phase) if isinstance(phase_data, dict) else None
        if not isinstance(stages, list):
            continue

        for dept_name, roles in consolidate_phase(stages).items():
            assignee = department_assignee(phase_data, phase, dept_name)
            resources = []
            for role_name, totals in roles.items():
                total_weeks = totals['weeks'] or math.ceil(totals['hours'] / HOURS_PER_WEEK)
                if total_weeks <= 0:
                    continue

                role_end = start + timedelta(days=total_weeks * 7)
                final_end = min(role_end, end) if end else role_end

                resources.append({
                    'id': uuid.uuid4().hex,
                    'department': dept_name,
                    'role': role_name,
                    'assignee': assignee['assignedName'] or assignee['assignedTo'] or '',
                    'assigneeEmail': assignee['assignedTo'] or '',
                    'startDate': start.isoformat(),
                    'endDate': final_end.isoformat(),
                    'totalWeeks': total_weeks,
                    'totalHours': totals['hours'],
                    'totalDollars': totals['dollars'],
                    'allocation': totals['allocation'],
                })

            if resources:
                derived[phase][dept_name] = resources

    count = sum(len(resources) for departments in derived.values() for resources in departments.values())
    logger.info(f"Derived {count} resource assignment(s) across {len(derived)} phase(s)")
    return derived


# ---------------------------------------------------------------------------
# Manual edits on the PM schedule
# ---------------------------------------------------------------------------

def _pm_copy(pm_data):
    updated = copy.deepcopy(pm_data) if isinstance(pm_data, dict) else {}
    if not isinstance(updated.get('resourceAssignments'), dict):
        updated['resourceAssignments'] = {}
    return updated


def add_resource(pm_data, phase, department, project, today=None):
    """
    Add a blank resource row to a department.

    The row spans the project window (30 days from today when the project has
    no dates) at 25% allocation.

    Returns:
        tuple: (new PM data, new resource)
    """
    today = today or date.today()
    start, end = project_window(project)
    start = start or today
    end = end or today + timedelta(days=DEFAULT_RESOURCE_DAYS)

    resource = {
        'id': uuid.uuid4().hex,
        'department': department,
        'role': '',
        'assignee': '',
        'assigneeEmail': '',
        'startDate': start.isoformat(),
        'endDate': end.isoformat(),
        'totalWeeks': weeks_between(start, end),
        'allocation': DEFAULT_RESOURCE_ALLOCATION,
    }

    updated = _pm_copy(pm_data)
    departments = updated['resourceAssignments'].setdefault(phase, {})
    departments[department] = list(departments.get(department) or []) + [resource]
    return updated, resource


def update_resource(pm_data, phase, department, resource_id, updates):
    """
    Apply field updates to one resource. A date change recomputes totalWeeks
    from the resulting date range.

    Returns:
        tuple: (new PM data, updated resource)
    """
    updated = _pm_copy(pm_data)
    resources = (updated['resourceAssignments'].get(phase) or {}).get(department) or []

    for index, resource in enumerate(resources):
        if resource.get('id') != resource_id:
            continue

        changed = {**resource, **{k: v for k, v in updates.items() if k in RESOURCE_EDITABLE_FIELDS}}
        if updates.get('startDate') or updates.get('endDate'):
            start = parse_date(changed.get('startDate'))
            end = parse_date(changed.get('endDate'))
            if start and end:
                changed['totalWeeks'] = weeks_between(start, end)
        resources[index] = changed
        return updated, changed

    raise NotFoundError("Resource", resource_id)


def remove_resource(pm_data, phase, department, resource_id):
    updated = _pm_copy(pm_data)
    departments = updated['resourceAssignments'].get(phase) or {}
    if department in departments:
        departments[department] = [r for r in departments[department] if r.get('id') != resource_id]
    return updated


# ---------------------------------------------------------------------------
# Load summary
# ---------------------------------------------------------------------------

def summarize_resource_load(resource_assignments):
    """
    Break resource assignments down into monthly load per assignee.

    Each resource contributes its allocated hours for the days of each month it
    overlaps; rows without usable dates are skipped.

    Args:
        resource_assignments: phase -> department -> list of resources

    Returns:
        dict: {'months': [...], 'assignees': {name: {'monthly': {month: {'weeks', 'hours'}},
        'total_hours', 'resources'}}}
    """
    entries = []
    for departments in (resource_assignments or {}).values():
        if not isinstance(departments, dict):
            continue
        for resources in departments.values():
            for resource in resources or []:
                start = parse_date(resource.get('startDate'))
                end = parse_date(resource.get('endDate'))
                if not start or not end or end < start:
                    continue
                entries.append((resource, start, end))

    if not entries:
        return {'months': [], 'assignees': {}}

    report_start = min(start for _, start, _ in entries).replace(day=1)
    report_end = max(end for _, _, end in entries)

    months = []
    current_month = report_start
    while current_month <= report_end:
        months.append(current_month.strftime('%Y-%m'))
        current_month = current_month + relativedelta(months=1)

    assignees = defaultdict(lambda: {
        'monthly': {m: {'weeks': 0, 'hours': 0} for m in months},
        'total_hours': 0,
        'resources': 0,
    })

    for resource, start, end in entries:
        name = (resource.get('assignee') or '').strip() or UNASSIGNED_LABEL
        hours_per_week = HOURS_PER_WEEK * _number(resource.get('allocation')) / 100
        summary = assignees[name]
        summary['resources'] += 1

        for month in months:
            month_start = datetime.strptime(month, '%Y-%m').date()
            month_end = month_start + relativedelta(months=1) - timedelta(days=1)

            overlap_start = max(start, month_start)
            overlap_end = min(end, month_end)
            if overlap_start > overlap_end:
                continue

            weeks = ((overlap_end - overlap_start).days + 1) / 7.0
            hours = round(weeks * hours_per_week, 2)
            summary['monthly'][month]['weeks'] = round(summary['monthly'][month]['weeks'] + weeks, 2)
            summary['monthly'][month]['hours'] = round(summary['monthly'][month]['hours'] + hours, 2)
            summary['total_hours'] = round(summary['total_hours'] + hours, 2)

    return {'months': months, 'assignees': dict(assignees)}
