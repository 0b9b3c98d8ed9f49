"""
Recalculation engine and plan editing for Quote Hub budgets.

Every function takes the phase tree and returns a new tree; the caller decides
when to store it. Re-running a trigger with unchanged inputs returns an equal
tree.
"""

import copy
import logging
import uuid

from costing import (
    Phase, DepartmentStatus, MAX_PLANNING_STAGES,
    iter_stages, iter_departments, iter_roles, active_phases,
    price_role, calculate_hours, calculate_total_dollars, stage_options
)
from errors import BusinessLogicError, ConflictError, NotFoundError
from rates import resolve_rate

logger = logging.getLogger(__name__)


def _new_id():
    return uuid.uuid4().hex


def first_non_empty(values):
    """Return the first truthy value, or None"""
    for value in values:
        if value:
            return value
    return None


def _department_copies(phase_data, phase, department_name):
    return [
        department
        for stage in iter_stages(phase_data, phase)
        for department in iter_departments(stage)
        if department.get('name') == department_name
    ]


def department_assignee(phase_data, phase, department_name):
    """
    Phase-wide assignee for a department.

    Assignment fields live on every stage-local copy of the department; the
    first non-empty value across the phase's stages wins, field by field.

    Returns:
        dict: {'assignedTo', 'assignedName'}
    """
    copies = _department_copies(phase_data, phase, department_name)
    return {
        'assignedTo': first_non_empty(dept.get('assignedTo') for dept in copies),
        'assignedName': first_non_empty(dept.get('assignedName') for dept in copies),
    }


def _find_stage(phase_data, phase, stage_id):
    for stage in iter_stages(phase_data, phase):
        if stage.get('id') == stage_id:
            return stage
    raise NotFoundError("Stage", stage_id)


def _find_department(stage, department_name):
    for department in iter_departments(stage):
        if department.get('name') == department_name:
            return department
    raise NotFoundError("Department", department_name)


# ---------------------------------------------------------------------------
# Cascading triggers
# ---------------------------------------------------------------------------

def recalculate_for_rate_card(project, phase_data, rate_card=None):
    """
    Re-price every role after a rate card change.

    Each role's rate is resolved again from its current name; hours are
    unchanged and totalDollars follows. Unnamed roles resolve to 0.

    Args:
        project: Project record (its phases and rateCard are read)
        phase_data: Phase -> stages tree
        rate_card: Overrides project['rateCard'] when given

    Returns:
        dict: New phase tree
    """
    card = rate_card or (project or {}).get('rateCard')
    updated = copy.deepcopy(phase_data) if isinstance(phase_data, dict) else {}
    repriced = 0

    for phase in active_phases(project):
        for stage in iter_stages(updated, phase):
            for department in iter_departments(stage):
                roles = []
                for role in iter_roles(department):
                    rate = resolve_rate(card, role['name']) if role.get('name') else 0
                    roles.append(price_role(role, rate))
                    repriced += 1
                department['roles'] = roles

    logger.info(f"Recalculated {repriced} role rate(s) for rate card '{card}'")
    return updated


def apply_stage_duration(phase_data, phase, stage_id, duration):
    """
    Set a stage's duration and cascade it onto every role in the stage.

    All roles take weeks = duration, replacing any shorter per-role value,
    then hours and totalDollars are recomputed at the role's current rate.

    Returns:
        dict: New phase tree
    """
    updated = copy.deepcopy(phase_data) if isinstance(phase_data, dict) else {}
    stage = _find_stage(updated, phase, stage_id)
    stage['duration'] = duration

    rewritten = 0
    for department in iter_departments(stage):
        roles = []
        for role in iter_roles(department):
            if role.get('weeks') != duration:
                logger.debug(f"Updating role '{role.get('name')}': {role.get('weeks')} -> {duration} weeks")
            roles.append(price_role({**role, 'weeks': duration}))
            rewritten += 1
        department['roles'] = roles

    logger.info(f"Stage {stage_id} duration changed to {duration} weeks - updated {rewritten} role(s)")
    return updated


# ---------------------------------------------------------------------------
# Role edits
# ---------------------------------------------------------------------------

ROLE_EDITABLE_FIELDS = ('name', 'weeks', 'allocation')


def update_role(project, phase_data, phase, stage_id, department_name, role_id, field, value):
    """
    Change one role field. A new name re-resolves the rate; hours and
    totalDollars are always recomputed.
    """
    if field not in ROLE_EDITABLE_FIELDS:
        raise BusinessLogicError(f"Role field '{field}' cannot be edited")

    updated = copy.deepcopy(phase_data)
    department = _find_department(_find_stage(updated, phase, stage_id), department_name)

    roles = []
    found = False
    for role in iter_roles(department):
        if role.get('id') == role_id:
            found = True
            role = {**role, field: value}
            rate = None
            if field == 'name':
                rate = resolve_rate((project or {}).get('rateCard'), value) if value else 0
            role = price_role(role, rate)
        roles.append(role)

    if not found:
        raise NotFoundError("Role", role_id)

    department['roles'] = roles
    return updated


def _suggested_role_name(phase_data, phase, department_name, stage_id):
    """Name of the role in the same row of the phase's first stage, if any"""
    stages = list(iter_stages(phase_data, phase))
    if not stages or stages[0].get('id') == stage_id:
        return ''
    first_copy = next(
        (dept for dept in iter_departments(stages[0]) if dept.get('name') == department_name), None
    )
    if first_copy is None:
        return ''
    current = _find_department(_find_stage(phase_data, phase, stage_id), department_name)
    row = len(list(iter_roles(current)))
    first_roles = list(iter_roles(first_copy))
    if row < len(first_roles):
        return first_roles[row].get('name') or ''
    return ''


def add_role(project, phase_data, phase, stage_id, department_name):
    """
    Append a role to a department in one stage.

    The role runs for the stage's duration at 100% allocation and takes its
    name from the same row of the phase's first stage when there is one.

    Returns:
        tuple: (new phase tree, new role)
    """
    updated = copy.deepcopy(phase_data)
    stage = _find_stage(updated, phase, stage_id)
    department = _find_department(stage, department_name)

    name = _suggested_role_name(updated, phase, department_name, stage_id)
    weeks = stage.get('duration') or 1
    rate = resolve_rate((project or {}).get('rateCard'), name) if name else 0
    hours = calculate_hours(weeks, 100)

    role = {
        'id': _new_id(),
        'name': name,
        'weeks': weeks,
        'allocation': 100,
        'hours': hours,
        'rate': rate,
        'totalDollars': calculate_total_dollars(hours, rate),
    }
    department['roles'] = list(iter_roles(department)) + [role]
    return updated, role


def delete_role(phase_data, phase, stage_id, department_name, role_id):
    updated = copy.deepcopy(phase_data)
    department = _find_department(_find_stage(updated, phase, stage_id), department_name)
    department['roles'] = [role for role in iter_roles(department) if role.get('id') != role_id]
    return updated


# ---------------------------------------------------------------------------
# Stage and department edits
# ---------------------------------------------------------------------------

def add_stage(phase_data, phase, name=None, duration=1):
    """
    Add a stage column to a phase. The default name follows the phase's stage
    catalog by position. Planning holds at most five stages.

    Returns:
        tuple: (new phase tree, new stage)
    """
    updated = copy.deepcopy(phase_data) if isinstance(phase_data, dict) else {}
    stages = [stage for stage in updated.get(phase) or [] if isinstance(stage, dict)]

    if phase == Phase.PLANNING and len(stages) >= MAX_PLANNING_STAGES:
        raise BusinessLogicError(f"You can add up to {MAX_PLANNING_STAGES} stages in the Planning phase.")

    options = stage_options(phase)
    stage = {
        'id': _new_id(),
        'phase': phase,
        'name': name or options[min(len(stages), len(options) - 1)],
        'duration': duration,
        'departments': [],
    }
    updated[phase] = stages + [stage]
    return updated, stage


def rename_stage(phase_data, phase, stage_id, name):
    updated = copy.deepcopy(phase_data)
    _find_stage(updated, phase, stage_id)['name'] = name
    return updated


def delete_stage(phase_data, phase, stage_id):
    updated = copy.deepcopy(phase_data)
    updated[phase] = [stage for stage in iter_stages(updated, phase) if stage.get('id') != stage_id]
    return updated


def add_department(phase_data, phase, department_name):
    """
    Add a department to every stage of a phase that does not already have it.
    Raises BusinessLogicError when the phase has no stages and ConflictError
    when every stage already carries the department.
    """
    updated = copy.deepcopy(phase_data)
    stages = list(iter_stages(updated, phase))
    if not stages:
        raise BusinessLogicError(f"Add a stage to {phase} before adding departments")
    if all(
        any(dept.get('name') == department_name for dept in iter_departments(stage)) for stage in stages
    ):
        raise ConflictError(f"{department_name} is already part of every {phase} stage")

    for stage in stages:
        departments = list(iter_departments(stage))
        if any(dept.get('name') == department_name for dept in departments):
            continue
        departments.append({
            'id': f"{stage.get('id')}-{department_name}-{_new_id()[:8]}",
            'name': department_name,
            'output': '',
            'status': DepartmentStatus.UNASSIGNED,
            'roles': [],
        })
        stage['departments'] = departments
    return updated


def remove_department(phase_data, phase, department_name):
    updated = copy.deepcopy(phase_data)
    for stage in iter_stages(updated, phase):
        stage['departments'] = [
            dept for dept in iter_departments(stage) if dept.get('name') != department_name
        ]
    return updated


def update_department_output(phase_data, phase, stage_id, department_name, output):
    updated = copy.deepcopy(phase_data)
    _find_department(_find_stage(updated, phase, stage_id), department_name)['output'] = output
    return updated


def assign_department(phase_data, phase, department_name, email, name=None):
    """Assign a department to a person on every stage copy in the phase"""
    updated = copy.deepcopy(phase_data)
    for department in _department_copies(updated, phase, department_name):
        department['assignedTo'] = email
        department['assignedName'] = name
        department['status'] = DepartmentStatus.ASSIGNED
    logger.info(f"Assigned {department_name} in {phase} to {email}")
    return updated


def unassign_department(phase_data, phase, department_name):
    updated = copy.deepcopy(phase_data)
    for department in _department_copies(updated, phase, department_name):
        department['assignedTo'] = None
        department['assignedName'] = None
        department['status'] = DepartmentStatus.UNASSIGNED
    return updated
