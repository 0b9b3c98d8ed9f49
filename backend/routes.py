from flask import Blueprint, request, jsonify, current_app
from errors import (
    QuoteHubError, ValidationError,
    validate_required, validate_date_range, validate_enum, log_api_request
)

api = Blueprint('api', __name__)


def get_quote_service():
    """Build the quote service for the configured storage owner - call this inside route functions"""
    from quotes import QuoteService
    from storage import SqlStorageAdapter
    return QuoteService(
        SqlStorageAdapter(current_app.config['STORAGE_OWNER']),
        default_rate_card=current_app.config['DEFAULT_RATE_CARD'],
        default_currency=current_app.config['DEFAULT_CURRENCY'],
        autosave_debounce_seconds=current_app.config['AUTOSAVE_DEBOUNCE_SECONDS'],
        autosave_interval_seconds=current_app.config['AUTOSAVE_INTERVAL_SECONDS']
    )


def get_session_registry():
    """Edit sessions opened through this app"""
    return current_app.extensions['quote_sessions']


# Error handling decorator
def handle_errors(f):
    """Decorator to handle common errors and return JSON responses"""
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except QuoteHubError:
            # These are already handled by the global error handler
            raise
        except Exception as e:
            current_app.logger.error(f"Unexpected error in {f.__name__}: {str(e)}")
            raise  # Let the global error handler deal with it
    wrapper.__name__ = f.__name__
    return wrapper


def get_json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


# Validation helpers
def validate_project_data(project):
    """Validate the project record of a quote"""
    if not isinstance(project, dict):
        raise ValidationError("project must be an object", 'project')

    validate_required(project, ['projectName'])

    from costing import Phase
    for phase in project.get('phases') or []:
        validate_enum(phase, Phase.ALL, 'phases')

    from resources import parse_date
    start = project.get('startDate') or project.get('inMarketDate')
    end = project.get('endDate') or project.get('projectCompletionDate')
    for field, value in (('startDate', start), ('endDate', end)):
        if value and parse_date(value) is None:
            raise ValidationError(f"Invalid date format for {field}", field)
    validate_date_range(parse_date(start), parse_date(end))


def get_production_cost_data(data):
    """Optional productionCostData object from a request body"""
    value = data.get('productionCostData')
    if value is not None and not isinstance(value, dict):
        raise ValidationError("productionCostData must be an object", 'productionCostData')
    return value


def parse_today():
    """Optional ?today=YYYY-MM-DD override used as the fallback start date"""
    value = request.args.get('today')
    if not value:
        return None
    from resources import parse_date
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError("Invalid date format for today", 'today')
    return parsed


# RATE ENDPOINTS

@api.route('/rate-cards', methods=['GET'])
@handle_errors
def get_rate_cards():
    """List selectable rate cards"""
    from rates import list_rate_cards, DEFAULT_RATE_CARD
    return jsonify({
        'rate_cards': list_rate_cards(),
        'default': current_app.config.get('DEFAULT_RATE_CARD', DEFAULT_RATE_CARD)
    })


@api.route('/rates', methods=['GET'])
@handle_errors
def get_rate():
    """Resolve the hourly rate for a role on a rate card"""
    from rates import resolve_rate_info

    role = request.args.get('role')
    if not role:
        raise ValidationError("role is required", 'role')
    rate_card = request.args.get('rate_card') or current_app.config['DEFAULT_RATE_CARD']

    info = resolve_rate_info(rate_card, role)
    return jsonify({'rate_card': rate_card, 'role': role, **info})


@api.route('/departments/<name>/roles', methods=['GET'])
@handle_errors
def get_department_roles(name):
    """Role catalog for a department, optionally limited to roles priced on a rate card"""
    from costing import Department
    from rates import roles_for_department

    validate_enum(name, Department.ALL, 'department')
    rate_card = request.args.get('rate_card')
    return jsonify({'department': name, 'roles': roles_for_department(name, rate_card)})


# QUOTE ENDPOINTS

@api.route('/quotes', methods=['GET'])
@handle_errors
def get_quotes():
    """Get all quotes, most recently modified first"""
    service = get_quote_service()
    quotes = service.list_quotes()

    status = request.args.get('status')
    if status:
        quotes = [q for q in quotes if q.get('status') == status]

    return jsonify(quotes)


@api.route('/quotes', methods=['POST'])
@handle_errors
def create_quote():
    """Create a new quote"""
    data = get_json_body()
    validate_required(data, ['project'])
    validate_project_data(data['project'])

    log_api_request('/quotes', 'POST', project=data['project'].get('projectName'))

    quote = get_quote_service().create_quote(
        data['project'], data.get('phaseData'), data.get('pmData'), get_production_cost_data(data)
    )
    return jsonify(quote), 201


@api.route('/quotes/<quote_id>', methods=['GET'])
@handle_errors
def get_quote(quote_id):
    """Get a quote by ID"""
    return jsonify(get_quote_service().load_quote(quote_id))


@api.route('/quotes/<quote_id>', methods=['PUT'])
@handle_errors
def update_quote(quote_id):
    """Replace the project, plan, PM data or status of a quote"""
    data = get_json_body()
    if 'project' in data:
        service = get_quote_service()
        merged = {**service.load_quote(quote_id)['project'], **(data['project'] or {})}
        validate_project_data(merged)

    quote = get_quote_service().update_quote(
        quote_id,
        project=data.get('project'),
        phase_data=data.get('phaseData'),
        pm_data=data.get('pmData'),
        status=data.get('status'),
        production_cost_data=get_production_cost_data(data)
    )
    return jsonify(quote)


@api.route('/quotes/<quote_id>', methods=['DELETE'])
@handle_errors
def delete_quote(quote_id):
    """Delete a quote"""
    get_quote_service().delete_quote(quote_id)
    return jsonify({'message': 'Quote deleted successfully'})


# PLAN EDIT ENDPOINTS

@api.route('/quotes/<quote_id>/rate-card', methods=['PUT'])
@handle_errors
def change_rate_card(quote_id):
    """Switch a quote's rate card and re-price every role"""
    data = get_json_body()
    validate_required(data, ['rateCard'])

    log_api_request(f'/quotes/{quote_id}/rate-card', 'PUT', rate_card=data['rateCard'])

    quote = get_quote_service().change_rate_card(quote_id, data['rateCard'])
    return jsonify(quote)


@api.route('/quotes/<quote_id>/phases/<path:phase>/stages/<stage_id>/duration', methods=['PUT'])
@handle_errors
def change_stage_duration(quote_id, phase, stage_id):
    """Change a stage's duration; every role in the stage takes the new duration"""
    data = get_json_body()
    validate_required(data, ['duration'])

    quote = get_quote_service().change_stage_duration(quote_id, phase, stage_id, data['duration'])
    return jsonify(quote)


@api.route('/quotes/<quote_id>/phases/<path:phase>/stages', methods=['POST'])
@handle_errors
def add_stage(quote_id, phase):
    """Add a stage to a phase"""
    data = request.get_json(silent=True) or {}
    quote, stage = get_quote_service().add_stage(quote_id, phase, data.get('name'), data.get('duration', 1))
    return jsonify({'stage': stage, 'quote': quote}), 201


@api.route('/quotes/<quote_id>/phases/<path:phase>/stages/<stage_id>', methods=['PUT'])
@handle_errors
def rename_stage(quote_id, phase, stage_id):
    """Rename a stage"""
    data = get_json_body()
    validate_required(data, ['name'])
    return jsonify(get_quote_service().rename_stage(quote_id, phase, stage_id, data['name']))


@api.route('/quotes/<quote_id>/phases/<path:phase>/stages/<stage_id>', methods=['DELETE'])
@handle_errors
def delete_stage(quote_id, phase, stage_id):
    """Delete a stage with its departments and roles"""
    return jsonify(get_quote_service().delete_stage(quote_id, phase, stage_id))


@api.route('/quotes/<quote_id>/phases/<path:phase>/departments', methods=['POST'])
@handle_errors
def add_department(quote_id, phase):
    """Add a department to every stage of a phase"""
    from costing import Department

    data = get_json_body()
    validate_required(data, ['name'])
    validate_enum(data['name'], Department.ALL, 'name')

    quote = get_quote_service().add_department(quote_id, phase, data['name'])
    return jsonify(quote), 201


@api.route('/quotes/<quote_id>/phases/<path:phase>/departments', methods=['GET'])
@handle_errors
def get_department_statuses(quote_id, phase):
    """Assignee and status of every department in a phase"""
    return jsonify({'phase': phase, 'departments': get_quote_service().department_statuses(quote_id, phase)})


@api.route('/quotes/<quote_id>/phases/<path:phase>/departments/<department>', methods=['DELETE'])
@handle_errors
def remove_department(quote_id, phase, department):
    """Remove a department from every stage of a phase"""
    return jsonify(get_quote_service().remove_department(quote_id, phase, department))


@api.route('/quotes/<quote_id>/phases/<path:phase>/stages/<stage_id>/departments/<department>/output',
           methods=['PUT'])
@handle_errors
def update_department_output(quote_id, phase, stage_id, department):
    """Set the deliverable text of a department in one stage"""
    data = get_json_body()
    validate_required(data, ['output'])
    return jsonify(get_quote_service().update_department_output(
        quote_id, phase, stage_id, department, data['output']
    ))


@api.route('/quotes/<quote_id>/phases/<path:phase>/stages/<stage_id>/departments/<department>/roles',
           methods=['POST'])
@handle_errors
def add_role(quote_id, phase, stage_id, department):
    """Add a role row to a department in one stage"""
    quote, role = get_quote_service().add_role(quote_id, phase, stage_id, department)
    return jsonify({'role': role, 'quote': quote}), 201


@api.route('/quotes/<quote_id>/phases/<path:phase>/stages/<stage_id>/departments/<department>/roles/<role_id>',
           methods=['PUT'])
@handle_errors
def update_role(quote_id, phase, stage_id, department, role_id):
    """Update role fields (name, weeks, allocation)"""
    from engine import ROLE_EDITABLE_FIELDS

    data = get_json_body()
    fields = [field for field in ROLE_EDITABLE_FIELDS if field in data]
    if not fields:
        raise ValidationError(f"Provide at least one of: {', '.join(ROLE_EDITABLE_FIELDS)}")

    quote = get_quote_service().edit_role_fields(
        quote_id, phase, stage_id, department, role_id, {field: data[field] for field in fields}
    )
    return jsonify(quote)


@api.route('/quotes/<quote_id>/phases/<path:phase>/stages/<stage_id>/departments/<department>/roles/<role_id>',
           methods=['DELETE'])
@handle_errors
def delete_role(quote_id, phase, stage_id, department, role_id):
    """Remove a role row"""
    return jsonify(get_quote_service().delete_role(quote_id, phase, stage_id, department, role_id))


@api.route('/quotes/<quote_id>/phases/<path:phase>/departments/<department>/assignment', methods=['PUT'])
@handle_errors
def assign_department(quote_id, phase, department):
    """Assign a department across a phase; an empty assignedTo clears it"""
    data = request.get_json(silent=True) or {}
    quote = get_quote_service().assign_department(
        quote_id, phase, department, data.get('assignedTo'), data.get('assignedName')
    )
    return jsonify(quote)


# REPORTING ENDPOINTS

@api.route('/quotes/<quote_id>/totals', methods=['GET'])
@handle_errors
def get_quote_totals(quote_id):
    """Phase, department and grand totals including the resourcing fee"""
    return jsonify(get_quote_service().totals(quote_id))


@api.route('/quotes/<quote_id>/warnings', methods=['GET'])
@handle_errors
def get_quote_warnings(quote_id):
    """Roles booked longer than their stage"""
    return jsonify({'warnings': get_quote_service().warnings(quote_id)})


# RESOURCE ENDPOINTS

@api.route('/quotes/<quote_id>/resources/derive', methods=['POST'])
@handle_errors
def derive_resources(quote_id):
    """Populate resource assignments from the plan unless a schedule already exists"""
    assignments = get_quote_service().derive_resources(quote_id, today=parse_today())
    return jsonify({'resourceAssignments': assignments})


@api.route('/quotes/<quote_id>/resources', methods=['GET'])
@handle_errors
def get_resources(quote_id):
    """Get the resource schedule of a quote"""
    return jsonify({'resourceAssignments': get_quote_service().resource_assignments(quote_id)})


@api.route('/quotes/<quote_id>/resources/<path:phase>/<department>', methods=['POST'])
@handle_errors
def add_resource(quote_id, phase, department):
    """Add a blank resource row to a department"""
    resource = get_quote_service().add_resource(quote_id, phase, department, today=parse_today())
    return jsonify(resource), 201


@api.route('/quotes/<quote_id>/resources/<path:phase>/<department>/<resource_id>', methods=['PUT'])
@handle_errors
def update_resource(quote_id, phase, department, resource_id):
    """Edit a resource row"""
    data = get_json_body()

    from resources import parse_date
    for field in ('startDate', 'endDate'):
        if data.get(field) and parse_date(data[field]) is None:
            raise ValidationError(f"Invalid date format for {field}", field)

    resource = get_quote_service().update_resource(quote_id, phase, department, resource_id, data)
    return jsonify(resource)


@api.route('/quotes/<quote_id>/resources/<path:phase>/<department>/<resource_id>', methods=['DELETE'])
@handle_errors
def delete_resource(quote_id, phase, department, resource_id):
    """Remove a resource row"""
    get_quote_service().remove_resource(quote_id, phase, department, resource_id)
    return jsonify({'message': 'Resource removed successfully'})


@api.route('/quotes/<quote_id>/resources/load', methods=['GET'])
@handle_errors
def get_resource_load(quote_id):
    """Monthly load per assignee"""
    return jsonify(get_quote_service().resource_load(quote_id))


# EDIT SESSION ENDPOINTS

@api.route('/quotes/<quote_id>/session', methods=['POST'])
@handle_errors
def open_edit_session(quote_id):
    """Open an autosaving edit session; edits through it are saved on the debounce and interval timers"""
    session = get_session_registry().open(
        get_quote_service(), quote_id, app=current_app._get_current_object()
    )
    return jsonify({'quote_id': quote_id, 'version': session.snapshot.version, 'quote': session.current()}), 201


@api.route('/quotes/<quote_id>/session', methods=['GET'])
@handle_errors
def get_edit_session(quote_id):
    """Latest unsaved state of an open session"""
    session = get_session_registry().get(quote_id)
    return jsonify({
        'quote_id': quote_id,
        'version': session.snapshot.version,
        'saved_version': session.autosave.last_written_version,
        'quote': session.current()
    })


@api.route('/quotes/<quote_id>/session/rate-card', methods=['PUT'])
@handle_errors
def session_change_rate_card(quote_id):
    """Switch the rate card inside an open session"""
    from rates import list_rate_cards

    data = get_json_body()
    validate_required(data, ['rateCard'])
    validate_enum(data['rateCard'], list_rate_cards(), 'rateCard')

    session = get_session_registry().get(quote_id)
    session.update_project(rateCard=data['rateCard'])
    return jsonify({'quote_id': quote_id, 'version': session.snapshot.version, 'quote': session.current()})


@api.route('/quotes/<quote_id>/session/phases/<path:phase>/stages/<stage_id>/duration', methods=['PUT'])
@handle_errors
def session_change_stage_duration(quote_id, phase, stage_id):
    """Change a stage duration inside an open session"""
    from engine import apply_stage_duration
    from errors import validate_duration

    data = get_json_body()
    validate_required(data, ['duration'])
    validate_duration(data['duration'])

    session = get_session_registry().get(quote_id)
    session.apply(apply_stage_duration, phase, stage_id, data['duration'])
    return jsonify({'quote_id': quote_id, 'version': session.snapshot.version, 'quote': session.current()})


@api.route('/quotes/<quote_id>/session', methods=['DELETE'])
@handle_errors
def close_edit_session(quote_id):
    """Close a session, writing any unsaved state"""
    return jsonify(get_session_registry().close(quote_id))
