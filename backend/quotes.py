"""
Quote service: loads quotes from a storage adapter, runs the pure engine
functions over them and writes the results back.
"""

from datetime import datetime, timezone
import copy
import logging
import threading
import uuid

from autosave import AutosaveScheduler, LatestSnapshot
from costing import (
    Phase, DepartmentStatus, ALLOCATION_STEPS, MIN_STAGE_DURATION, MAX_STAGE_DURATION,
    migrate_quote, migrate_production_costs, calculate_project_totals, calculate_quote_revenue,
    department_breakdown, department_assignment_status, find_duration_warnings
)
from errors import (
    NotFoundError, ValidationError,
    validate_enum, validate_duration, validate_allocation, validate_positive_number
)
from rates import DEFAULT_RATE_CARD, list_rate_cards
from storage import QUOTE_KEY_PREFIX, quote_key
import engine
import resources

logger = logging.getLogger(__name__)

QUOTE_SCHEMA_VERSION = 3


class QuoteStatus:
    DRAFT = 'draft'
    PENDING = 'pending'
    APPROVED = 'approved'
    COMPLETED = 'completed'

    ALL = [DRAFT, PENDING, APPROVED, COMPLETED]


def _now():
    return datetime.now(timezone.utc).isoformat()


def _empty_pm_data():
    return {'resourceAssignments': {}, 'workback': [], 'milestones': []}


class EditSession:
    """
    An open editing session on one quote with autosave attached.

    Args:
        service: QuoteService that stores the quote
        quote: Loaded quote record
        debounce_seconds: Delay of the save after an edit
        interval_seconds: Period of the background save
        timer_factory: threading.Timer compatible factory (optional)
        app: Flask app whose context wraps every save, for adapters bound to it
    """

    def __init__(self, service, quote, debounce_seconds, interval_seconds, timer_factory=None, app=None):
        self.service = service
        self.app = app
        self.quote_id = quote['id']
        self.snapshot = LatestSnapshot(quote)
        kwargs = {'timer_factory': timer_factory} if timer_factory else {}
        self.autosave = AutosaveScheduler(
            self.snapshot, self._save,
            debounce_seconds=debounce_seconds, interval_seconds=interval_seconds, **kwargs
        )

    def _save(self, quote):
        # Timer threads run without an application context
        if self.app is None:
            return self.service.save_quote(quote)
        with self.app.app_context():
            return self.service.save_quote(quote)

    def apply(self, change, *args, **kwargs):
        """
        Run an engine function on the latest phase tree and publish the result.

        Args:
            change: Function taking the phase tree first and returning a new tree
                (or a (tree, extra) tuple)

        Returns:
            The extra value when the function returns a tuple, otherwise None
        """
        quote = self.snapshot.read()
        result = change(quote['phaseData'], *args, **kwargs)
        extra = None
        if isinstance(result, tuple):
            result, extra = result
        quote['phaseData'] = result
        self.snapshot.update(quote)
        self.autosave.request_save()
        return extra

    def update_project(self, **fields):
        quote = self.snapshot.read()
        quote['project'] = {**quote['project'], **fields}
        if 'rateCard' in fields:
            quote['phaseData'] = engine.recalculate_for_rate_card(quote['project'], quote['phaseData'])
        self.snapshot.update(quote)
        self.autosave.request_save()

    def current(self):
        return self.snapshot.read()

    def close(self):
        """Stop timers and write any unsaved state"""
        self.autosave.stop()
        self.autosave.flush()
        return self.snapshot.read()


class SessionRegistry:
    """Open edit sessions of one application, keyed by quote id"""

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions = {}

    def open(self, service, quote_id, app=None):
        """Return the open session for a quote, opening and starting one if needed"""
        with self._lock:
            session = self._sessions.get(quote_id)
            if session is None:
                session = service.open_session(quote_id, app=app)
                session.autosave.start()
                self._sessions[quote_id] = session
            return session

    def get(self, quote_id):
        with self._lock:
            session = self._sessions.get(quote_id)
        if session is None:
            raise NotFoundError("Edit session", quote_id)
        return session

    def close(self, quote_id):
        with self._lock:
            session = self._sessions.pop(quote_id, None)
        if session is None:
            raise NotFoundError("Edit session", quote_id)
        return session.close()

    def close_all(self):
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()

    def __len__(self):
        with self._lock:
            return len(self._sessions)


class QuoteService:
    """
    Orchestrates quote edits over a storage adapter.

    Args:
        storage: Adapter exposing get/set/delete/list
        default_rate_card: Rate card for quotes that have none
        default_currency: Currency for quotes that have none
        autosave_debounce_seconds: Debounce of edit sessions
        autosave_interval_seconds: Periodic save interval of edit sessions
    """

    def __init__(self, storage, default_rate_card=DEFAULT_RATE_CARD, default_currency='CAD',
                 autosave_debounce_seconds=1.5, autosave_interval_seconds=30):
        self.storage = storage
        self.default_rate_card = default_rate_card
        self.default_currency = default_currency
        self.autosave_debounce_seconds = autosave_debounce_seconds
        self.autosave_interval_seconds = autosave_interval_seconds

    # -- records ----------------------------------------------------------

    def create_quote(self, project, phase_data=None, pm_data=None, production_cost_data=None):
        """Create and store a new quote; returns the stored record"""
        project = dict(project or {})
        if not project.get('phases'):
            project['phases'] = list(Phase.ALL)

        rate_card = project.get('rateCard')
        if rate_card:
            validate_enum(rate_card, list_rate_cards(), 'rateCard')

        project, phase_data = migrate_quote(
            project, phase_data or {}, self.default_rate_card, self.default_currency
        )
        for phase in project['phases']:
            phase_data.setdefault(phase, [])

        now = _now()
        quote = {
            'id': uuid.uuid4().hex,
            'project': project,
            'phaseData': engine.recalculate_for_rate_card(project, phase_data),
            'pmData': pm_data or _empty_pm_data(),
            'productionCostData': migrate_production_costs(production_cost_data),
            'status': QuoteStatus.DRAFT,
            'createdDate': now,
            'lastModified': now,
            'schemaVersion': QUOTE_SCHEMA_VERSION,
        }
        saved = self.save_quote(quote)
        logger.info(f"Created quote {quote['id']} ({project.get('projectName') or 'untitled'})")
        return saved

    def load_quote(self, quote_id):
        """
        Load a quote, migrating records written by older versions once and
        storing the migrated record.
        """
        quote = self.storage.get(quote_key(quote_id))
        if quote is None:
            raise NotFoundError("Quote", quote_id)

        if quote.get('schemaVersion') != QUOTE_SCHEMA_VERSION:
            logger.info(f"Migrating quote {quote_id} to schema version {QUOTE_SCHEMA_VERSION}")
            quote['project'], quote['phaseData'] = migrate_quote(
                quote.get('project'), quote.get('phaseData'),
                self.default_rate_card, self.default_currency
            )
            quote['pmData'] = quote.get('pmData') or _empty_pm_data()
            quote['productionCostData'] = migrate_production_costs(quote.get('productionCostData'))
            quote.setdefault('status', QuoteStatus.DRAFT)
            quote['schemaVersion'] = QUOTE_SCHEMA_VERSION
            quote = self.save_quote(quote)

        return quote

    def save_quote(self, quote):
        """Recompute revenue and department breakdown, then store the quote"""
        quote = copy.deepcopy(quote)
        quote['totalRevenue'] = calculate_quote_revenue(
            quote.get('phaseData'), quote.get('productionCostData'), quote.get('project') or {}
        )
        quote['departmentBreakdown'] = department_breakdown(quote.get('phaseData'))
        quote['lastModified'] = _now()
        quote.setdefault('createdDate', quote['lastModified'])
        self.storage.set(quote_key(quote['id']), quote)
        return quote

    def list_quotes(self):
        """All stored quotes, most recently modified first"""
        quotes = list(self.storage.list(QUOTE_KEY_PREFIX).values())
        quotes.sort(key=lambda q: q.get('lastModified') or '', reverse=True)
        return quotes

    def delete_quote(self, quote_id):
        if not self.storage.delete(quote_key(quote_id)):
            raise NotFoundError("Quote", quote_id)
        logger.info(f"Deleted quote {quote_id}")

    def update_quote(self, quote_id, project=None, phase_data=None, pm_data=None, status=None,
                     production_cost_data=None):
        """Replace parts of a quote; a rate card change re-prices the plan"""
        quote = self.load_quote(quote_id)

        if status is not None:
            validate_enum(status, QuoteStatus.ALL, 'status')
            quote['status'] = status
        if pm_data is not None:
            quote['pmData'] = pm_data
        if phase_data is not None:
            quote['phaseData'] = phase_data
        if production_cost_data is not None:
            quote['productionCostData'] = migrate_production_costs(production_cost_data)

        if project is not None:
            previous_card = quote['project'].get('rateCard')
            merged = {**quote['project'], **project}
            if merged.get('rateCard'):
                validate_enum(merged['rateCard'], list_rate_cards(), 'rateCard')
            quote['project'], quote['phaseData'] = migrate_quote(
                merged, quote['phaseData'], self.default_rate_card, self.default_currency
            )
            if quote['project']['rateCard'] != previous_card:
                quote['phaseData'] = engine.recalculate_for_rate_card(quote['project'], quote['phaseData'])

        return self.save_quote(quote)

    # -- cascading edits --------------------------------------------------

    def change_rate_card(self, quote_id, rate_card):
        validate_enum(rate_card, list_rate_cards(), 'rateCard')
        quote = self.load_quote(quote_id)
        quote['project']['rateCard'] = rate_card
        quote['phaseData'] = engine.recalculate_for_rate_card(quote['project'], quote['phaseData'])
        return self.save_quote(quote)

    def change_stage_duration(self, quote_id, phase, stage_id, duration):
        validate_duration(duration)
        quote = self.load_quote(quote_id)
        quote['phaseData'] = engine.apply_stage_duration(quote['phaseData'], phase, stage_id, duration)
        return self.save_quote(quote)

    @staticmethod
    def _validate_role_field(field, value):
        if field not in engine.ROLE_EDITABLE_FIELDS:
            raise ValidationError(f"Role field '{field}' cannot be edited", field)
        if field == 'allocation':
            validate_allocation(value, ALLOCATION_STEPS)
        elif field == 'weeks':
            if isinstance(value, bool) or not isinstance(value, int) or not \
                    MIN_STAGE_DURATION <= value <= MAX_STAGE_DURATION:
                raise ValidationError(
                    f"weeks must be a whole number between {MIN_STAGE_DURATION} and {MAX_STAGE_DURATION}", 'weeks'
                )
        elif field == 'name' and value is not None and not isinstance(value, str):
            raise ValidationError("name must be a string", 'name')

    def edit_role_fields(self, quote_id, phase, stage_id, department, role_id, updates):
        """
        Change several fields of one role in a single write.

        Every field is validated before anything is applied, so a rejected
        request leaves the stored quote untouched.

        Args:
            updates: Field -> value for fields in engine.ROLE_EDITABLE_FIELDS
        """
        if not updates:
            raise ValidationError(f"Provide at least one of: {', '.join(engine.ROLE_EDITABLE_FIELDS)}")
        for field, value in updates.items():
            self._validate_role_field(field, value)

        quote = self.load_quote(quote_id)
        phase_data = quote['phaseData']
        for field in engine.ROLE_EDITABLE_FIELDS:
            if field in updates:
                phase_data = engine.update_role(
                    quote['project'], phase_data, phase, stage_id, department, role_id, field, updates[field]
                )
        quote['phaseData'] = phase_data
        return self.save_quote(quote)

    def edit_role(self, quote_id, phase, stage_id, department, role_id, field, value):
        return self.edit_role_fields(quote_id, phase, stage_id, department, role_id, {field: value})

    # -- plan structure ---------------------------------------------------

    def add_stage(self, quote_id, phase, name=None, duration=1):
        validate_enum(phase, Phase.ALL, 'phase')
        validate_duration(duration)
        quote = self.load_quote(quote_id)
        quote['phaseData'], stage = engine.add_stage(quote['phaseData'], phase, name, duration)
        return self.save_quote(quote), stage

    def rename_stage(self, quote_id, phase, stage_id, name):
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("name must be a non-empty string", 'name')
        quote = self.load_quote(quote_id)
        quote['phaseData'] = engine.rename_stage(quote['phaseData'], phase, stage_id, name.strip())
        return self.save_quote(quote)

    def delete_stage(self, quote_id, phase, stage_id):
        quote = self.load_quote(quote_id)
        if not any(stage.get('id') == stage_id for stage in quote['phaseData'].get(phase) or []):
            raise NotFoundError("Stage", stage_id)
        quote['phaseData'] = engine.delete_stage(quote['phaseData'], phase, stage_id)
        return self.save_quote(quote)

    def add_department(self, quote_id, phase, department):
        validate_enum(phase, Phase.ALL, 'phase')
        quote = self.load_quote(quote_id)
        quote['phaseData'] = engine.add_department(quote['phaseData'], phase, department)
        return self.save_quote(quote)

    def remove_department(self, quote_id, phase, department):
        validate_enum(phase, Phase.ALL, 'phase')
        quote = self.load_quote(quote_id)
        quote['phaseData'] = engine.remove_department(quote['phaseData'], phase, department)
        return self.save_quote(quote)

    def update_department_output(self, quote_id, phase, stage_id, department, output):
        if output is not None and not isinstance(output, str):
            raise ValidationError("output must be a string", 'output')
        quote = self.load_quote(quote_id)
        quote['phaseData'] = engine.update_department_output(
            quote['phaseData'], phase, stage_id, department, output or ''
        )
        return self.save_quote(quote)

    def add_role(self, quote_id, phase, stage_id, department):
        quote = self.load_quote(quote_id)
        quote['phaseData'], role = engine.add_role(quote['project'], quote['phaseData'], phase, stage_id, department)
        return self.save_quote(quote), role

    def delete_role(self, quote_id, phase, stage_id, department, role_id):
        quote = self.load_quote(quote_id)
        quote['phaseData'] = engine.delete_role(quote['phaseData'], phase, stage_id, department, role_id)
        return self.save_quote(quote)

    def assign_department(self, quote_id, phase, department, email=None, name=None):
        quote = self.load_quote(quote_id)
        if email:
            quote['phaseData'] = engine.assign_department(quote['phaseData'], phase, department, email, name)
        else:
            quote['phaseData'] = engine.unassign_department(quote['phaseData'], phase, department)
        return self.save_quote(quote)

    # -- read models ------------------------------------------------------

    def department_statuses(self, quote_id, phase):
        """
        Phase-wide assignee and status of every department in a phase.

        Returns:
            dict: Department name -> {'assignedTo', 'assignedName', 'status'}
        """
        validate_enum(phase, Phase.ALL, 'phase')
        quote = self.load_quote(quote_id)
        names = []
        for stage in quote['phaseData'].get(phase) or []:
            for department in stage.get('departments') or []:
                if department.get('name') and department['name'] not in names:
                    names.append(department['name'])

        statuses = {}
        for name in names:
            assignee = engine.department_assignee(quote['phaseData'], phase, name)
            statuses[name] = {
                **assignee,
                'status': department_assignment_status(quote['phaseData'], phase, name) or DepartmentStatus.UNASSIGNED,
            }
        return statuses

    def totals(self, quote_id):
        quote = self.load_quote(quote_id)
        return calculate_project_totals(quote['project'], quote['phaseData'], quote.get('productionCostData'))

    def warnings(self, quote_id):
        quote = self.load_quote(quote_id)
        return find_duration_warnings(quote['phaseData'])

    # -- resources --------------------------------------------------------

    def derive_resources(self, quote_id, today=None):
        """Populate the PM resource schedule unless one already exists"""
        quote = self.load_quote(quote_id)
        pm_data = quote.get('pmData') or _empty_pm_data()
        if resources.has_resource_assignments(pm_data):
            logger.info(f"Quote {quote_id} already has resource assignments - derivation skipped")
            return pm_data['resourceAssignments']

        pm_data['resourceAssignments'] = resources.derive_resource_assignments(
            quote['project'], quote['phaseData'], pm_data, today=today
        )
        quote['pmData'] = pm_data
        self.save_quote(quote)
        return pm_data['resourceAssignments']

    def resource_assignments(self, quote_id):
        quote = self.load_quote(quote_id)
        return (quote.get('pmData') or {}).get('resourceAssignments') or {}

    def add_resource(self, quote_id, phase, department, today=None):
        quote = self.load_quote(quote_id)
        quote['pmData'], resource = resources.add_resource(
            quote.get('pmData'), phase, department, quote['project'], today=today
        )
        self.save_quote(quote)
        return resource

    def update_resource(self, quote_id, phase, department, resource_id, updates):
        if 'allocation' in updates:
            validate_allocation(updates['allocation'])
        if 'totalWeeks' in updates:
            validate_positive_number(updates['totalWeeks'], 'totalWeeks')
        quote = self.load_quote(quote_id)
        quote['pmData'], resource = resources.update_resource(
            quote.get('pmData'), phase, department, resource_id, updates
        )
        self.save_quote(quote)
        return resource

    def remove_resource(self, quote_id, phase, department, resource_id):
        quote = self.load_quote(quote_id)
        quote['pmData'] = resources.remove_resource(quote.get('pmData'), phase, department, resource_id)
        self.save_quote(quote)

    def resource_load(self, quote_id):
        return resources.summarize_resource_load(self.resource_assignments(quote_id))

    # -- sessions ---------------------------------------------------------

    def open_session(self, quote_id, debounce_seconds=None, interval_seconds=None, timer_factory=None, app=None):
        """Open an autosaving edit session on a quote; timers default to the service settings"""
        if debounce_seconds is None:
            debounce_seconds = self.autosave_debounce_seconds
        if interval_seconds is None:
            interval_seconds = self.autosave_interval_seconds
        return EditSession(
            self, self.load_quote(quote_id), debounce_seconds, interval_seconds, timer_factory, app=app
        )
