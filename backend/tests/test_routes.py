"""
Unit tests for Quote Hub API routes
"""

import pytest
import time
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import create_app
from models import db


@pytest.fixture
def app():
    """Create and configure a test app instance."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        app.extensions['quote_sessions'].close_all()
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def quote_payload():
    return {
        'project': {
            'projectName': 'Route Test',
            'clientName': 'Client',
            'phases': ['Planning', 'Production/Execution'],
            'startDate': '2025-01-01',
            'endDate': '2025-01-15',
        },
        'phaseData': {
            'Planning': [
                {'id': 'stage-1', 'name': 'Strategic Check In', 'duration': 2, 'departments': [
                    {'id': 'd1', 'name': 'Design', 'roles': [
                        {'id': 'r1', 'name': 'Designer', 'weeks': 2, 'allocation': 100},
                    ]},
                ]},
                {'id': 'stage-2', 'name': 'Creative Tissue', 'duration': 3, 'departments': [
                    {'id': 'd2', 'name': 'Design', 'roles': [
                        {'id': 'r2', 'name': 'Designer', 'weeks': 3, 'allocation': 100},
                    ]},
                ]},
            ],
            'Production/Execution': [
                {'id': 'stage-3', 'name': 'In Field Execution', 'duration': 1, 'departments': [
                    {'id': 'd3', 'name': 'Creative', 'roles': [
                        {'id': 'r3', 'name': 'Creative', 'weeks': 1, 'allocation': 100},
                    ]},
                ]},
            ],
        },
    }


@pytest.fixture
def quote(client, quote_payload):
    response = client.post('/api/quotes', json=quote_payload)
    assert response.status_code == 201
    return response.get_json()


class TestHealthAndRates:
    """Test health and rate lookup endpoints"""

    def test_health_check(self, client):
        response = client.get('/api/health')
        assert response.status_code == 200
        assert response.get_json()['status'] == 'healthy'

    def test_health_reports_engine_state(self, app, client):
        data = client.get('/api/health').get_json()
        assert data['default_rate_card'] == 'Standard'
        assert data['rate_cards'] == 8
        assert data['open_edit_sessions'] == 0
        assert app.extensions['quote_sessions'] is not None

    def test_rate_cards(self, client):
        data = client.get('/api/rate-cards').get_json()
        assert 'Blended' in data['rate_cards']
        assert data['default'] == 'Standard'

    def test_rate_lookup_with_alias_fallback(self, client):
        response = client.get('/api/rates?rate_card=Blended&role=Creative')
        assert response.status_code == 200
        data = response.get_json()
        assert data['rate'] == 165
        assert data['source'] == 'legacy'
        assert data['lookup_name'] == 'Conceptor'

    def test_unresolved_rate(self, client):
        data = client.get('/api/rates?role=Nobody').get_json()
        assert data['rate'] == 0
        assert data['source'] == 'unresolved'
        assert data['rate_card'] == 'Standard'

    def test_rate_lookup_requires_role(self, client):
        response = client.get('/api/rates?rate_card=Standard')
        assert response.status_code == 400
        assert response.get_json()['error']['type'] == 'ValidationError'

    def test_department_roles(self, client):
        data = client.get('/api/departments/Design/roles').get_json()
        assert data['roles'][0] == 'VP, Design'

    def test_unknown_department(self, client):
        assert client.get('/api/departments/Catering/roles').status_code == 400


class TestQuoteCrud:
    """Test quote CRUD endpoints"""

    def test_create_quote(self, quote):
        assert quote['id']
        assert quote['status'] == 'draft'
        assert quote['departmentBreakdown'] == {'Design': 30000, 'Creative': 6800}
        assert quote['project']['rateCard'] == 'Standard'

    def test_create_requires_project_name(self, client):
        response = client.post('/api/quotes', json={'project': {'phases': ['Planning']}})
        assert response.status_code == 400

    def test_create_rejects_unknown_phase(self, client):
        response = client.post('/api/quotes', json={'project': {'projectName': 'X', 'phases': ['Lunch']}})
        assert response.status_code == 400

    def test_create_rejects_bad_dates(self, client):
        response = client.post('/api/quotes', json={'project': {
            'projectName': 'X', 'startDate': '2025-02-01', 'endDate': '2025-01-01'
        }})
        assert response.status_code == 400
        response = client.post('/api/quotes', json={'project': {'projectName': 'X', 'startDate': 'soon'}})
        assert response.status_code == 400

    def test_create_requires_json(self, client):
        response = client.post('/api/quotes', data='nope', content_type='text/plain')
        assert response.status_code == 400

    def test_get_and_list(self, client, quote):
        assert client.get(f"/api/quotes/{quote['id']}").get_json()['id'] == quote['id']
        listed = client.get('/api/quotes').get_json()
        assert [q['id'] for q in listed] == [quote['id']]
        assert client.get('/api/quotes?status=approved').get_json() == []

    def test_get_missing(self, client):
        response = client.get('/api/quotes/missing')
        assert response.status_code == 404
        assert response.get_json()['error']['type'] == 'NotFoundError'

    def test_update_status(self, client, quote):
        response = client.put(f"/api/quotes/{quote['id']}", json={'status': 'pending'})
        assert response.status_code == 200
        assert response.get_json()['status'] == 'pending'

    def test_delete(self, client, quote):
        assert client.delete(f"/api/quotes/{quote['id']}").status_code == 200
        assert client.get(f"/api/quotes/{quote['id']}").status_code == 404


class TestPlanEdits:
    """Test cascading edits over HTTP"""

    def test_change_rate_card(self, client, quote):
        response = client.put(f"/api/quotes/{quote['id']}/rate-card", json={'rateCard': 'Labatt'})
        assert response.status_code == 200
        designer = response.get_json()['phaseData']['Planning'][0]['departments'][0]['roles'][0]
        assert designer['rate'] == 130
        assert designer['totalDollars'] == 80 * 130

    def test_change_rate_card_unknown(self, client, quote):
        response = client.put(f"/api/quotes/{quote['id']}/rate-card", json={'rateCard': 'Mystery'})
        assert response.status_code == 400

    def test_stage_duration_cascade(self, client, quote):
        response = client.put(
            f"/api/quotes/{quote['id']}/phases/Planning/stages/stage-2/duration", json={'duration': 1}
        )
        assert response.status_code == 200
        role = response.get_json()['phaseData']['Planning'][1]['departments'][0]['roles'][0]
        assert role['weeks'] == 1
        assert role['hours'] == 40

    def test_stage_duration_validation(self, client, quote):
        response = client.put(
            f"/api/quotes/{quote['id']}/phases/Planning/stages/stage-2/duration", json={'duration': 60}
        )
        assert response.status_code == 400

    def test_stage_duration_unknown_stage(self, client, quote):
        response = client.put(
            f"/api/quotes/{quote['id']}/phases/Planning/stages/missing/duration", json={'duration': 2}
        )
        assert response.status_code == 404

    def test_planning_stage_limit(self, client, quote):
        for _ in range(3):
            assert client.post(f"/api/quotes/{quote['id']}/phases/Planning/stages", json={}).status_code == 201
        response = client.post(f"/api/quotes/{quote['id']}/phases/Planning/stages", json={})
        assert response.status_code == 422
        assert response.get_json()['error']['type'] == 'BusinessLogicError'

    def test_add_department_and_role(self, client, quote):
        response = client.post(f"/api/quotes/{quote['id']}/phases/Planning/departments", json={'name': 'Accounts'})
        assert response.status_code == 201

        response = client.post(f"/api/quotes/{quote['id']}/phases/Planning/stages/stage-1/departments/Accounts/roles")
        assert response.status_code == 201
        role = response.get_json()['role']
        assert role['weeks'] == 2
        assert role['allocation'] == 100

        response = client.put(
            f"/api/quotes/{quote['id']}/phases/Planning/stages/stage-1/departments/Accounts/roles/{role['id']}",
            json={'name': 'Account Manager', 'allocation': 40}
        )
        assert response.status_code == 200
        accounts = response.get_json()['phaseData']['Planning'][0]['departments'][1]
        assert accounts['roles'][0]['rate'] == 165
        assert accounts['roles'][0]['hours'] == 32

    def test_rejected_role_edit_stores_nothing(self, client, quote):
        response = client.put(
            f"/api/quotes/{quote['id']}/phases/Planning/stages/stage-1/departments/Design/roles/r1",
            json={'name': 'Sr Designer', 'allocation': 33}
        )
        assert response.status_code == 400

        stored = client.get(f"/api/quotes/{quote['id']}").get_json()
        role = stored['phaseData']['Planning'][0]['departments'][0]['roles'][0]
        assert role['name'] == 'Designer'
        assert role['allocation'] == 100
        assert stored['lastModified'] == quote['lastModified']

    def test_role_update_requires_fields(self, client, quote):
        response = client.put(
            f"/api/quotes/{quote['id']}/phases/Planning/stages/stage-1/departments/Design/roles/r1",
            json={'rate': 10}
        )
        assert response.status_code == 400

    def test_assignment(self, client, quote):
        response = client.put(
            f"/api/quotes/{quote['id']}/phases/Planning/departments/Design/assignment",
            json={'assignedTo': 'sam@example.com', 'assignedName': 'Sam Lee'}
        )
        assert response.status_code == 200
        stages = response.get_json()['phaseData']['Planning']
        assert all(stage['departments'][0]['assignedName'] == 'Sam Lee' for stage in stages)


class TestPlanStructure:
    """Test stage, department and role structure endpoints"""

    def test_rename_stage(self, client, quote):
        url = f"/api/quotes/{quote['id']}/phases/Planning/stages/stage-2"
        response = client.put(url, json={'name': 'Refined Concepts'})
        assert response.status_code == 200
        assert response.get_json()['phaseData']['Planning'][1]['name'] == 'Refined Concepts'
        assert client.put(url, json={}).status_code == 400

    def test_delete_stage(self, client, quote):
        url = f"/api/quotes/{quote['id']}/phases/Planning/stages/stage-2"
        response = client.delete(url)
        assert response.status_code == 200
        data = response.get_json()
        assert [stage['id'] for stage in data['phaseData']['Planning']] == ['stage-1']
        assert data['departmentBreakdown']['Design'] == 12000
        assert client.delete(url).status_code == 404

    def test_add_department_to_phase_without_stages(self, client, quote):
        response = client.post(
            f"/api/quotes/{quote['id']}/phases/Post Production/Wrap/departments", json={'name': 'Design'}
        )
        assert response.status_code == 422
        response = client.post(f"/api/quotes/{quote['id']}/phases/Lunch/departments", json={'name': 'Design'})
        assert response.status_code == 400

    def test_add_department_twice(self, client, quote):
        response = client.post(f"/api/quotes/{quote['id']}/phases/Planning/departments", json={'name': 'Design'})
        assert response.status_code == 409

    def test_department_output_and_removal(self, client, quote):
        response = client.put(
            f"/api/quotes/{quote['id']}/phases/Planning/stages/stage-1/departments/Design/output",
            json={'output': 'Key visuals'}
        )
        assert response.status_code == 200
        assert response.get_json()['phaseData']['Planning'][0]['departments'][0]['output'] == 'Key visuals'

        response = client.delete(f"/api/quotes/{quote['id']}/phases/Production/Execution/departments/Creative")
        assert response.status_code == 200
        data = response.get_json()
        assert data['phaseData']['Production/Execution'][0]['departments'] == []
        assert 'Creative' not in data['departmentBreakdown']

    def test_delete_role(self, client, quote):
        response = client.delete(
            f"/api/quotes/{quote['id']}/phases/Planning/stages/stage-1/departments/Design/roles/r1"
        )
        assert response.status_code == 200
        assert response.get_json()['phaseData']['Planning'][0]['departments'][0]['roles'] == []

    def test_department_statuses(self, client, quote):
        client.put(
            f"/api/quotes/{quote['id']}/phases/Planning/departments/Design/assignment",
            json={'assignedTo': 'sam@example.com', 'assignedName': 'Sam Lee'}
        )
        data = client.get(f"/api/quotes/{quote['id']}/phases/Planning/departments").get_json()
        assert data['departments']['Design'] == {
            'assignedTo': 'sam@example.com', 'assignedName': 'Sam Lee', 'status': 'completed'
        }


class TestReporting:
    """Test totals and warnings endpoints"""

    def test_production_costs_in_totals(self, client, quote_payload):
        quote_payload['project']['phaseSettings'] = {'Production/Execution': {'includeProductionCosts': True}}
        quote_payload['productionCostData'] = {
            'Production/Execution': {'Printing': {
                'standardItems': [{'id': 'i1', 'item': 'Posters', 'totalCost': 500}],
                'mediaItems': [{'id': 'm1', 'totalCost': 1200}],
                'fieldStaffItems': [{'id': 'f1', 'totalCost': 300}],
            }},
            'Planning': {'Printing': {'standardItems': [{'id': 'i2', 'totalCost': 999}]}},
        }
        created = client.post('/api/quotes', json=quote_payload).get_json()
        assert created['totalRevenue'] == pytest.approx(36800 + 552 + 2000)

        data = client.get(f"/api/quotes/{created['id']}/totals").get_json()
        assert data['production_costs'] == {'Production/Execution': 2000}
        assert data['quote_total'] == pytest.approx(36800 + 552 + 2000)

    def test_production_costs_must_be_object(self, client, quote_payload):
        quote_payload['productionCostData'] = ['not', 'an', 'object']
        assert client.post('/api/quotes', json=quote_payload).status_code == 400

    def test_totals(self, client, quote):
        data = client.get(f"/api/quotes/{quote['id']}/totals").get_json()
        assert data['grand_total_dollars'] == 36800
        assert data['resourcing_fees']['designFee'] == pytest.approx(450)
        assert data['resourcing_fees']['creativeFee'] == pytest.approx(102)
        assert data['displayed_phase_totals']['Planning']['dollars'] == pytest.approx(30000 + 552)
        assert data['grand_total_with_fees'] == pytest.approx(36800 + 552)

    def test_warnings(self, client, quote):
        assert client.get(f"/api/quotes/{quote['id']}/warnings").get_json()['warnings'] == []


class TestResources:
    """Test resource schedule endpoints"""

    def test_derive_and_edit(self, client, quote):
        response = client.post(f"/api/quotes/{quote['id']}/resources/derive")
        assert response.status_code == 200
        assignments = response.get_json()['resourceAssignments']
        designer = assignments['Planning']['Design'][0]
        assert designer['totalWeeks'] == 5
        assert designer['totalHours'] == 200
        assert designer['totalDollars'] == 30000
        assert designer['endDate'] == '2025-01-15'

        response = client.put(
            f"/api/quotes/{quote['id']}/resources/Planning/Design/{designer['id']}",
            json={'assignee': 'Alex', 'endDate': '2025-01-08'}
        )
        assert response.status_code == 200
        assert response.get_json()['totalWeeks'] == 1

        # a second derive keeps the manual edit
        again = client.post(f"/api/quotes/{quote['id']}/resources/derive").get_json()['resourceAssignments']
        assert again['Planning']['Design'][0]['assignee'] == 'Alex'

        stored = client.get(f"/api/quotes/{quote['id']}/resources").get_json()['resourceAssignments']
        assert stored == again

    def test_add_and_remove_resource(self, client, quote):
        response = client.post(f"/api/quotes/{quote['id']}/resources/Planning/Studio")
        assert response.status_code == 201
        resource = response.get_json()
        assert resource['allocation'] == 25
        assert resource['totalWeeks'] == 2

        response = client.delete(f"/api/quotes/{quote['id']}/resources/Planning/Studio/{resource['id']}")
        assert response.status_code == 200

    def test_update_unknown_resource(self, client, quote):
        response = client.put(f"/api/quotes/{quote['id']}/resources/Planning/Design/missing", json={'assignee': 'A'})
        assert response.status_code == 404

    def test_resource_load(self, client, quote):
        client.post(f"/api/quotes/{quote['id']}/resources/derive")
        data = client.get(f"/api/quotes/{quote['id']}/resources/load").get_json()
        assert data['months'] == ['2025-01']
        assert 'Unassigned' in data['assignees']


def wait_for_autosave(app, quote_id, timeout=3.0):
    """Block until the session's latest version has been written by its timers"""
    session = app.extensions['quote_sessions'].get(quote_id)
    deadline = time.time() + timeout
    while session.autosave.last_written_version < session.snapshot.version and time.time() < deadline:
        time.sleep(0.01)
    return session


class TestEditSessions:
    """Test autosaving edit sessions against the SQL storage table"""

    def test_timer_writes_session_edit(self, app, client, quote):
        response = client.post(f"/api/quotes/{quote['id']}/session")
        assert response.status_code == 201

        response = client.put(
            f"/api/quotes/{quote['id']}/session/phases/Planning/stages/stage-1/duration", json={'duration': 4}
        )
        assert response.status_code == 200
        version = response.get_json()['version']
        assert response.get_json()['quote']['phaseData']['Planning'][0]['departments'][0]['roles'][0]['weeks'] == 4

        session = wait_for_autosave(app, quote['id'])
        assert session.autosave.last_written_version >= version
        assert session.autosave.last_error is None

        # the save ran on a timer thread with its own session
        db.session.expire_all()
        stored = client.get(f"/api/quotes/{quote['id']}").get_json()
        assert stored['phaseData']['Planning'][0]['duration'] == 4
        assert stored['phaseData']['Planning'][0]['departments'][0]['roles'][0]['weeks'] == 4

        assert client.delete(f"/api/quotes/{quote['id']}/session").status_code == 200
        assert client.get(f"/api/quotes/{quote['id']}/session").status_code == 404

    def test_session_rate_card_change(self, app, client, quote):
        client.post(f"/api/quotes/{quote['id']}/session")
        response = client.put(f"/api/quotes/{quote['id']}/session/rate-card", json={'rateCard': 'Blended'})
        assert response.status_code == 200
        assert response.get_json()['quote']['project']['rateCard'] == 'Blended'

        wait_for_autosave(app, quote['id'])
        data = client.get(f"/api/quotes/{quote['id']}/session").get_json()
        assert data['saved_version'] == data['version']

        closed = client.delete(f"/api/quotes/{quote['id']}/session").get_json()
        assert closed['project']['rateCard'] == 'Blended'

    def test_reopen_returns_open_session(self, client, quote):
        first = client.post(f"/api/quotes/{quote['id']}/session").get_json()
        second = client.post(f"/api/quotes/{quote['id']}/session").get_json()
        assert first['version'] == second['version']
        assert client.get('/api/health').get_json()['open_edit_sessions'] == 1

    def test_session_validation(self, client, quote):
        client.post(f"/api/quotes/{quote['id']}/session")
        response = client.put(f"/api/quotes/{quote['id']}/session/rate-card", json={'rateCard': 'Nope'})
        assert response.status_code == 400
        response = client.put(
            f"/api/quotes/{quote['id']}/session/phases/Planning/stages/stage-1/duration", json={'duration': 0}
        )
        assert response.status_code == 400

    def test_unknown_sessions(self, client, quote):
        assert client.get(f"/api/quotes/{quote['id']}/session").status_code == 404
        assert client.delete(f"/api/quotes/{quote['id']}/session").status_code == 404
        assert client.post('/api/quotes/missing/session').status_code == 404
