from flask import current_app


def init_db():
    """Initialize the database and create all tables"""
    # Import all models to ensure they are registered with SQLAlchemy
    from models import StorageItem
    from db import db
    db.create_all()
    current_app.logger.info("Database initialized successfully")


def sample_quote():
    """Project and plan for the demo quote"""
    project = {
        'projectName': 'Summer Shopper Program',
        'clientName': 'Sample Client',
        'brand': 'Sample Brand',
        'startDate': '2025-05-05',
        'endDate': '2025-08-29',
        'rateCard': 'Standard',
        'currency': 'CAD',
        'phases': ['Planning', 'Production/Execution', 'Post Production/Wrap'],
    }

    def role(role_id, name, weeks, allocation):
        return {'id': role_id, 'name': name, 'weeks': weeks, 'allocation': allocation}

    def department(dept_id, name, roles, output=''):
        return {'id': dept_id, 'name': name, 'output': output, 'status': 'unassigned', 'roles': roles}

    phase_data = {
        'Planning': [
            {'id': 'plan-1', 'phase': 'Planning', 'name': 'Strategic Check In', 'duration': 2, 'departments': [
                department('plan-1-accounts', 'Accounts', [role('r1', 'Account Director', 2, 20)]),
                department('plan-1-strategy', 'Strategy', [role('r2', 'Strategist', 2, 60)], 'Strategy deck'),
            ]},
            {'id': 'plan-2', 'phase': 'Planning', 'name': 'Creative Tissue', 'duration': 3, 'departments': [
                department('plan-2-creative', 'Creative', [
                    role('r3', 'Creative Director', 3, 20),
                    role('r4', 'Creative', 3, 100),
                ], 'Tissue session'),
                department('plan-2-design', 'Design', [role('r5', 'Designer', 3, 60)]),
            ]},
        ],
        'Production/Execution': [
            {'id': 'prod-1', 'phase': 'Production/Execution', 'name': 'In Field Execution', 'duration': 6,
             'departments': [
                 department('prod-1-studio', 'Studio', [role('r6', 'Producer', 6, 40)]),
                 department('prod-1-design', 'Design', [role('r7', 'Designer', 4, 80)], 'Shopper kit'),
             ]},
        ],
        'Post Production/Wrap': [
            {'id': 'post-1', 'phase': 'Post Production/Wrap', 'name': 'Reporting', 'duration': 2, 'departments': [
                department('post-1-accounts', 'Accounts', [role('r8', 'Account Manager', 2, 40)], 'Wrap report'),
            ]},
        ],
    }
    return project, phase_data


def seed_database():
    """Seed the storage table with a demo quote for development"""
    from quotes import QuoteService
    from storage import SqlStorageAdapter

    service = QuoteService(
        SqlStorageAdapter(current_app.config['STORAGE_OWNER']),
        default_rate_card=current_app.config['DEFAULT_RATE_CARD'],
        default_currency=current_app.config['DEFAULT_CURRENCY']
    )

    # Check if data already exists
    if service.list_quotes():
        current_app.logger.info("Database already seeded")
        return

    project, phase_data = sample_quote()
    quote = service.create_quote(project, phase_data)
    current_app.logger.info(f"Database seeded with sample quote {quote['id']}")
