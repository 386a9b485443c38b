import json
import sqlite3

import pytest

from inspection_sections import create_app

SCALE_TEMPLATE = [
    {
        'section': 'exterior',
        'title': 'Exterior',
        'fields': [
            {'id': 'date', 'question': 'Date', 'type': 'date'},
            {'id': 'inspector', 'question': 'Inspector', 'type': 'text'},
            {'id': 'paint', 'question': 'Paint condition', 'type': 'status',
             'options': ['PASS', 'FAIL'], 'image_required': True},
            {'id': 'frame', 'question': 'Frame', 'type': 'status', 'options': ['PASS', 'FAIL']},
        ],
    },
    {'title': 'Decorative heading without fields'},
    {
        'section': 'jbox',
        'title': 'Junction Box',
        'fields': [
            {'id': 'seal', 'question': 'Seal intact', 'type': 'status',
             'options': ['PASS', 'FAIL'], 'text_required': True},
            {'id': 'cable', 'question': 'Cable', 'type': 'status', 'options': ['PASS', 'FAIL']},
        ],
    },
]

FOUR_SECTION_TEMPLATE = [
    {'section': key, 'title': key.title(),
     'fields': [{'id': f'{key}_check', 'question': 'Check', 'type': 'status'}]}
    for key in ('alpha', 'beta', 'gamma', 'delta')
]

LOOSE_TEMPLATE = [
    {'section': 7, 'title': 'Numbered', 'fields': [{'id': 'seal', 'question': 12}]},
    {
        'section': 'gauge',
        'title': 'Gauge',
        'fields': [
            {'id': 'needle', 'question': {'en': 'Needle', 'mn': 'Зүү'}, 'options': 'PASS,FAIL'},
        ],
    },
]

ORG = 'org-1'
OWNER = 'user-1'


def seed(db_path, rows):
    conn = sqlite3.connect(db_path)
    conn.executemany(
        "INSERT INTO inspection_template (id, name, type, questions) VALUES (?, ?, ?, ?)",
        [
            ('tpl-scale', 'Scale inspection', 'scale', json.dumps(SCALE_TEMPLATE)),
            ('tpl-four', 'Four sections', 'generic', json.dumps(FOUR_SECTION_TEMPLATE)),
            ('tpl-loose', 'Loose', 'generic', json.dumps(LOOSE_TEMPLATE)),
            ('tpl-corrupt', 'Corrupt', 'generic', json.dumps({'not': 'a list'})),
        ],
    )
    conn.executemany("""
        INSERT INTO inspection (id, template_id, org_id, assigned_to, created_by, title, status, deleted_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    """, rows)
    conn.commit()
    conn.close()


@pytest.fixture
def app(tmp_path):
    db_path = str(tmp_path / 'inspections.db')
    app = create_app({
        'TESTING': True,
        'DATABASE_PATH': db_path,
        'TRUST_IDENTITY_HEADERS': True,
        'LOG_LEVEL': 'DEBUG',
    })
    seed(db_path, [
        ('insp-1', 'tpl-scale', ORG, None, OWNER, 'Scale A', 'DRAFT', None),
        ('insp-4', 'tpl-four', ORG, None, OWNER, 'Four', 'DRAFT', None),
        ('insp-free', None, ORG, None, OWNER, 'No template', 'DRAFT', None),
        ('insp-assigned', 'tpl-scale', 'org-other', 'user-9', 'user-8', 'Assigned', 'DRAFT', None),
        ('insp-approved', 'tpl-scale', ORG, None, OWNER, 'Approved', 'APPROVED', None),
        ('insp-deleted', 'tpl-scale', ORG, None, OWNER, 'Deleted', 'DRAFT', '2024-01-01T00:00:00'),
        ('insp-missing-tpl', 'tpl-gone', ORG, None, OWNER, 'Broken', 'DRAFT', None),
        ('insp-loose', 'tpl-loose', ORG, None, OWNER, 'Loose', 'DRAFT', None),
        ('insp-corrupt', 'tpl-corrupt', ORG, None, OWNER, 'Corrupt', 'DRAFT', None),
    ])
    return app


@pytest.fixture
def db(app):
    """Direct connection for asserting on stored rows."""
    conn = sqlite3.connect(app.config['DATABASE_PATH'])
    conn.row_factory = sqlite3.Row
    yield conn
    conn.close()


class ApiClient:
    """Test client that sends gateway identity headers."""

    def __init__(self, client, user_id=OWNER, org_id=ORG):
        self.client = client
        self.headers = {'X-User-Id': user_id}
        if org_id:
            self.headers['X-Org-Id'] = org_id

    def get(self, url):
        return self.client.get(url, headers=self.headers)

    def post(self, url, json=None):
        return self.client.post(url, json=json, headers=self.headers)


@pytest.fixture
def client(app):
    return ApiClient(app.test_client())


@pytest.fixture
def stranger(app):
    return ApiClient(app.test_client(), user_id='user-x', org_id='org-x')


@pytest.fixture
def anonymous(app):
    return app.test_client()
