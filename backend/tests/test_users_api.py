from parcelops import get_db
from parcelops.models.audit import AuditLog
from tests.test_utils_seed import ensure_user
from tests.test_lifecycle_helpers import jwt_headers

USER_ADMIN_PERMS = [('users', 'read'), ('users', 'create'), ('users', 'update')]


def _admin_headers(app_instance, email='useradmin@example.com'):
    with app_instance.app_context():
        admin = ensure_user(email, role='admin')
        return admin, jwt_headers(admin.id, 'admin')


def test_permission_gate_on_user_routes(client, app_instance):
    with app_instance.app_context():
        reader = jwt_headers(901, 'dispatcher', [('users', 'read')])
        nobody = jwt_headers(902, 'agent', [('orders', 'read')])
    assert client.get('/iam/users', headers=nobody).status_code == 403
    resp = client.put('/iam/users/1/role', json={'role': 'agent'}, headers=reader)
    assert resp.status_code == 403
    assert resp.get_json()['error']['detail'] == 'Missing permission users:update'
    assert client.get('/iam/users', headers=reader).status_code == 200


def test_create_user_applies_role_defaults(client, app_instance):
    with app_instance.app_context():
        headers = jwt_headers(903, 'dispatcher', USER_ADMIN_PERMS)
    resp = client.post('/iam/users', json={'name': 'Wes', 'email': 'wes@example.com', 'password': 'pw', 'role': 'warehouse'}, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    body = resp.get_json()
    assert body['role'] == 'warehouse'
    assert ('inventory', 'update') in {(p['resource'], p['action']) for p in body['permissions']}
    bad_role = client.post('/iam/users', json={'name': 'X', 'email': 'x1@example.com', 'password': 'pw', 'role': 'pilot'}, headers=headers)
    assert bad_role.status_code == 400
    bad_perm = client.post('/iam/users', json={'name': 'X', 'email': 'x2@example.com', 'password': 'pw',
                                               'permissions': [{'resource': 'spaceships', 'action': 'read'}]}, headers=headers)
    assert bad_perm.status_code == 400


def test_role_change_keeps_permissions_unless_defaults_requested(client, app_instance):
    admin, headers = _admin_headers(app_instance)
    with app_instance.app_context():
        target = ensure_user('promote_me@example.com', role='agent')
    resp = client.put(f'/iam/users/{target.id}/role', json={'role': 'accounting'}, headers=headers)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['role'] == 'accounting'
    assert ('deliveries', 'read') in {(p['resource'], p['action']) for p in body['permissions']}

    resp = client.post(f'/iam/users/{target.id}/permissions/defaults', headers=headers)
    pairs = [(p['resource'], p['action']) for p in resp.get_json()['permissions']]
    assert ('deliveries', 'read') not in pairs
    assert ('invoices', 'read') in pairs

    with app_instance.app_context():
        log = get_db().query(AuditLog).filter_by(action='USER.ROLE.SET', entity_id=str(target.id)).one()
        assert log.meta['changes']['role'] == {'before': 'agent', 'after': 'accounting'}
        assert log.actor_user_id == admin.id
        assert log.role_snapshot == 'admin'


def test_replace_and_toggle_permissions(client, app_instance):
    _, headers = _admin_headers(app_instance)
    with app_instance.app_context():
        target = ensure_user('perm_edit@example.com', role='dispatcher')
    resp = client.put(f'/iam/users/{target.id}/permissions', json={'permissions': [
        {'resource': 'orders', 'action': 'read'},
        {'resource': 'orders', 'action': 'read'},
        {'resource': '*', 'action': 'export'},
    ]}, headers=headers)
    assert resp.status_code == 200
    assert [p['id'] for p in resp.get_json()['permissions']] == ['orders-read', '*-export']

    resp = client.post(f'/iam/users/{target.id}/permissions/toggle', json={'resource': 'orders', 'action': 'read'}, headers=headers)
    assert [p['id'] for p in resp.get_json()['permissions']] == ['*-export']
    resp = client.post(f'/iam/users/{target.id}/permissions/toggle', json={'resource': 'invoices', 'action': 'read'}, headers=headers)
    assert [p['id'] for p in resp.get_json()['permissions']] == ['*-export', 'invoices-read']
    assert resp.get_json()['permissions'][1]['name'] == 'View Invoices'

    bad = client.put(f'/iam/users/{target.id}/permissions', json={'permissions': 'orders:read'}, headers=headers)
    assert bad.status_code == 400


def test_status_toggle(client, app_instance):
    admin, headers = _admin_headers(app_instance)
    with app_instance.app_context():
        target = ensure_user('deactivate_me@example.com', role='agent')
    resp = client.put(f'/iam/users/{target.id}/status', json={'is_active': False}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()['is_active'] is False
    login = client.post('/iam/auth/login', json={'email': 'deactivate_me@example.com', 'password': 'pw'})
    assert login.status_code == 403
    assert client.put(f'/iam/users/{target.id}/status', json={'is_active': 'no'}, headers=headers).status_code == 400
    self_off = client.put(f'/iam/users/{admin.id}/status', json={'is_active': False}, headers=headers)
    assert self_off.status_code == 400


def test_update_profile_and_email_clash(client, app_instance):
    _, headers = _admin_headers(app_instance)
    with app_instance.app_context():
        target = ensure_user('rename_me@example.com')
        ensure_user('taken@example.com')
    resp = client.put(f'/iam/users/{target.id}', json={'name': 'Renamed', 'phone': '555-0100'}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()['name'] == 'Renamed'
    clash = client.put(f'/iam/users/{target.id}', json={'email': 'taken@example.com'}, headers=headers)
    assert clash.status_code == 400
    assert client.put('/iam/users/999999', json={'name': 'x'}, headers=headers).status_code == 404


def test_list_filters_and_stats(client, app_instance):
    _, headers = _admin_headers(app_instance)
    with app_instance.app_context():
        ensure_user('list_acc@example.com', role='accounting', name='Ledger Lee')
    resp = client.get('/iam/users?role=accounting&q=Ledger', headers=headers)
    assert resp.status_code == 200
    body = resp.get_json()
    assert [u['email'] for u in body['data']] == ['list_acc@example.com']
    assert body['pagination']['total'] == 1
    assert client.get('/iam/users?role=pilot', headers=headers).status_code == 400
    assert client.get('/iam/users?sort=-bogus', headers=headers).status_code == 400

    stats = client.get('/iam/users/stats', headers=headers).get_json()
    assert stats['total'] == stats['active'] + stats['inactive']
    assert stats['by_role']['accounting'] >= 1


def test_activity_and_reference_data(client, app_instance):
    admin, headers = _admin_headers(app_instance)
    with app_instance.app_context():
        target = ensure_user('activity_target@example.com', role='agent')
    client.put(f'/iam/users/{target.id}/role', json={'role': 'warehouse'}, headers=headers)
    activity = client.get(f'/iam/users/{target.id}/activity', headers=headers).get_json()
    assert activity['user_id'] == target.id
    assert activity['data'][0]['action'] == 'USER.ROLE.SET'

    roles = client.get('/iam/roles', headers=headers).get_json()['data']
    assert [r['role'] for r in roles] == ['admin', 'dispatcher', 'agent', 'warehouse', 'accounting', 'customer']
    perms = client.get('/iam/permissions', headers=headers).get_json()['data']
    row = next(p for p in perms if p['id'] == 'reports-export')
    assert row['description'] == 'Export system reports'


def test_get_user_conditional(client, app_instance):
    admin, headers = _admin_headers(app_instance)
    first = client.get(f'/iam/users/{admin.id}', headers=headers)
    assert first.status_code == 200
    etag = first.headers['ETag']
    second = client.get(f'/iam/users/{admin.id}', headers={**headers, 'If-None-Match': etag})
    assert second.status_code == 304
