import os, sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from conftest import signed_in


def incident(**overrides):
    data = {
        'incident_title': 'Road blockade',
        'category': 'Protest',
        'location_district': 'Bannu',
        'location_province': 'KP',
        'incident_date': '2024-03-01',
        'incident_summary': 'Main road blocked near the bazaar',
        'operational_impact': 'Site visits postponed',
        'recommended_actions': 'Avoid travel until cleared',
    }
    data.update(overrides)
    return data


def test_add_requires_all_fields(admin):
    client, headers = admin
    res = client.post('/api/security-updates/add', json=incident(incident_summary=''), headers=headers)
    assert res.status_code == 400
    assert res.get_json()['message'] == 'All required fields must be filled'


def test_add_and_fetch_single(admin):
    client, headers = admin
    res = client.post('/api/security-updates/add', json=incident(reference_number='SEC-001'), headers=headers)
    assert res.status_code == 201
    new_id = res.get_json()['id']

    data = client.get(f'/api/security-updates?id={new_id}').get_json()
    assert data['incident']['reference_number'] == 'SEC-001'
    assert data['incident']['reported_by'] == 'Admin'

    assert client.get('/api/security-updates?id=9999').get_json()['incident'] is None


def test_filters_search_and_order(admin):
    client, headers = admin
    client.post('/api/security-updates/add', json=incident(), headers=headers)
    client.post('/api/security-updates/add', json=incident(
        incident_title='Flood warning', category='Natural Hazard', location_district='D.I. Khan',
        incident_summary='River levels rising'), headers=headers)

    incidents = client.get('/api/security-updates').get_json()['incidents']
    assert [i['incident_title'] for i in incidents] == ['Flood warning', 'Road blockade']

    by_category = client.get('/api/security-updates?category=Protest').get_json()['incidents']
    assert [i['incident_title'] for i in by_category] == ['Road blockade']

    by_district = client.get('/api/security-updates?locationDistrict=D.I. Khan').get_json()['incidents']
    assert len(by_district) == 1

    searched = client.get('/api/security-updates?search=RIVER').get_json()['incidents']
    assert [i['incident_title'] for i in searched] == ['Flood warning']


def test_update_and_delete(admin):
    client, headers = admin
    new_id = client.post('/api/security-updates/add', json=incident(), headers=headers).get_json()['id']

    res = client.put('/api/security-updates/update', json=incident(), headers=headers)
    assert res.status_code == 400

    res = client.put('/api/security-updates/update', json=incident(id=new_id, comment='Cleared'), headers=headers)
    assert res.status_code == 200
    assert client.get(f'/api/security-updates?id={new_id}').get_json()['incident']['comment'] == 'Cleared'

    res = client.put('/api/security-updates/update', json=incident(id=9999), headers=headers)
    assert res.status_code == 404

    assert client.delete('/api/security-updates/delete', headers=headers).status_code == 400
    assert client.delete(f'/api/security-updates/delete?id={new_id}', headers=headers).status_code == 200
    assert client.delete(f'/api/security-updates/delete?id={new_id}', headers=headers).status_code == 404


def test_add_needs_add_access():
    client, headers = signed_in('reader', access_edit=1)
    res = client.post('/api/security-updates/add', json=incident(), headers=headers)
    assert res.status_code == 403


def test_export_csv(admin):
    client, headers = admin
    client.post('/api/security-updates/add', json=incident(), headers=headers)

    res = client.get('/api/security-updates/export')
    assert res.status_code == 200
    assert res.mimetype == 'text/csv'
    lines = res.data.decode().splitlines()
    assert lines[0].startswith('ID,Reference Number,Incident Title')
    assert 'Road blockade' in lines[1]


def test_search_matches_wildcards_literally(admin):
    client, headers = admin
    client.post('/api/security-updates/add', json=incident(incident_title='Fuel prices up 50%'), headers=headers)
    client.post('/api/security-updates/add', json=incident(), headers=headers)

    searched = client.get('/api/security-updates', query_string={'search': '%'}).get_json()['incidents']
    assert [i['incident_title'] for i in searched] == ['Fuel prices up 50%']
    assert client.get('/api/security-updates', query_string={'search': '_'}).get_json()['incidents'] == []
