import io
import os, sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
import pytest
from openpyxl import load_workbook
import uploads
from conftest import make_image, upload_path


def training(**overrides):
    data = {
        'training_title': 'O&M Refresher',
        'output': 'Output A',
        'event_type': 'Training',
        'district': 'Bannu',
        'location_tehsil': 'Bannu City',
        'training_facilitator_name': 'A. Khan',
        'start_date': '2024-05-01',
        'end_date': '2024-05-03',
        'tma_male': 4,
        'tma_female': '2',
        'phed_male': 1,
        'community_female': 3,
        'any_other_male': 'n/a',
    }
    data.update(overrides)
    return data


def add(client, headers, **overrides):
    res = client.post('/api/training/add', json=training(**overrides), headers=headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()['sn']


def test_add_computes_totals(admin):
    client, headers = admin
    sn = add(client, headers)

    record = client.get(f'/api/training?id={sn}').get_json()['trainingData']
    assert record['total_male'] == 5
    assert record['total_female'] == 5
    assert record['total_participants'] == 10
    assert record['total_days'] == 3
    assert record['any_other_male'] == 0
    assert record['data_compiler_name'] == 'Admin'


@pytest.mark.parametrize('start, end, days', [
    ('2024-05-03', '2024-05-01', 3),
    ('2024-05-01', '2024-05-01', 1),
    ('2024-05-01', '', 0),
])
def test_total_days(admin, start, end, days):
    client, headers = admin
    sn = add(client, headers, start_date=start, end_date=end)
    assert client.get(f'/api/training?id={sn}').get_json()['trainingData']['total_days'] == days


def test_filters_ignore_all_district(admin):
    client, headers = admin
    add(client, headers)
    add(client, headers, training_title='GIS basics', district='D.I. Khan', event_type='Workshop')

    assert len(client.get('/api/training?district=All').get_json()['trainingData']) == 2
    rows = client.get('/api/training?district=Bannu').get_json()['trainingData']
    assert [r['training_title'] for r in rows] == ['O&M Refresher']
    rows = client.get('/api/training?eventType=Workshop').get_json()['trainingData']
    assert [r['district'] for r in rows] == ['D.I. Khan']


def test_update_and_delete(admin):
    client, headers = admin
    sn = add(client, headers)

    res = client.put('/api/training/update', json=training(id=sn, tma_male=10), headers=headers)
    assert res.status_code == 200
    assert res.get_json()['totals']['total_male'] == 11

    res = client.put('/api/training/update', json=training(id=9999), headers=headers)
    assert res.status_code == 404

    assert client.delete('/api/training/delete', json={'id': sn}, headers=headers).status_code == 200
    assert client.get(f'/api/training?id={sn}').status_code == 404


def test_graphs_and_dashboard(admin):
    client, headers = admin
    add(client, headers)
    add(client, headers, training_title='Second', tma_male=0, tma_female=0, phed_male=0, community_female=1)
    add(client, headers, training_title='Third', district='D.I. Khan', event_type='Workshop')

    graph = client.get('/api/training/graphs').get_json()['graphData']
    bannu = next(g for g in graph if g['district'] == 'Bannu' and g['event_type'] == 'Training')
    assert bannu['total_participants'] == 11

    data = client.get('/api/training/dashboard').get_json()
    assert data['overall']['total_trainings'] == 3
    assert data['overall']['total_participants'] == 21
    assert data['overall']['total_days'] == 9
    assert {row['event_type'] for row in data['by_event_type']} == {'Training', 'Workshop'}
    assert {row['district'] for row in data['by_district']} == {'Bannu', 'D.I. Khan'}


def test_upload_report(admin):
    client, headers = admin
    res = client.post('/api/training/upload', headers=headers, content_type='multipart/form-data', data={
        'fileType': 'report', 'sn': '42', 'trainingTitle': 'O&M Refresher',
        'file': (io.BytesIO(b'%PDF-1.4 report'), 'completion.pdf'),
    })
    assert res.status_code == 200
    path = res.get_json()['filePath']
    assert path == '/uploads/Training/O_M_Refresher_42/ActivityCompletionReport.pdf'
    assert os.path.isfile(upload_path(path))


def test_upload_participant_list_rejects_wrong_type(admin):
    client, headers = admin
    res = client.post('/api/training/upload', headers=headers, content_type='multipart/form-data', data={
        'fileType': 'participantList', 'sn': '7',
        'file': (io.BytesIO(b'a,b'), 'list.csv'),
    })
    assert res.status_code == 400

    res = client.post('/api/training/upload', headers=headers, content_type='multipart/form-data', data={
        'fileType': 'participantList', 'sn': '7',
        'file': (io.BytesIO(b'doc'), 'attendance sheet.docx'),
    })
    assert res.get_json()['filePath'] == '/uploads/participantList/7_attendance_sheet.docx'


def test_upload_pictures_needs_five(admin):
    client, headers = admin
    four = [(make_image(), f'p{i}.png') for i in range(4)]
    res = client.post('/api/training/upload', headers=headers, content_type='multipart/form-data',
                      data={'fileType': 'pictures', 'sn': '9', 'trainingTitle': 'Visit', 'files': four})
    assert res.status_code == 400

    five = [(make_image(), f'p{i}.png') for i in range(5)]
    res = client.post('/api/training/upload', headers=headers, content_type='multipart/form-data',
                      data={'fileType': 'pictures', 'sn': '9', 'trainingTitle': 'Visit', 'files': five})
    assert res.status_code == 200
    data = res.get_json()
    assert len(data['uploadedFiles']) == 5
    assert data['uploadedFiles'][0] == '/uploads/Training/picture/9_Visit/9_Visit_1.png'
    assert data['filePath'] == ','.join(data['uploadedFiles'])


def test_upload_unknown_type(admin):
    client, headers = admin
    res = client.post('/api/training/upload', headers=headers, content_type='multipart/form-data',
                      data={'fileType': 'video'})
    assert res.status_code == 400


def test_export_xlsx(admin):
    client, headers = admin
    add(client, headers)

    res = client.get('/api/training/export')
    assert res.status_code == 200
    wb = load_workbook(io.BytesIO(res.data))
    ws = wb['Training Data']
    assert ws['A1'].value == 'SN'
    assert ws['B1'].value == 'Training Title'
    assert ws['B2'].value == 'O&M Refresher'


def test_upload_size_limit(admin, monkeypatch):
    client, headers = admin
    monkeypatch.setattr(uploads, 'MAX_FILE_SIZE', 8)
    res = client.post('/api/training/upload', headers=headers, content_type='multipart/form-data', data={
        'fileType': 'report', 'sn': '42', 'trainingTitle': 'O&M Refresher',
        'file': (io.BytesIO(b'%PDF-1.4 report'), 'completion.pdf'),
    })
    assert res.status_code == 400
    assert 'exceeds' in res.get_json()['message']
    assert not os.path.exists(upload_path('/uploads/Training/O_M_Refresher_42/ActivityCompletionReport.pdf'))
