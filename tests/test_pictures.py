import io
import os, sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from PIL import Image
import uploads
from conftest import make_image, upload_path


def upload(client, headers, count=2, **form):
    data = {'main_category': 'Water Supply', 'sub_category': 'Paharpur', 'group_name': 'Site visit',
            'event_date': '2024-04-10'}
    data.update(form)
    data['files'] = [(make_image(mode='RGBA'), f'shot{i}.png') for i in range(count)]
    return client.post('/api/pictures/upload', headers=headers, data=data, content_type='multipart/form-data')


def test_upload_optimizes_images(admin):
    client, headers = admin
    res = upload(client, headers)
    assert res.status_code == 201
    pictures = res.get_json()['pictures']
    assert len(pictures) == 2

    path = pictures[0]['file_path']
    assert path.startswith('/uploads/pictures/Water_Supply/Paharpur/')
    assert path.endswith('.jpg')
    with Image.open(upload_path(path)) as img:
        assert img.format == 'JPEG'
        assert img.mode == 'RGB'

    assert client.get(path).status_code == 200


def test_upload_rejects_non_images(admin):
    client, headers = admin
    res = client.post('/api/pictures/upload', headers=headers, content_type='multipart/form-data', data={
        'main_category': 'Water Supply', 'sub_category': 'Paharpur',
        'files': [(io.BytesIO(b'not really a png'), 'fake.png')],
    })
    assert res.status_code == 400

    res = client.post('/api/pictures/upload', headers=headers, content_type='multipart/form-data',
                      data={'main_category': 'Water Supply'})
    assert res.status_code == 400


def test_category_group_and_detail_views(admin):
    client, headers = admin
    upload(client, headers, count=3)
    upload(client, headers, count=1, sub_category='Bannu', group_name='')

    categories = client.get('/api/pictures').get_json()['categories']
    counts = {(c['main_category'], c['sub_category']): c['total_pictures'] for c in categories}
    assert counts == {('Water Supply', 'Bannu'): 1, ('Water Supply', 'Paharpur'): 3}
    assert all(c['preview_image'] for c in categories)

    groups = client.get('/api/pictures/groups').get_json()['groups']
    assert [(g['group_name'], g['picture_count']) for g in groups] == [('Site visit', 3)]
    assert groups[0]['thumbnail'].endswith('.jpg')

    details = client.get('/api/pictures/details', query_string={'groupName': 'Site visit', 'subCategory': 'Paharpur'}).get_json()['pictures']
    assert len(details) == 3

    latest = client.get('/api/pictures/dashboard?limit=2').get_json()['pictures']
    assert len(latest) == 2


def test_inactive_pictures_are_hidden(admin):
    client, headers = admin
    res = client.post('/api/pictures/manage', headers=headers, json={
        'main_category': 'Sanitation', 'sub_category': 'Bannu', 'file_name': 'a.jpg',
        'file_path': '/uploads/pictures/a.jpg', 'is_active': 0,
    })
    assert res.status_code == 201

    assert client.get('/api/pictures').get_json()['categories'] == []
    assert client.get('/api/pictures/manage').get_json()['total'] == 1


def test_manage_pagination_and_updates(admin):
    client, headers = admin
    for i in range(3):
        client.post('/api/pictures/manage', headers=headers, json={
            'main_category': 'Sanitation', 'sub_category': 'Bannu', 'file_name': f'{i}.jpg',
            'file_path': f'/uploads/pictures/{i}.jpg',
        })

    page = client.get('/api/pictures/manage?page=2&limit=2').get_json()
    assert page['total'] == 3
    assert page['page'] == 2
    assert page['limit'] == 2
    assert len(page['pictures']) == 1

    res = client.post('/api/pictures/manage', headers=headers, json={'main_category': 'Sanitation'})
    assert res.status_code == 400

    picture_id = page['pictures'][0]['picture_id']
    res = client.put('/api/pictures/manage', headers=headers, json={'picture_id': picture_id, 'group_name': 'Renamed'})
    assert res.status_code == 200
    assert client.put('/api/pictures/manage', headers=headers, json={'picture_id': 999, 'group_name': 'x'}).status_code == 404
    assert client.put('/api/pictures/manage', headers=headers, json={'group_name': 'x'}).status_code == 400


def test_delete_removes_file(admin):
    client, headers = admin
    picture = upload(client, headers, count=1).get_json()['pictures'][0]
    assert os.path.isfile(upload_path(picture['file_path']))

    res = client.delete(f"/api/pictures/manage?pictureID={picture['picture_id']}", headers=headers)
    assert res.status_code == 200
    assert not os.path.exists(upload_path(picture['file_path']))
    assert client.delete(f"/api/pictures/manage?pictureID={picture['picture_id']}", headers=headers).status_code == 404


def test_manage_is_admin_only():
    from conftest import signed_in
    client, headers = signed_in('editor', access_edit=1, access_delete=1)
    assert client.get('/api/pictures/manage').status_code == 403
    res = client.post('/api/pictures/upload', headers=headers, data={}, content_type='multipart/form-data')
    assert res.status_code == 403


def test_large_pictures_are_downscaled(admin):
    client, headers = admin
    res = client.post('/api/pictures/upload', headers=headers, content_type='multipart/form-data', data={
        'main_category': 'Water Supply', 'sub_category': 'Paharpur',
        'files': [(make_image(size=(3000, 2000)), 'wide.png')],
    })
    assert res.status_code == 201
    path = res.get_json()['pictures'][0]['file_path']
    with Image.open(upload_path(path)) as img:
        assert img.size == (1920, 1280)


def test_picture_upload_size_limit(admin, monkeypatch):
    client, headers = admin
    monkeypatch.setattr(uploads, 'MAX_FILE_SIZE', 8)
    res = upload(client, headers, count=1)
    assert res.status_code == 400
    assert client.get('/api/pictures/manage').get_json()['total'] == 0
