import io
import os, sys
import zipfile
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
import pytest
import gis
import uploads
from conftest import signed_in, upload_path

KML = b"""<?xml version="1.0" encoding="UTF-8"?>
<kml xmlns="http://www.opengis.net/kml/2.2">
  <Document>
    <name>Paharpur</name>
    <Placemark>
      <name>Village Council 1</name>
      <description>Ward 4</description>
      <ExtendedData>
        <SchemaData schemaUrl="#vc">
          <SimpleData name="AREA">Village Council 2</SimpleData>
          <SimpleData name="DUP">Paharpur</SimpleData>
        </SchemaData>
      </ExtendedData>
    </Placemark>
    <Placemark>
      <name>  </name>
      <description><![CDATA[<table><tr><td>popup</td></tr></table>]]></description>
    </Placemark>
  </Document>
</kml>
"""


def kmz(data=KML, entry='doc.kml'):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, 'w') as archive:
        archive.writestr(entry, data, compress_type=zipfile.ZIP_DEFLATED)
    return buf.getvalue()


def test_extract_area_names():
    assert gis.extract_area_names(KML) == ['Paharpur', 'Village Council 1', 'Ward 4', 'Village Council 2']


def test_long_descriptions_are_ignored():
    long_text = 'x' * 120
    kml = f'<kml><Placemark><name>A</name><description>{long_text}</description></Placemark></kml>'
    assert gis.extract_area_names(kml) == ['A']


def test_read_area_names_from_kmz():
    assert gis.read_area_names('areas.KMZ', kmz()) == ('KMZ', gis.extract_area_names(KML))
    with pytest.raises(gis.KMLError):
        gis.read_area_names('areas.kmz', kmz(entry='readme.txt'))
    with pytest.raises(gis.KMLError):
        gis.read_area_names('areas.kmz', b'not a zip')
    with pytest.raises(gis.KMLError):
        gis.read_area_names('areas.shp', KML)
    with pytest.raises(gis.KMLError):
        gis.read_area_names('broken.kml', b'<kml><name>')


def add_map(client, headers, area_name, district='D.I. Khan'):
    res = client.post('/api/gis-maps', headers=headers, json={
        'area_name': area_name, 'map_type': 'Boundary', 'file_name': f'{area_name}.png', 'district': district,
    })
    assert res.status_code == 201


def test_delete_maps_by_kml(admin):
    client, headers = admin
    for name in ('Village Council 1', 'Village Council 2', 'Kulachi'):
        add_map(client, headers, name)

    res = client.post('/api/gis-maps/delete-by-kml', headers=headers, content_type='multipart/form-data',
                      data={'kmlFile': (io.BytesIO(kmz()), 'areas.kmz')})
    assert res.status_code == 200
    data = res.get_json()
    assert data['deletedCount'] == 2
    assert data['fileType'] == 'KMZ'
    assert 'Village Council 2' in data['areaNamesFromKML']
    assert sorted(m['area_name'] for m in data['matchingMaps']) == ['Village Council 1', 'Village Council 2']

    remaining = client.get('/api/gis-maps').get_json()['maps']
    assert [m['area_name'] for m in remaining] == ['Kulachi']


def test_delete_by_kml_rejects_empty_and_invalid(admin):
    client, headers = admin
    res = client.post('/api/gis-maps/delete-by-kml', headers=headers, content_type='multipart/form-data',
                      data={'kmlFile': (io.BytesIO(b'<kml><Document/></kml>'), 'empty.kml')})
    assert res.status_code == 400

    res = client.post('/api/gis-maps/delete-by-kml', headers=headers, content_type='multipart/form-data',
                      data={'kmlFile': (io.BytesIO(b'data'), 'areas.geojson')})
    assert res.status_code == 400

    res = client.post('/api/gis-maps/delete-by-kml', headers=headers, content_type='multipart/form-data', data={})
    assert res.status_code == 400


def test_delete_by_kml_needs_delete_access():
    client, headers = signed_in('mapper', access_edit=1)
    res = client.post('/api/gis-maps/delete-by-kml', headers=headers, content_type='multipart/form-data',
                      data={'kmlFile': (io.BytesIO(KML), 'areas.kml')})
    assert res.status_code == 403


def test_kml_file_lifecycle(admin):
    client, headers = admin
    res = client.post('/api/kml/upload', headers=headers, content_type='multipart/form-data', data={
        'name': 'Paharpur boundary', 'description': 'NC boundary', 'kmlFile': (io.BytesIO(KML), 'paharpur.kml'),
    })
    assert res.status_code == 201
    kml_id = res.get_json()['id']
    path = res.get_json()['filePath']
    assert path.startswith('/uploads/kml/') and path.endswith('.kml')
    assert os.path.isfile(upload_path(path))

    files = client.get('/api/kml/files').get_json()['files']
    assert [(f['name'], f['uploaded_by']) for f in files] == [('Paharpur boundary', 'Admin')]

    assert client.delete(f'/api/kml/delete/{kml_id}', headers=headers).status_code == 200
    assert not os.path.exists(upload_path(path))
    assert client.delete(f'/api/kml/delete/{kml_id}', headers=headers).status_code == 404


def test_kml_upload_validation(admin):
    client, headers = admin
    res = client.post('/api/kml/upload', headers=headers, content_type='multipart/form-data', data={
        'name': 'Wrong', 'kmlFile': (io.BytesIO(kmz()), 'areas.kmz'),
    })
    assert res.status_code == 400
    res = client.post('/api/kml/upload', headers=headers, content_type='multipart/form-data', data={
        'kmlFile': (io.BytesIO(KML), 'areas.kml'),
    })
    assert res.status_code == 400


def test_layer_catalogue(viewer):
    client, _ = viewer
    layers = client.get('/api/gis/layers').get_json()['layers']
    by_id = {layer['id']: layer for layer in layers}
    assert by_id['kp_districts']['url'] == '/maps/Shapefiles/KP_Districts.geojson'
    assert by_id['kp_districts']['available'] is False
    assert {layer['group'] for layer in layers} == {'boundaries', 'infrastructure', 'paharpur'}


BIG_KML = b'<kml><Document><name>Oversized</name><description>' + b'x' * 200000 + b'</description></Document></kml>'


def test_kmz_entry_size_is_checked_before_inflating():
    with pytest.raises(gis.KMLError):
        gis.kml_from_kmz(kmz(BIG_KML), max_size=4096)
    assert gis.kml_from_kmz(kmz(BIG_KML), max_size=len(BIG_KML)) == BIG_KML


def test_delete_by_kml_rejects_oversized_kmz(admin, monkeypatch):
    client, headers = admin
    add_map(client, headers, 'Oversized')
    archive = kmz(BIG_KML)
    monkeypatch.setattr(uploads, 'MAX_KML_SIZE', 4096)
    assert len(archive) < 4096

    res = client.post('/api/gis-maps/delete-by-kml', headers=headers, content_type='multipart/form-data',
                      data={'kmlFile': (io.BytesIO(archive), 'areas.kmz')})
    assert res.status_code == 400
    assert res.get_json()['success'] is False
    assert [m['area_name'] for m in client.get('/api/gis-maps').get_json()['maps']] == ['Oversized']

    res = client.post('/api/gis-maps/delete-by-kml', headers=headers, content_type='multipart/form-data',
                      data={'kmlFile': (io.BytesIO(BIG_KML), 'areas.kml')})
    assert res.status_code == 400


def test_kml_upload_size_limit(admin, monkeypatch):
    client, headers = admin
    monkeypatch.setattr(uploads, 'MAX_KML_SIZE', 16)
    res = client.post('/api/kml/upload', headers=headers, content_type='multipart/form-data', data={
        'name': 'Paharpur boundary', 'kmlFile': (io.BytesIO(KML), 'paharpur.kml'),
    })
    assert res.status_code == 400
    assert client.get('/api/kml/files').get_json()['files'] == []


def test_kml_upload_removes_file_when_save_fails(admin, monkeypatch):
    import app as server
    client, headers = admin
    kml_dir = os.path.join(uploads.UPLOAD_ROOT, 'kml')
    before = set(os.listdir(kml_dir)) if os.path.isdir(kml_dir) else set()

    def broken_insert(*args, **kwargs):
        raise RuntimeError('database unavailable')

    monkeypatch.setattr(server, 'insert_row', broken_insert)
    res = client.post('/api/kml/upload', headers=headers, content_type='multipart/form-data', data={
        'name': 'Paharpur boundary', 'kmlFile': (io.BytesIO(KML), 'paharpur.kml'),
    })
    assert res.status_code == 500
    assert res.get_json()['success'] is False
    after = set(os.listdir(kml_dir)) if os.path.isdir(kml_dir) else set()
    assert after == before
