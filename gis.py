import io
import os
import logging
import zipfile
import xml.etree.ElementTree as ET

import uploads

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_NAME_LENGTH = 100

# GeoJSON overlays shown by the map viewer, relative to MAPS_DIR.
GIS_LAYERS = [
    {'id': 'kp_districts', 'name': 'KP Districts', 'group': 'boundaries',
     'path': 'Shapefiles/KP_Districts.geojson', 'color': '#1e40af', 'weight': 2,
     'fill_opacity': 0.2, 'visible': True},
    {'id': 'bannu_district', 'name': 'Bannu District', 'group': 'boundaries',
     'path': 'Shapefiles/Bannu_District_elect_comm.geojson', 'color': '#dc2626', 'weight': 3,
     'fill_opacity': 0.3, 'visible': False},
    {'id': 'dik_district', 'name': 'D.I. Khan District', 'group': 'boundaries',
     'path': 'Shapefiles/DIKhanDistrict.geojson', 'color': '#16a34a', 'weight': 3,
     'fill_opacity': 0.3, 'visible': False},
    {'id': 'roads', 'name': 'Roads', 'group': 'infrastructure',
     'path': 'Shapefiles/hotosm_pak_roads_lines_shp.geojson', 'color': '#6b7280', 'weight': 1,
     'fill_opacity': 0, 'visible': False},
    {'id': 'waterways', 'name': 'Waterways', 'group': 'infrastructure',
     'path': 'Shapefiles/hotosm_pak_waterways_lines_shp.geojson', 'color': '#2563eb', 'weight': 2,
     'fill_opacity': 0, 'visible': False},
    {'id': 'paharpur_boundary', 'name': 'Paharpur NC Boundary', 'group': 'paharpur',
     'path': 'DIK/Paharpur/Paharpur_NC_Boundary_WGS84.json', 'color': '#0b4d2b', 'weight': 3,
     'fill_opacity': 0.1, 'visible': True},
    {'id': 'paharpur_sewerage', 'name': 'Paharpur NC Sewerage', 'group': 'paharpur',
     'path': 'DIK/Paharpur/Paharpur_NC_Sw_WGS84.json', 'color': '#8b5cf6', 'weight': 2,
     'fill_opacity': 0, 'visible': True},
    {'id': 'paharpur_water', 'name': 'Paharpur NC Water Supply', 'group': 'paharpur',
     'path': 'DIK/Paharpur/Paharpur_NC_Water_WGS84.json', 'color': '#0ea5e9', 'weight': 2,
     'fill_opacity': 0, 'visible': True},
    {'id': 'paharpur_points', 'name': 'Paharpur Facilities', 'group': 'paharpur',
     'path': 'DIK/Paharpur/Paharpur_Points_WGS84.json', 'color': '#ffc107', 'weight': 1,
     'fill_opacity': 0.8, 'visible': True},
]


class KMLError(ValueError):
    pass


def layer_catalogue(maps_dir):
    layers = []
    for layer in GIS_LAYERS:
        entry = dict(layer)
        entry['url'] = '/maps/' + layer['path']
        entry['available'] = os.path.isfile(os.path.join(maps_dir, *layer['path'].split('/')))
        layers.append(entry)
    return layers


def kml_from_kmz(data, max_size=None):
    """Return the first .kml document inside a KMZ archive, refusing entries over ``max_size`` bytes."""
    if max_size is None:
        max_size = uploads.MAX_KML_SIZE
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            for info in archive.infolist():
                if info.filename.lower().endswith('.kml'):
                    if info.file_size > max_size:
                        raise KMLError(f'KML inside KMZ exceeds {max_size // (1024 * 1024)}MB limit')
                    return archive.read(info)
    except zipfile.BadZipFile as e:
        raise KMLError(f'Invalid KMZ archive: {e}')
    raise KMLError('No KML file found in KMZ archive')


def _local_name(tag):
    return tag.rsplit('}', 1)[-1] if isinstance(tag, str) else ''


def extract_area_names(kml):
    """
    Collect candidate area names from a KML document.

    Names come from every ``<name>`` element, every ``SimpleData`` value and
    any ``<description>`` short enough to be a label rather than a popup
    body. Order of first appearance is kept and duplicates dropped.
    """
    if isinstance(kml, str):
        kml = kml.encode('utf-8')
    try:
        root = ET.fromstring(kml)
    except ET.ParseError as e:
        raise KMLError(f'Invalid KML: {e}')

    names = []
    seen = set()
    for element in root.iter():
        tag = _local_name(element.tag)
        text = (element.text or '').strip()
        if not text:
            continue
        if tag == 'description':
            if len(text) >= MAX_DESCRIPTION_NAME_LENGTH or '<' in text:
                continue
        elif tag not in ('name', 'SimpleData'):
            continue
        if text not in seen:
            seen.add(text)
            names.append(text)

    logger.info('Extracted %d area names from KML', len(names))
    return names


def read_area_names(filename, data, max_size=None):
    """Area names from an uploaded .kml or .kmz; returns (file_type, names)."""
    lower = (filename or '').lower()
    if lower.endswith('.kmz'):
        return 'KMZ', extract_area_names(kml_from_kmz(data, max_size))
    if lower.endswith('.kml'):
        return 'KML', extract_area_names(data)
    raise KMLError('Invalid file type. Please upload a KML or KMZ file.')
