import io
import os
import re
import time
import logging

from PIL import Image
from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
UPLOAD_ROOT = os.environ.get('UPLOAD_ROOT', os.path.join(BASE_DIR, 'uploads'))
UPLOAD_URL_PREFIX = '/uploads/'

MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
MAX_KML_SIZE = 50 * 1024 * 1024  # 50MB
MIN_TRAINING_PICTURES = 5

TRAINING_DOCUMENT_EXTENSIONS = {'pdf', 'doc', 'docx'}
IMAGE_EXTENSIONS = {'jpg', 'jpeg', 'png', 'gif', 'webp'}
DOCUMENT_EXTENSIONS = {'pdf', 'doc', 'docx', 'xls', 'xlsx', 'ppt', 'pptx', 'txt', 'zip', 'rar'}
REPORT_EXTENSIONS = {'pdf', 'doc', 'docx', 'xls', 'xlsx', 'ppt', 'pptx'}


class UploadError(ValueError):
    pass


def file_extension(filename):
    if not filename or '.' not in filename:
        return ''
    return filename.rsplit('.', 1)[1].lower()


def file_size(storage):
    stream = storage.stream
    position = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(position)
    return size


def timestamp_ms():
    return int(time.time() * 1000)


def sanitize_title(value, default='Training'):
    cleaned = re.sub(r'[^A-Za-z0-9]', '_', str(value or '').strip())
    return cleaned or default


def safe_segment(value, default='General'):
    return secure_filename(str(value or '')) or default


def check_file(storage, allowed_extensions, max_size=None, label='File'):
    """Validate extension and size of an uploaded file; returns its extension."""
    if max_size is None:
        max_size = MAX_FILE_SIZE
    if storage is None or not storage.filename:
        raise UploadError('No file provided')
    ext = file_extension(storage.filename)
    if ext not in allowed_extensions:
        allowed = ', '.join(sorted(allowed_extensions)).upper()
        raise UploadError(f'Invalid file type for {storage.filename}. Allowed: {allowed}')
    if file_size(storage) > max_size:
        raise UploadError(f'{label} {storage.filename} exceeds {max_size // (1024 * 1024)}MB limit')
    return ext


def absolute_path(relative_path):
    root = os.path.abspath(UPLOAD_ROOT)
    target = os.path.abspath(os.path.join(root, *relative_path.split('/')))
    if os.path.commonpath([root, target]) != root:
        raise UploadError('Invalid upload path')
    return target


def store(storage, relative_path):
    """Save an upload under UPLOAD_ROOT and return its public URL path."""
    target = absolute_path(relative_path)
    os.makedirs(os.path.dirname(target), exist_ok=True)
    storage.stream.seek(0)
    storage.save(target)
    logger.info('Stored upload %s', relative_path)
    return UPLOAD_URL_PREFIX + relative_path


def store_many(pairs):
    """Store (storage, relative_path) pairs; on failure remove whatever was already written."""
    stored = []
    try:
        for storage, relative_path in pairs:
            stored.append(store(storage, relative_path))
    except OSError:
        for path in stored:
            remove_upload(path)
        raise
    return stored


def store_bytes(data, relative_path):
    target = absolute_path(relative_path)
    os.makedirs(os.path.dirname(target), exist_ok=True)
    with open(target, 'wb') as fh:
        fh.write(data)
    logger.info('Stored upload %s', relative_path)
    return UPLOAD_URL_PREFIX + relative_path


def remove_upload(public_path):
    if not public_path or not public_path.startswith(UPLOAD_URL_PREFIX):
        return False
    try:
        target = absolute_path(public_path[len(UPLOAD_URL_PREFIX):])
        if os.path.isfile(target):
            os.remove(target)
            return True
    except (OSError, UploadError) as e:
        logger.warning('Could not remove %s: %s', public_path, e)
    return False


def optimize_image(image_file, max_width=1920, max_height=1920):
    """
    Validate and re-encode an uploaded picture.
    Flattens transparency onto white, shrinks to fit within the bounds and
    compresses as JPEG.
    Returns: BytesIO object with optimized image bytes
    """
    try:
        img = Image.open(image_file)
        img.load()
    except Exception as e:
        raise UploadError(f'Not a valid image: {e}')

    if img.mode in ('RGBA', 'LA', 'P'):
        img = img.convert('RGBA')
        background = Image.new('RGB', img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1])
        img = background
    elif img.mode != 'RGB':
        img = img.convert('RGB')

    img.thumbnail((max_width, max_height), Image.Resampling.LANCZOS)

    output = io.BytesIO()
    img.save(output, format='JPEG', quality=85, optimize=True)
    output.seek(0)
    return output
