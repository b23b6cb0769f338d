# upkeep/estimates/photos.py
"""Storage of estimate photos under the configured upload folder."""

from __future__ import annotations

import logging
import os
import uuid

from flask import current_app
from werkzeug.utils import secure_filename

from upkeep.errors import ValidationError
from upkeep.models import PHOTO_TYPES, utcnow

URL_PREFIX = '/uploads/'
SUBDIR = 'project-estimates'


def _upload_root() -> str:
    return current_app.config['UPLOAD_FOLDER']


def normalize_photo(photo) -> dict:
    """Accept a bare URL or a photo dict and return the stored shape."""
    if isinstance(photo, str):
        photo = {'url': photo}
    if not isinstance(photo, dict) or not photo.get('url'):
        raise ValidationError('Each photo needs a url')
    ptype = photo.get('type') or 'site_visit'
    if ptype not in PHOTO_TYPES:
        raise ValidationError(f"Unknown photo type '{ptype}'")
    return {
        'url': photo['url'],
        'caption': (photo.get('caption') or '').strip(),
        'type': ptype,
        'uploadedAt': photo.get('uploadedAt') or utcnow().isoformat(),
    }


def save_uploads(files, caption: str = '', photo_type: str = 'site_visit') -> list:
    """Write uploaded image files to disk and return their photo records."""
    files = [f for f in files or [] if f and f.filename]
    if not files:
        return []
    limit = current_app.config.get('MAX_PHOTOS', 10)
    if len(files) > limit:
        raise ValidationError(f'At most {limit} photos can be uploaded at once')
    for f in files:
        if not (f.mimetype or '').startswith('image/'):
            raise ValidationError('Only image files are allowed')

    target_dir = os.path.join(_upload_root(), SUBDIR)
    os.makedirs(target_dir, exist_ok=True)
    saved = []
    for f in files:
        ext = os.path.splitext(secure_filename(f.filename))[1].lower()
        name = f"project-{uuid.uuid4().hex}{ext}"
        f.save(os.path.join(target_dir, name))
        saved.append(normalize_photo({
            'url': f"{URL_PREFIX}{SUBDIR}/{name}",
            'caption': caption,
            'type': photo_type or 'site_visit',
        }))
    logging.info("saved %s estimate photo(s) to %s", len(saved), target_dir)
    return saved


def photo_path(url: str) -> str | None:
    """Map a stored photo URL back to its file, if it lives in our folder."""
    if not url or not url.startswith(URL_PREFIX):
        return None
    root = os.path.abspath(_upload_root())
    path = os.path.abspath(os.path.join(root, url[len(URL_PREFIX):]))
    if os.path.commonpath([root, path]) != root:
        return None
    return path


def purge_photos(photos) -> int:
    removed = 0
    for photo in photos or []:
        url = photo.get('url') if isinstance(photo, dict) else photo
        path = photo_path(url)
        if path and os.path.exists(path):
            os.remove(path)
            removed += 1
    if removed:
        logging.info("removed %s estimate photo file(s)", removed)
    return removed
