"""
Environment checks for the native tools the pipeline relies on.
"""

import importlib
import logging
import shutil
import sys
from typing import Dict

import pytesseract

logger = logging.getLogger(__name__)

# import name -> distribution name
PYTHON_PACKAGES = {
    'flask': 'flask',
    'PIL': 'pillow',
    'cv2': 'opencv-python',
    'numpy': 'numpy',
    'pytesseract': 'pytesseract',
    'pyzbar': 'pyzbar',
    'qrcode': 'qrcode[pil]',
    'pdf2image': 'pdf2image',
    'sqlalchemy': 'sqlalchemy',
    'httpx': 'httpx',
}


def check_python_version() -> Dict:
    version = sys.version_info
    return {
        'ok': version >= (3, 8),
        'detail': f"Python {version.major}.{version.minor}.{version.micro}",
    }


def check_package(import_name: str) -> bool:
    try:
        importlib.import_module(import_name)
        return True
    except ImportError:
        return False


def check_python_packages() -> Dict:
    missing = [dist for name, dist in PYTHON_PACKAGES.items() if not check_package(name)]
    return {
        'ok': not missing,
        'detail': f"missing: {', '.join(missing)}" if missing else f"{len(PYTHON_PACKAGES)} packages installed",
    }


def check_zbar() -> Dict:
    """pyzbar needs the native zbar shared library"""
    try:
        from pyzbar import pyzbar  # noqa: F401
    except ImportError as e:
        return {'ok': False, 'detail': f"zbar library not found ({e})"}
    return {'ok': True, 'detail': 'zbar available'}


def check_poppler() -> Dict:
    """pdf2image shells out to poppler's pdftoppm"""
    path = shutil.which('pdftoppm')
    if path:
        return {'ok': True, 'detail': path}
    return {'ok': False, 'detail': 'pdftoppm not found - install poppler-utils for PDF support'}


def check_tesseract() -> Dict:
    """Only needed for the page-text fallback on PDFs"""
    try:
        version = pytesseract.get_tesseract_version()
    except (pytesseract.TesseractNotFoundError, EnvironmentError) as e:
        return {'ok': False, 'detail': f"Tesseract OCR not found ({e})"}
    return {'ok': True, 'detail': f"Tesseract OCR {version}"}


def run_checks() -> Dict[str, Dict]:
    checks = {
        'python_version': check_python_version(),
        'packages': check_python_packages(),
        'zbar': check_zbar(),
        'poppler': check_poppler(),
        'tesseract': check_tesseract(),
    }
    for name, result in checks.items():
        if not result['ok']:
            logger.warning(f"Environment check {name} failed: {result['detail']}")
    return checks
