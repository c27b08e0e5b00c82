"""
Folder ingestion for SiteSight
Finds site photos and builds photo records with capture metadata
"""

import logging
import mimetypes
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Union

from PIL import ExifTags, Image, UnidentifiedImageError

from ..models import PhotoRecord

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ('.jpg', '.jpeg', '.png', '.webp')
EXIF_DATE_FORMAT = '%Y:%m:%d %H:%M:%S'


def read_capture_time(photo_file: Path) -> Optional[int]:
    """
    Capture time from EXIF in epoch millis

    DateTimeOriginal is preferred over DateTimeDigitized and the IFD0
    DateTime. Unreadable images and missing tags yield None.
    """
    try:
        with Image.open(photo_file) as image:
            exif = image.getexif()
            exif_ifd = exif.get_ifd(ExifTags.IFD.Exif)
            candidates = [
                exif_ifd.get(ExifTags.Base.DateTimeOriginal),
                exif_ifd.get(ExifTags.Base.DateTimeDigitized),
                exif.get(ExifTags.Base.DateTime),
            ]
    except (OSError, UnidentifiedImageError) as e:
        logger.debug(f"No EXIF data in {photo_file}: {e}")
        return None

    for value in candidates:
        if not value:
            continue
        try:
            taken = datetime.strptime(str(value).strip('\x00 '), EXIF_DATE_FORMAT)
        except ValueError:
            continue
        return int(taken.timestamp() * 1000)
    return None


def find_photos(input_path: Union[str, Path], recursive: bool = False,
                extensions: Iterable[str] = IMAGE_EXTENSIONS) -> List[Path]:
    """
    Find all supported photos in a folder

    Args:
        input_path: Folder (or single file) to search
        recursive: Descend into sub-folders
        extensions: File suffixes to accept, case-insensitive

    Returns:
        Paths sorted by file name
    """
    input_path = Path(input_path)
    if not input_path.exists():
        raise ValueError(f"Input path does not exist: {input_path}")

    suffixes = {ext.lower() for ext in extensions}
    if input_path.is_file():
        candidates = [input_path]
    else:
        candidates = input_path.rglob('*') if recursive else input_path.iterdir()

    photo_files = sorted(
        (path for path in candidates if path.is_file() and path.suffix.lower() in suffixes),
        key=lambda path: (path.name, str(path)),
    )
    logger.info(f"Found {len(photo_files)} photos in {input_path}")
    return photo_files


def load_photo(photo_file: Path, root: Optional[Path] = None) -> PhotoRecord:
    """
    Build a pending record; the file path is the payload handle

    Args:
        photo_file: Photo to load
        root: Scan root; the record is named by its path relative to it so
            that equal file names in different sub-folders stay distinct

    Returns:
        PhotoRecord in pending state
    """
    photo_file = Path(photo_file)
    if root is not None:
        file_name = photo_file.relative_to(root).as_posix()
    else:
        file_name = photo_file.name
    stat = photo_file.stat()
    mime_type, _ = mimetypes.guess_type(photo_file.name)
    return PhotoRecord(
        file_name=file_name,
        payload=photo_file,
        captured_at=read_capture_time(photo_file),
        modified_at=int(stat.st_mtime * 1000),
        file_size=stat.st_size,
        mime_type=mime_type or 'image/jpeg',
    )


def scan_folder(input_path: Union[str, Path], recursive: bool = False) -> List[PhotoRecord]:
    """
    Photo records for every supported photo in a folder

    Args:
        input_path: Folder to scan
        recursive: Descend into sub-folders

    Returns:
        Pending photo records in file name order, named by their path
        relative to the folder
    """
    input_path = Path(input_path)
    root = input_path if input_path.is_dir() else input_path.parent
    return [load_photo(path, root) for path in find_photos(input_path, recursive)]
