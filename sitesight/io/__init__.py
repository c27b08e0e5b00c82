"""
I/O modules for SiteSight
"""

from .filesystem import find_photos, load_photo, read_capture_time, scan_folder

__all__ = ['find_photos', 'load_photo', 'read_capture_time', 'scan_folder']
