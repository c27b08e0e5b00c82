"""
Utility modules for SiteSight
"""

from .logging import PipelineStats, setup_console_logging, setup_file_logging

__all__ = ['PipelineStats', 'setup_console_logging', 'setup_file_logging']
