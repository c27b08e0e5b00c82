"""
Logging utilities for SiteSight
Provides console/file logging setup and pipeline run statistics
"""

import logging
import sys
from typing import Optional, Dict, Any, List
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class PipelineStats:
    """Tracks per-run processing statistics"""

    def __init__(self):
        """Initialize processing statistics"""
        self.start_time = datetime.now()
        self.total = 0
        self.processed = 0
        self.success = 0
        self.failed = 0
        self.cached = 0
        self.errors: List[Dict[str, Any]] = []

    def set_total(self, total: int):
        """Set total number of photos in the run"""
        self.total = total

    def add_cached(self, count: int = 1):
        """Count photos whose analysis came from the result cache"""
        self.cached += count
        self.processed += count
        self.success += count

    def add_success(self, count: int = 1):
        self.processed += count
        self.success += count

    def add_failure(self, file_name: str, error: str):
        """
        Record a failed photo

        Args:
            file_name: Photo that could not be analyzed
            error: Short description of the failure
        """
        self.processed += 1
        self.failed += 1
        self.errors.append({
            'file': file_name,
            'error': error,
            'time': datetime.now()
        })

    def get_elapsed_time(self) -> float:
        """Get elapsed time in seconds"""
        return (datetime.now() - self.start_time).total_seconds()

    def get_summary(self) -> Dict[str, Any]:
        """Get processing summary"""
        elapsed = self.get_elapsed_time()

        return {
            'total': self.total,
            'processed': self.processed,
            'success': self.success,
            'failed': self.failed,
            'cached': self.cached,
            'success_rate': (self.success / self.processed * 100)
                            if self.processed > 0 else 0,
            'errors': len(self.errors),
            'elapsed_time': elapsed,
        }

    def print_summary(self):
        """Print processing summary to console"""
        summary = self.get_summary()

        print("\n" + "="*60)
        print("ANALYSIS SUMMARY")
        print("="*60)
        print(f"Total photos:     {summary['total']}")
        print(f"Processed:        {summary['processed']}")
        print(f"Succeeded:        {summary['success']} ({summary['success_rate']:.1f}%)")
        print(f"From cache:       {summary['cached']}")
        print(f"Failed:           {summary['failed']}")
        print(f"Elapsed time:     {summary['elapsed_time']:.1f}s")
        print("="*60)

        if self.errors:
            print("\nERRORS:")
            for error in self.errors[:10]:  # Show first 10 errors
                print(f"  - {error['file']}: {error['error']}")
            if len(self.errors) > 10:
                print(f"  ... and {len(self.errors) - 10} more errors")


def setup_console_logging(level: str = "INFO", color: bool = True,
                          fmt: str = DEFAULT_FORMAT):
    """
    Setup console logging with optional color support

    Args:
        level: Logging level
        color: Whether to use colored output
        fmt: Log record format for the plain formatter
    """
    # Create console handler
    console_handler = logging.StreamHandler(sys.stdout)

    # Create formatter
    if color and sys.stdout.isatty():
        # Use colored formatter if supported
        try:
            import colorlog
            formatter = colorlog.ColoredFormatter(
                '%(log_color)s%(asctime)s - %(name)s - %(levelname)s%(reset)s - %(message)s',
                log_colors={
                    'DEBUG': 'cyan',
                    'INFO': 'green',
                    'WARNING': 'yellow',
                    'ERROR': 'red',
                    'CRITICAL': 'red,bg_white',
                }
            )
        except ImportError:
            # colorlog ships in the optional "color" extra
            formatter = logging.Formatter(fmt)
    else:
        formatter = logging.Formatter(fmt)

    console_handler.setFormatter(formatter)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.addHandler(console_handler)


def setup_file_logging(log_file: Path, level: str = "DEBUG", fmt: str = DEFAULT_FORMAT):
    """Mirror log records into a file next to the analyzed photos."""
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setLevel(getattr(logging, level.upper(), logging.DEBUG))
    file_handler.setFormatter(logging.Formatter(fmt))
    logging.getLogger().addHandler(file_handler)
    logger.debug(f"Logging to {log_file}")
