__version__ = '0.4.0'

from zift.errors import ScanError, ZiftError  # noqa: E402
from zift.scanner import ScanResult, scan  # noqa: E402

__all__ = ['scan', 'ScanResult', 'ScanError', 'ZiftError', '__version__']
