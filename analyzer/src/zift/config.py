# analyzer/src/zift/config.py
# Environment knobs + optional scan.yml overrides.
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from zift.errors import ConfigurationError

log = logging.getLogger(__name__)

# ---------------------------
# Environment / Config
# ---------------------------
CACHE_DIR = os.environ.get('ZIFT_CACHE_DIR', str(Path.home() / '.cache' / 'zift'))
CACHE_ENABLED = os.environ.get('ZIFT_CACHE', 'true') == 'true'
MAX_WORKERS = int(os.environ.get('ZIFT_MAX_WORKERS', '8'))
MAX_FILE_BYTES = int(os.environ.get('ZIFT_MAX_FILE_BYTES', str(512 * 1024)))
FINDINGS_DIR = os.environ.get('FINDINGS_DIR', './out/findings')
SCAN_YML_PATH = os.environ.get('SCAN_YML', 'scan.yml')

# Directories never descended into (VCS, dependencies, build output, tests)
DEFAULT_IGNORE = [
    'node_modules', '.git', '.svn', '.hg',
    'dist', 'build', 'coverage', '.nyc_output',
    'test', 'tests', '__tests__', '__mocks__',
]

IGNORE_FILE_NAME = '.ziftignore'


@dataclass
class ScanSettings:
    max_workers: int = MAX_WORKERS
    max_file_bytes: int = MAX_FILE_BYTES
    cache_enabled: bool = CACHE_ENABLED
    cache_dir: str = CACHE_DIR
    ignore: list[str] = field(default_factory=lambda: list(DEFAULT_IGNORE))


def read_scan_yml(path: str | os.PathLike) -> dict:
    """Parse scan.yml; raise ConfigurationError when it is missing or broken."""
    try:
        cfg = yaml.safe_load(Path(path).read_text())
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f'cannot load {path}: {e}') from e
    if cfg is None:
        return {}
    if not isinstance(cfg, dict):
        raise ConfigurationError(f'{path}: top level must be a mapping')
    return cfg


def load_settings(path: str | os.PathLike | None = None) -> ScanSettings:
    """Build ScanSettings from env defaults overlaid with scan.yml knobs."""
    settings = ScanSettings()
    try:
        cfg = read_scan_yml(path or SCAN_YML_PATH)
    except ConfigurationError as e:
        log.debug('using default settings: %s', e)
        return settings

    analysis = cfg.get('analysis', {}) or {}
    try:
        if analysis.get('max_workers') is not None:
            settings.max_workers = max(1, int(analysis['max_workers']))
        if analysis.get('max_file_bytes') is not None:
            settings.max_file_bytes = int(analysis['max_file_bytes'])
    except (TypeError, ValueError):
        log.warning('ignoring non-numeric limits in scan.yml')
    extra_ignore = analysis.get('ignore') or []
    if isinstance(extra_ignore, list):
        settings.ignore.extend(str(x) for x in extra_ignore if x)

    cache_cfg = analysis.get('cache', {}) or {}
    if 'enabled' in cache_cfg:
        settings.cache_enabled = bool(cache_cfg['enabled'])
    if cache_cfg.get('dir'):
        settings.cache_dir = str(cache_cfg['dir'])
    return settings
