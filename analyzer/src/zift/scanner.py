# analyzer/src/zift/scanner.py
# Scan entry point: enumerate sources, extract in parallel, merge, resolve
# cross-file taint, evaluate rules. No printing, no exits.
import logging
import os
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from zift import engine, lifecycle
from zift.cache import FactCache
from zift.collector import extract
from zift.config import IGNORE_FILE_NAME, ScanSettings, load_settings
from zift.errors import ScanError
from zift.facts import FactSet, FlowEdge
from zift.taint import resolve_cross_file

log = logging.getLogger(__name__)

SOURCE_SUFFIXES = ('.js', '.mjs', '.cjs')


@dataclass
class ScanResult:
    package_dir: str
    findings: list[engine.Finding] = field(default_factory=list)
    lifecycle_scripts: list[str] = field(default_factory=list)
    lockfile_findings: list = field(default_factory=list)
    hooks: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'findings': [f.to_dict(self.package_dir) for f in self.findings],
            'lifecycleScripts': [os.path.relpath(p, self.package_dir) for p in self.lifecycle_scripts],
            'lockfileFindings': list(self.lockfile_findings),
        }


# ---------------------------
# Traversal
# ---------------------------
def read_ignore_file(root: Path) -> list[str]:
    """Entries of .ziftignore: one name or substring per line, '#' comments."""
    path = root / IGNORE_FILE_NAME
    try:
        text = path.read_text(encoding='utf-8')
    except FileNotFoundError:
        return []
    except (OSError, UnicodeDecodeError) as e:
        log.debug('ignoring unreadable %s: %s', path, e)
        return []
    entries = []
    for line in text.splitlines():
        line = line.split('#', 1)[0].strip()
        if line:
            entries.append(line.rstrip('/'))
    return entries


def _is_ignored(rel: str, name: str, builtin: set[str], user: list[str]) -> bool:
    if name in builtin:
        return True
    return any(entry == name or entry in rel for entry in user)


def iter_source_files(root: Path, settings: ScanSettings) -> list[str]:
    """Sorted absolute paths of scannable sources under ``root``.

    Raises ScanError when ``root`` itself cannot be listed.
    """
    try:
        with os.scandir(root):
            pass
    except OSError as e:
        raise ScanError(f'cannot enumerate {root}: {e}') from e

    builtin = set(settings.ignore)
    user = read_ignore_file(root)
    found = []

    def onerror(e):
        log.debug('skipping unreadable directory: %s', e)

    for dirpath, dirnames, filenames in os.walk(root, onerror=onerror):
        rel_dir = os.path.relpath(dirpath, root)
        rel_dir = '' if rel_dir == '.' else Path(rel_dir).as_posix() + '/'
        dirnames[:] = sorted(d for d in dirnames if not _is_ignored(rel_dir + d, d, builtin, user))
        for fn in filenames:
            if not fn.endswith(SOURCE_SUFFIXES) or _is_ignored(rel_dir + fn, fn, builtin, user):
                continue
            path = os.path.join(dirpath, fn)
            try:
                size = os.path.getsize(path)
            except OSError as e:
                log.debug('skipping %s: %s', path, e)
                continue
            if size > settings.max_file_bytes:
                log.debug('skipping %s: %d bytes over limit', path, size)
                continue
            found.append(os.path.normpath(path))
    return sorted(found)


# ---------------------------
# Extraction
# ---------------------------
def extract_file(path: str, cache: FactCache | None = None) -> tuple[FactSet, list[FlowEdge]]:
    try:
        content = Path(path).read_text(encoding='utf-8')
    except (OSError, UnicodeDecodeError) as e:
        log.warning('skipping unreadable file %s: %s', path, e)
        return FactSet(), []
    if cache is not None:
        return cache.get_or_extract(content, path, extract)
    return extract(content, path)


def scan(
    package_dir: str | os.PathLike,
    *,
    settings: ScanSettings | None = None,
    lockfile_auditor: Callable[[Path], list] | None = None,
) -> ScanResult:
    """Analyze one unpacked package directory."""
    settings = settings or load_settings()
    root = Path(package_dir).resolve()
    files = iter_source_files(root, settings)
    cache = FactCache(settings.cache_dir) if settings.cache_enabled else None
    log.debug('scanning %d files under %s', len(files), root)

    with ThreadPoolExecutor(max_workers=max(1, settings.max_workers)) as pool:
        futures = [pool.submit(extract_file, path, cache) for path in files]
        wait(futures)

    facts = FactSet()
    flows: list[FlowEdge] = []
    for future in futures:
        file_facts, file_flows = future.result()
        facts.merge(file_facts)
        flows.extend(file_flows)

    lifecycle_files, hooks = lifecycle.resolve(root)
    facts.extend(lifecycle.hook_facts(hooks, root / 'package.json'))

    resolve_cross_file(facts, flows)
    findings = engine.evaluate(facts, lifecycle_files)

    lockfile_findings = list(lockfile_auditor(root)) if lockfile_auditor is not None else []
    return ScanResult(
        package_dir=str(root),
        findings=findings,
        lifecycle_scripts=sorted(str(p) for p in lifecycle_files),
        lockfile_findings=lockfile_findings,
        hooks=hooks,
    )
