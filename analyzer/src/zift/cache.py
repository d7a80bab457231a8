# analyzer/src/zift/cache.py
# Content-addressed memoization of per-file extraction results.
# One JSON file per sha256(content + tool version). Never authoritative:
# anything unreadable is re-extracted and overwritten.
import hashlib
import json
import logging
import os
import tempfile
from dataclasses import replace
from pathlib import Path
from typing import Callable

from zift import __version__
from zift.errors import CacheCorruption
from zift.facts import FactSet, FlowEdge, fact_from_dict

log = logging.getLogger(__name__)

Extractor = Callable[[str, str], tuple[FactSet, list[FlowEdge]]]


def content_key(content: str, version: str = __version__) -> str:
    return hashlib.sha256((content + version).encode('utf-8', errors='surrogatepass')).hexdigest()


class FactCache:

    def __init__(self, cache_dir: str | os.PathLike, version: str = __version__):
        self.cache_dir = Path(cache_dir)
        self.version = version

    def path_for(self, key: str) -> Path:
        return self.cache_dir / f'{key}.json'

    def load(self, key: str, file_path: str) -> tuple[FactSet, list[FlowEdge]] | None:
        """Stored result rebound to ``file_path``; None on miss, CacheCorruption if undecodable."""
        path = self.path_for(key)
        try:
            raw = path.read_text(encoding='utf-8')
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise CacheCorruption(f'{path}: {e}') from e
        try:
            data = json.loads(raw)
            facts = FactSet(replace(fact_from_dict(d), file=file_path) for d in data['facts'])
            flows = [replace(FlowEdge.from_dict(d), file=file_path) for d in data['flows']]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise CacheCorruption(f'{path}: {e}') from e
        return facts, flows

    def store(self, key: str, facts: FactSet, flows: list[FlowEdge]) -> None:
        payload = json.dumps({
            'facts': [f.to_dict() for f in facts],
            'flows': [e.to_dict() for e in flows],
        })
        path = self.path_for(key)
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.cache_dir, prefix=f'.{path.name}.', suffix='.tmp')
        except OSError as e:
            log.debug('cache write failed for %s: %s', key, e)
            return
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as fh:
                fh.write(payload)
            os.replace(tmp, path)
        except OSError as e:
            log.debug('cache write failed for %s: %s', key, e)
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass

    def get_or_extract(self, content: str, file_path: str, extractor: Extractor) -> tuple[FactSet, list[FlowEdge]]:
        key = content_key(content, self.version)
        try:
            hit = self.load(key, file_path)
        except CacheCorruption as e:
            log.debug('re-extracting %s: %s', file_path, e)
            hit = None
        if hit is not None:
            return hit
        facts, flows = extractor(content, file_path)
        self.store(key, facts, flows)
        return facts, flows
