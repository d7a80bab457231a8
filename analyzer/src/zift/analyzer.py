# analyzer/src/zift/analyzer.py
# Python 3.10+
# Zift batch runner: scan unpacked package directories, write findings JSON
import json
import logging
import os
import sys
import traceback
from pathlib import Path

from zift.config import FINDINGS_DIR, load_settings
from zift.errors import ScanError
from zift.rules import classify
from zift.scanner import scan

LOG_LEVEL = os.environ.get('ZIFT_LOG_LEVEL', 'WARNING')


def summarize(result) -> tuple[int, str]:
    """Package-level (score, label): the worst finding wins."""
    score = max((f.score for f in result.findings), default=0)
    return score, classify(score)


def analyze_dir(package_dir: str, settings, findings_dir: str = FINDINGS_DIR) -> Path | None:
    base = Path(package_dir).resolve().name or 'package'
    try:
        result = scan(package_dir, settings=settings)
    except ScanError as e:
        print('scan error', package_dir, e)
        if os.environ.get('DEBUG_ANALYZER_EXCEPTIONS') == '1':
            traceback.print_exc()
        return None
    score, label = summarize(result)
    out = {'package_dir': result.package_dir, 'score': score, 'label': label, **result.to_dict()}
    out_path = Path(findings_dir) / (base + '.findings.json')
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(out, indent=2))
    print('wrote findings', out_path)
    return out_path


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=LOG_LEVEL.upper(), format='%(levelname)s %(name)s: %(message)s')
    args = sys.argv[1:] if argv is None else argv
    if not args:
        print('usage: zift-analyze <package_dir> [<package_dir> ...]')
        return 2
    settings = load_settings()
    failures = 0
    for p in args:
        if analyze_dir(p, settings) is None:
            failures += 1
    return 1 if failures else 0


if __name__ == '__main__':
    sys.exit(main())
