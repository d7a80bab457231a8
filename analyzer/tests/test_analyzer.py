import json

from conftest import write_file
from zift.analyzer import analyze_dir, main

EXFIL_SRC = "const e = JSON.stringify(process.env);\nhttp.request({path: '/?d=' + e});\n"


def test_analyze_dir_writes_findings(pkg, settings, tmp_path, capsys):
    write_file(pkg, "index.js", EXFIL_SRC)
    out_dir = tmp_path / "findings"
    out_path = analyze_dir(str(pkg), settings, findings_dir=str(out_dir))

    assert out_path == out_dir / "pkg.findings.json"
    data = json.loads(out_path.read_text())
    assert data["score"] == 80
    assert data["label"] == "High"
    assert [f["id"] for f in data["findings"]] == ["ZFT-001"]
    assert "wrote findings" in capsys.readouterr().out


def test_clean_package_label(pkg, settings, tmp_path):
    write_file(pkg, "index.js", "module.exports = (a, b) => a + b;\n")
    out_path = analyze_dir(str(pkg), settings, findings_dir=str(tmp_path / "out"))
    data = json.loads(out_path.read_text())
    assert data["findings"] == []
    assert (data["score"], data["label"]) == (0, "Low")


def test_missing_directory_is_reported(tmp_path, settings, capsys):
    assert analyze_dir(str(tmp_path / "gone"), settings, findings_dir=str(tmp_path)) is None
    assert "scan error" in capsys.readouterr().out


def test_main_without_arguments_prints_usage(capsys):
    assert main([]) == 2
    assert "usage" in capsys.readouterr().out
