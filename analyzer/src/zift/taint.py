# analyzer/src/zift/taint.py
# Second pass: correlate exports with imports across files so taint read
# in one module is visible where another module requires it.
import logging
import os
from collections import defaultdict
from dataclasses import dataclass

from zift.collector import ENV_MARKER, ident_chains
from zift.facts import EnvRead, ExportFact, FactKind, FactSet, FlowEdge, ImportFact

log = logging.getLogger(__name__)

WHOLE_MODULE_IMPORTS = ('default', '*')


@dataclass(frozen=True)
class ExportBinding:
    local_name: str | None
    is_tainted: bool = False
    taint_path: str | None = None


class CrossFileResolver:
    """Backward taint walk over flow edges, following imports into other files.

    The walk is depth-first over (file, variable) pairs with a visited set,
    so mutually re-exporting modules terminate as "not tainted".
    """

    def __init__(self, facts: FactSet, flows: list[FlowEdge]):
        self.facts = facts
        self.flows = flows
        self._edges: dict[tuple[str, str], list[FlowEdge]] = defaultdict(list)
        for edge in flows:
            self._edges[(edge.file, edge.to_var)].append(edge)
        self._imports: dict[tuple[str, str], ImportFact] = {}
        for imp in facts.of(FactKind.IMPORTS):
            self._imports.setdefault((imp.file, imp.local), imp)
        self._exports: dict[tuple[str, str], ExportFact] = {}
        self._exports_by_file: dict[str, list[ExportFact]] = defaultdict(list)
        for exp in facts.of(FactKind.EXPORTS):
            self._exports.setdefault((exp.file, exp.name), exp)
            self._exports_by_file[exp.file].append(exp)

    def resolve_module(self, importer: str, specifier: str) -> str | None:
        """File with export facts that a relative specifier points at, if any."""
        if not (specifier.startswith(('./', '../')) or specifier in ('.', '..')):
            return None
        base = os.path.normpath(os.path.join(os.path.dirname(importer), specifier))
        for candidate in (base, base + '.js'):
            if candidate in self._exports_by_file:
                return candidate
        return None

    def _import_targets(self, file: str, var: str):
        """(file, variable) pairs an imported local name leads to in its source module."""
        imp = self._imports.get((file, var))
        prop = None
        if imp is None and '.' in var:
            base, prop = var.split('.', 1)
            imp = self._imports.get((file, base))
            if imp is None or imp.imported not in WHOLE_MODULE_IMPORTS:
                return []
        if imp is None:
            return []
        target = self.resolve_module(file, imp.source)
        if target is None:
            return []
        if prop is not None:
            name = prop.split('.', 1)[0]
        elif imp.imported == '*':
            return []
        else:
            name = imp.imported
        exp = self._exports.get((target, name))
        if exp is None or not exp.local:
            return []
        return [(target, exp.local, True)]

    def trace(self, file: str, var: str) -> str | None:
        """Source expression that taints ``var`` in ``file``, or None."""
        visited = set()
        stack = [(file, var, True)]
        while stack:
            cur_file, cur_var, decompose = stack.pop()
            if (cur_file, cur_var) in visited:
                continue
            visited.add((cur_file, cur_var))
            pending = []
            for edge in self._edges.get((cur_file, cur_var), ()):
                if ENV_MARKER in edge.from_expr:
                    return edge.from_expr
                pending.extend((cur_file, chain, True) for chain in sorted(ident_chains(edge.from_expr)))
            if decompose and '.' in cur_var:
                pending.append((cur_file, cur_var.rsplit('.', 1)[0], False))
            pending.extend(self._import_targets(cur_file, cur_var))
            stack.extend(reversed(pending))
        return None

    def build_export_map(self) -> dict[tuple[str, str], ExportBinding]:
        export_map = {}
        for exp in self.facts.of(FactKind.EXPORTS):
            path = self.trace(exp.file, exp.local) if exp.local else None
            export_map[(exp.file, exp.name)] = ExportBinding(exp.local, path is not None, path)
        return export_map

    def resolve(self) -> dict[tuple[str, str], ExportBinding]:
        """Synthesize cross-file ENV_READ facts and flow edges; returns the export map."""
        export_map = self.build_export_map()
        new_facts, new_flows = [], []
        for imp in self.facts.of(FactKind.IMPORTS):
            target = self.resolve_module(imp.file, imp.source)
            if target is None:
                continue
            hits = []
            if imp.imported in WHOLE_MODULE_IMPORTS:
                binding = export_map.get((target, 'default'))
                if imp.imported == 'default' and binding is not None and binding.is_tainted:
                    hits.append((binding.taint_path, imp.local))
                for exp in self._exports_by_file[target]:
                    binding = export_map.get((target, exp.name))
                    if exp.name != 'default' and binding is not None and binding.is_tainted:
                        hits.append((binding.taint_path, f'{imp.local}.{exp.name}'))
            else:
                binding = export_map.get((target, imp.imported))
                if binding is not None and binding.is_tainted:
                    hits.append((binding.taint_path, imp.local))
            if not hits:
                continue
            log.debug('cross-file taint %s -> %s:%s', target, imp.file, imp.local)
            new_facts.append(EnvRead(
                FactKind.ENV_READ, imp.file, imp.line,
                variable=f'{imp.local} imported from {imp.source} ({hits[0][0]})',
                cross_file=True,
            ))
            seen = set()
            for path, to_var in hits:
                if to_var not in seen:
                    seen.add(to_var)
                    new_flows.append(FlowEdge(path, to_var, imp.file, imp.line))
        self.facts.extend(new_facts)
        self.flows.extend(new_flows)
        return export_map


def resolve_cross_file(facts: FactSet, flows: list[FlowEdge]) -> dict[tuple[str, str], ExportBinding]:
    """Run the cross-file pass in place over the merged facts and flows."""
    return CrossFileResolver(facts, flows).resolve()
