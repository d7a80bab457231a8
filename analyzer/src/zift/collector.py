# analyzer/src/zift/collector.py
# Python 3.10+
# Single-file fact extraction: walk the tree-sitter syntax tree, emit typed
# facts and approximate flow edges. Dataflow here is syntactic and unsound:
# it raises suspicion, it never proves a file clean.
import logging
import re

from tree_sitter import Node

from zift.entropy import shannon_entropy
from zift.errors import ParseFailure
from zift.facts import (
    CommandSignal, DynamicExecution, DynamicRequire, EnvRead, ExportFact, FactKind, FactSet,
    FlowEdge, ImportFact, MassEnvAccess, NonDeterministicSink, Obfuscation, PathAccess, SinkCall,
)
from zift.folding import try_fold
from zift.parser import call_args, literal_strings, node_line, node_text, parse, string_value

log = logging.getLogger(__name__)

# ---------------------------
# Heuristics / Patterns
# ---------------------------
ENTROPY_THRESHOLD = 4.8
MIN_ENTROPY_LEN = 20          # exclusive
MAX_ENTROPY_LEN = 2048        # at or above this only a sample is scored
OPAQUE_SAMPLE_LEN = 100
MASS_ENV_THRESHOLD = 5        # the 6th read and later are "mass" access

ENV_MARKER = 'process.env'
ENV_ALLOWLIST = {
    'NODE_ENV', 'TIMING', 'DEBUG', 'VERBOSE', 'CI',
    'APPDATA', 'HOME', 'USERPROFILE', 'PATH', 'PWD',
}

EVAL_INTRINSICS = ('eval', 'Function')

DNS_SINKS = [
    'dns.lookup', 'dns.resolve', 'dns.resolve4', 'dns.resolve6',
    'dns.resolveTxt', 'dns.resolveAny', 'dns.reverse',
]
RAW_SOCKET_SINKS = ['net.connect', 'net.createConnection', 'tls.connect', 'dgram.createSocket']
NETWORK_SINKS = [
    'http.request', 'https.request', 'http.get', 'https.get',
    'fetch', 'axios', 'axios.get', 'axios.post', 'axios.put', 'axios.request',
    'request', 'got', 'undici.request', 'undici.fetch',
]
SHELL_SINKS = [
    'child_process.exec', 'child_process.execSync', 'child_process.spawn',
    'child_process.spawnSync', 'child_process.execFile', 'child_process.execFileSync',
    'exec', 'execSync', 'spawn', 'spawnSync', 'execFile', 'execFileSync',
]
ENCODERS = [
    'Buffer.from', 'btoa', 'atob',
    'zlib.deflate', 'zlib.deflateSync', 'zlib.gzip', 'zlib.gzipSync',
    'crypto.createCipheriv', 'crypto.publicEncrypt',
]

FS_READ_CALLS = ['readFile', 'readFileSync', 'createReadStream']
FS_WRITE_CALLS = ['writeFile', 'writeFileSync', 'appendFile', 'appendFileSync', 'createWriteStream']
SENSITIVE_PATHS = [
    '.ssh', '.env', 'shadow', 'passwd', 'credentials', 'token', '_netrc', '.netrc',
    'aws_access_key', '.aws', '.npmrc', 'id_rsa',
]
STARTUP_PATHS = [
    'package.json', '.npmrc', '.bashrc', '.zshrc', '.profile', '.bash_profile',
    'crontab', 'init.d', 'systemd', 'autostart', 'microsoft.powershell_profile.ps1',
]

DOWNLOADER_TOKENS = ('curl', 'wget', 'fetch')
URL_TOKENS = ('http', '//')
PIPE_TO_SHELL_TOKENS = ('| sh', '| bash', '| cmd', '| pwsh')
NON_DETERMINISTIC_TOKENS = ('Math.random', 'Date.now', 'Date()')

IDENT_CHAIN_RE = re.compile(r'(?<![\w$.])[A-Za-z_$][\w$]*(?:\s*\.\s*[A-Za-z_$][\w$]*)*')
WHITESPACE_RE = re.compile(r'\s+')

FUNCTION_VALUE_TYPES = ('arrow_function', 'function_expression', 'function', 'generator_function')
FUNCTION_DECL_TYPES = ('function_declaration', 'generator_function_declaration')


# ---------------------------
# Catalog matching
# ---------------------------
def matches_catalog(callee: str, catalog) -> bool:
    """Exact match, or dotted-suffix match (``cp.exec`` vs ``exec``)."""
    return any(callee == sink or callee.endswith('.' + sink) for sink in catalog)


def network_kind(callee: str) -> FactKind | None:
    if matches_catalog(callee, DNS_SINKS):
        return FactKind.DNS_SINK
    if matches_catalog(callee, RAW_SOCKET_SINKS):
        return FactKind.RAW_SOCKET_SINK
    if matches_catalog(callee, NETWORK_SINKS):
        return FactKind.NETWORK_SINK
    return None


def is_shell_sink(callee: str) -> bool:
    return matches_catalog(callee, SHELL_SINKS)


def is_encoder(callee: str) -> bool:
    return matches_catalog(callee, ENCODERS)


def _compact(text: str) -> str:
    return WHITESPACE_RE.sub('', text)


def ident_chains(text: str) -> set[str]:
    """Identifier chains in ``text`` and each of their dotted prefixes."""
    out = set()
    for m in IDENT_CHAIN_RE.finditer(text):
        parts = [p.strip() for p in m.group(0).split('.')]
        for i in range(1, len(parts) + 1):
            out.add('.'.join(parts[:i]))
    return out


def _is_env_object(node: Node | None) -> bool:
    """True for ``process.env`` / ``process['env']`` (optionally ``globalThis.process``)."""
    if node is None or node.type not in ('member_expression', 'subscript_expression'):
        return False
    obj = _compact(node_text(node.child_by_field_name('object')))
    if obj != 'process' and not obj.endswith('.process'):
        return False
    if node.type == 'member_expression':
        return node_text(node.child_by_field_name('property')) == 'env'
    index = node.child_by_field_name('index')
    return index is not None and string_value(index) == 'env'


def _param_names(func: Node) -> list[str | None]:
    single = func.child_by_field_name('parameter')
    if single is not None:
        return [node_text(single)] if single.type == 'identifier' else [None]
    params = func.child_by_field_name('parameters')
    if params is None:
        return []
    names = []
    for p in params.named_children:
        if p.type == 'comment':
            continue
        if p.type == 'identifier':
            names.append(node_text(p))
        elif p.type == 'assignment_pattern' and p.child_by_field_name('left') is not None \
                and p.child_by_field_name('left').type == 'identifier':
            names.append(node_text(p.child_by_field_name('left')))
        else:
            names.append(None)
    return names


def _post_order(root: Node):
    stack = [(root, False)]
    while stack:
        node, expanded = stack.pop()
        if expanded:
            yield node
            continue
        stack.append((node, True))
        for child in reversed(node.named_children):
            stack.append((child, False))


def declared_functions(root: Node) -> dict[str, list[str | None]]:
    """Locally declared functions/arrows bound to a name -> parameter names."""
    found = {}
    for node in _post_order(root):
        if node.type in FUNCTION_DECL_TYPES:
            name = node.child_by_field_name('name')
            if name is not None:
                found[node_text(name)] = _param_names(node)
        elif node.type == 'variable_declarator':
            name = node.child_by_field_name('name')
            value = node.child_by_field_name('value')
            if name is not None and name.type == 'identifier' and value is not None \
                    and value.type in FUNCTION_VALUE_TYPES:
                found[node_text(name)] = _param_names(value)
    return found


# ---------------------------
# Per-file extraction
# ---------------------------
class _Extraction:
    """Mutable state for one file's walk: facts, flows, counters."""

    def __init__(self, file_path: str, root: Node):
        self.file = file_path
        self.root = root
        self.facts = FactSet()
        self.flows: list[FlowEdge] = []
        self.env_reads = 0
        self.functions = declared_functions(root)
        self._targets: set[str] = set()
        self._handlers = {
            'string': self._on_string,
            'template_string': self._on_string,
            'member_expression': self._on_member,
            'subscript_expression': self._on_member,
            'call_expression': self._on_call,
            'new_expression': self._on_new,
            'variable_declarator': self._on_declarator,
            'assignment_expression': self._on_assignment,
            'object': self._on_object,
            'import_statement': self._on_import,
            'export_statement': self._on_export,
        }

    def run(self):
        for node in _post_order(self.root):
            handler = self._handlers.get(node.type)
            if handler:
                handler(node)
        return self.facts, self.flows

    # -- bookkeeping -----------------------------------------------------
    def emit(self, cls, kind: FactKind, node: Node, **attrs):
        self.facts.add(cls(kind, self.file, node_line(node), **attrs))

    def add_flow(self, from_expr: str, to_var: str, node: Node):
        self.flows.append(FlowEdge(from_expr, to_var, self.file, node_line(node)))
        self._targets.add(to_var)

    def is_tainted(self, text: str) -> bool:
        if ENV_MARKER in text:
            return True
        return not self._targets.isdisjoint(ident_chains(text))

    # -- literals ----------------------------------------------------------
    def _on_string(self, node: Node):
        value = string_value(node)
        if value is None or len(value) <= MIN_ENTROPY_LEN:
            return
        if len(value) >= MAX_ENTROPY_LEN:
            sample_entropy = shannon_entropy(value[:OPAQUE_SAMPLE_LEN])
            if sample_entropy > ENTROPY_THRESHOLD:
                self.emit(Obfuscation, FactKind.OPAQUE_STRING_SKIP, node,
                          reason=f'Large string skipped (>2KB) but sample has high entropy ({sample_entropy:.2f})')
            return
        entropy = shannon_entropy(value)
        if entropy > ENTROPY_THRESHOLD:
            preview = value[:50] + ('...' if len(value) > 50 else '')
            self.emit(Obfuscation, FactKind.OBFUSCATION, node,
                      reason=f'High entropy string ({entropy:.2f})', value=preview)

    # -- environment -------------------------------------------------------
    def _on_member(self, node: Node):
        if _is_env_object(node):
            parent = node.parent
            if parent is not None and parent.type in ('member_expression', 'subscript_expression') \
                    and parent.child_by_field_name('object') == node:
                return
            self._env_read(node, ENV_MARKER)
            return
        obj = node.child_by_field_name('object')
        if not _is_env_object(obj):
            return
        if node.type == 'member_expression':
            prop = node_text(node.child_by_field_name('property'))
        else:
            index = node.child_by_field_name('index')
            prop = string_value(index) if index is not None else None
            if prop is None:
                self._env_read(node, f'{ENV_MARKER}[{node_text(index)}]')
                return
        if prop in ENV_ALLOWLIST:
            return
        self._env_read(node, f'{ENV_MARKER}.{prop}')

    def _env_read(self, node: Node, variable: str):
        self.env_reads += 1
        self.emit(EnvRead, FactKind.ENV_READ, node, variable=variable)
        if self.env_reads > MASS_ENV_THRESHOLD:
            self.emit(MassEnvAccess, FactKind.MASS_ENV_ACCESS, node, count=self.env_reads)

    # -- calls -------------------------------------------------------------
    def _on_new(self, node: Node):
        ctor = _compact(node_text(node.child_by_field_name('constructor')))
        if ctor == 'Function':
            self.emit(DynamicExecution, FactKind.DYNAMIC_EXECUTION, node, via='Function')

    def _on_call(self, node: Node):
        func = node.child_by_field_name('function')
        if func is None:
            return
        callee = _compact(node_text(func))
        args = call_args(node)

        if callee in EVAL_INTRINSICS:
            self.emit(DynamicExecution, FactKind.DYNAMIC_EXECUTION, node, via=callee)
        if callee == 'require' or func.type == 'import':
            self._module_load(node, args)

        revealed = self._deobfuscate(node, func)

        net = network_kind(callee)
        if net is not None:
            self.emit(SinkCall, net, node, callee=callee)
        shell = is_shell_sink(callee)
        if shell:
            self.emit(SinkCall, FactKind.SHELL_EXECUTION, node, callee=callee)
            self._dropper_signals(node, args)
        if is_encoder(callee):
            self.emit(SinkCall, FactKind.ENCODER_USE, node, callee=callee)
        self._file_access(node, callee, args)

        dangerous = net is not None or shell or callee in EVAL_INTRINSICS or revealed in EVAL_INTRINSICS
        params = self.functions.get(callee)
        for index, arg in enumerate(args):
            arg_text = node_text(arg)
            if params is not None and index < len(params) and params[index] and self.is_tainted(arg_text):
                self.add_flow(arg_text, f'{callee}:{params[index]}', node)
            if dangerous and any(tok in arg_text for tok in NON_DETERMINISTIC_TOKENS):
                self.emit(NonDeterministicSink, FactKind.NON_DETERMINISTIC_SINK, node,
                          callee=callee, argument=arg_text[:120])

    def _deobfuscate(self, node: Node, func: Node) -> str | None:
        """Fold the call (``[...].reverse().join('')``) or its computed callee index."""
        candidates = []
        if func.type == 'member_expression' and node_text(func.child_by_field_name('property')) in ('join', 'reverse'):
            candidates.append(node)
        elif func.type == 'subscript_expression' and func.child_by_field_name('index') is not None:
            candidates.append(func.child_by_field_name('index'))
        for candidate in candidates:
            revealed = try_fold(candidate)
            if not revealed:
                continue
            if network_kind(revealed) or is_shell_sink(revealed) or revealed in EVAL_INTRINSICS:
                self.emit(Obfuscation, FactKind.OBFUSCATION, node,
                          reason=f'De-obfuscated to: {revealed}', revealed=revealed)
                if revealed in EVAL_INTRINSICS:
                    self.emit(DynamicExecution, FactKind.DYNAMIC_EXECUTION, node, via=revealed)
                return revealed
        return None

    def _dropper_signals(self, node: Node, args: list[Node]):
        for arg in args:
            value = string_value(arg)
            if value is None:
                continue
            val = value.lower()
            if any(t in val for t in DOWNLOADER_TOKENS) and any(t in val for t in URL_TOKENS):
                self.emit(CommandSignal, FactKind.REMOTE_FETCH_SIGNAL, node, command=val)
            if any(t in val for t in PIPE_TO_SHELL_TOKENS):
                self.emit(CommandSignal, FactKind.PIPE_TO_SHELL_SIGNAL, node, command=val)

    def _file_access(self, node: Node, callee: str, args: list[Node]):
        if not args:
            return
        if matches_catalog(callee, FS_READ_CALLS):
            kind, needles = FactKind.FILE_READ_SENSITIVE, SENSITIVE_PATHS
        elif matches_catalog(callee, FS_WRITE_CALLS):
            kind, needles = FactKind.FILE_WRITE_STARTUP, STARTUP_PATHS
        else:
            return
        literals = [s.lower() for s in literal_strings(args[0])]
        if any(needle in s for s in literals for needle in needles):
            self.emit(PathAccess, kind, node, path=node_text(args[0]))

    # -- module graph ------------------------------------------------------
    def _module_load(self, node: Node, args: list[Node]):
        if not args:
            return
        source = string_value(args[0])
        if source is None:
            self.emit(DynamicRequire, FactKind.DYNAMIC_REQUIRE, node, argument=node_text(args[0]))
            return
        self._bind_import(node, source)

    def _bind_import(self, call: Node, source: str):
        value = call
        parent = call.parent
        while parent is not None and parent.type in ('await_expression', 'parenthesized_expression'):
            value, parent = parent, parent.parent
        imported = 'default'
        if parent is not None and parent.type == 'member_expression' \
                and parent.child_by_field_name('object') == value:
            imported = node_text(parent.child_by_field_name('property'))
            value, parent = parent, parent.parent
        if parent is None or parent.type != 'variable_declarator' \
                or parent.child_by_field_name('value') != value:
            return
        name = parent.child_by_field_name('name')
        if name.type == 'identifier':
            self._import(parent, source, node_text(name), imported)
        elif name.type == 'object_pattern' and imported == 'default':
            for local, key in self._pattern_bindings(name):
                self._import(parent, source, local, key)

    @staticmethod
    def _pattern_bindings(pattern: Node):
        """(local, key) pairs of a flat object destructuring pattern."""
        for prop in pattern.named_children:
            if prop.type == 'shorthand_property_identifier_pattern':
                yield node_text(prop), node_text(prop)
            elif prop.type == 'pair_pattern':
                key = prop.child_by_field_name('key')
                val = prop.child_by_field_name('value')
                if key is not None and val is not None and val.type == 'identifier':
                    key_name = string_value(key) if key.type == 'string' else node_text(key)
                    yield node_text(val), key_name
            elif prop.type == 'object_assignment_pattern':
                left = prop.child_by_field_name('left')
                if left is not None and left.type == 'shorthand_property_identifier_pattern':
                    yield node_text(left), node_text(left)

    def _import(self, node: Node, source: str, local: str, imported: str):
        self.emit(ImportFact, FactKind.IMPORTS, node, source=source, local=local, imported=imported)

    def _on_import(self, node: Node):
        source_node = node.child_by_field_name('source')
        source = string_value(source_node) if source_node is not None else None
        if source is None:
            return
        for clause in node.named_children:
            if clause.type != 'import_clause':
                continue
            for item in clause.named_children:
                if item.type == 'identifier':
                    self._import(node, source, node_text(item), 'default')
                elif item.type == 'namespace_import':
                    for ident in item.named_children:
                        if ident.type == 'identifier':
                            self._import(node, source, node_text(ident), '*')
                elif item.type == 'named_imports':
                    for spec in item.named_children:
                        if spec.type != 'import_specifier':
                            continue
                        name = node_text(spec.child_by_field_name('name'))
                        alias = spec.child_by_field_name('alias')
                        self._import(node, source, node_text(alias) if alias is not None else name, name)

    def _export(self, node: Node, name: str, local: str | None, export_type: str = 'named'):
        self.emit(ExportFact, FactKind.EXPORTS, node, name=name, local=local, export_type=export_type)

    def _on_export(self, node: Node):
        declaration = node.child_by_field_name('declaration')
        value = node.child_by_field_name('value')
        source_node = node.child_by_field_name('source')
        if any(c.type == 'default' for c in node.children):
            if declaration is not None:
                name = declaration.child_by_field_name('name')
                self._export(node, 'default', node_text(name) if name is not None else None, 'default')
            elif value is not None and value.type == 'identifier':
                self._export(node, 'default', node_text(value), 'default')
            elif value is not None:
                self.add_flow(node_text(value), 'exports.default', node)
                self._export(node, 'default', 'exports.default', 'default')
            return
        if declaration is not None:
            if declaration.type in ('lexical_declaration', 'variable_declaration'):
                for decl in declaration.named_children:
                    name = decl.child_by_field_name('name') if decl.type == 'variable_declarator' else None
                    if name is not None and name.type == 'identifier':
                        self._export(node, node_text(name), node_text(name))
            else:
                name = declaration.child_by_field_name('name')
                if name is not None:
                    self._export(node, node_text(name), node_text(name))
            return
        source = string_value(source_node) if source_node is not None else None
        for clause in node.named_children:
            if clause.type != 'export_clause':
                continue
            for spec in clause.named_children:
                if spec.type != 'export_specifier':
                    continue
                local = node_text(spec.child_by_field_name('name'))
                alias = spec.child_by_field_name('alias')
                exported = node_text(alias) if alias is not None else local
                if source is not None:
                    self._import(node, source, local, local)
                self._export(node, exported, local)

    # -- flows -------------------------------------------------------------
    def _on_declarator(self, node: Node):
        name = node.child_by_field_name('name')
        value = node.child_by_field_name('value')
        if name is None or value is None:
            return
        value_text = node_text(value)
        if name.type == 'identifier':
            self.add_flow(value_text, node_text(name), node)
        elif name.type == 'object_pattern':
            for local, key in self._pattern_bindings(name):
                self.add_flow(f'{value_text}.{key}', local, node)

    def _on_assignment(self, node: Node):
        left = node.child_by_field_name('left')
        right = node.child_by_field_name('right')
        if left is None or right is None:
            return
        left_text = _compact(node_text(left))
        if left_text == 'module.exports' or left_text.startswith(('exports.', 'module.exports.')):
            self._assignment_export(node, left_text, right)
        if left.type in ('member_expression', 'subscript_expression') and right.type == 'identifier':
            self.add_flow(node_text(right), left_text, node)

    def _assignment_export(self, node: Node, left_text: str, right: Node):
        if right.type != 'identifier':
            self.add_flow(node_text(right), left_text, node)
        if left_text == 'module.exports':
            self._export(node, 'default', left_text, 'default')
            if right.type == 'object':
                for key, value in self._object_members(right):
                    target = f'module.exports.{key}'
                    self.add_flow(node_text(value), target, value)
                    self._export(value, key, target)
            return
        name = left_text.split('exports.', 1)[1]
        self._export(node, name, left_text)

    @staticmethod
    def _object_members(obj: Node):
        """(key, value node) pairs of an object literal; computed keys are skipped."""
        for prop in obj.named_children:
            if prop.type == 'shorthand_property_identifier':
                yield node_text(prop), prop
            elif prop.type == 'pair':
                key = prop.child_by_field_name('key')
                value = prop.child_by_field_name('value')
                if key is None or value is None or key.type == 'computed_property_name':
                    continue
                key_name = string_value(key) if key.type == 'string' else node_text(key)
                yield key_name, value

    def _on_object(self, node: Node):
        parent = node.parent
        if parent is None or parent.type != 'variable_declarator' or parent.child_by_field_name('value') != node:
            return
        name = parent.child_by_field_name('name')
        if name is None or name.type != 'identifier':
            return
        obj_name = node_text(name)
        for key, value in self._object_members(node):
            if value.type not in ('member_expression', 'subscript_expression', 'identifier',
                                  'shorthand_property_identifier'):
                continue
            value_text = node_text(value)
            if ENV_MARKER in value_text or value_text in self._targets:
                self.add_flow(value_text, f'{obj_name}.{key}', value)


def extract(source: str, file_path: str) -> tuple[FactSet, list[FlowEdge]]:
    """Facts and flow edges for one file. Unparsable input yields empty results."""
    try:
        tree = parse(source)
    except ParseFailure:
        log.debug('no syntax tree for %s; skipping', file_path)
        return FactSet(), []
    return _Extraction(file_path, tree.root_node).run()
