# analyzer/src/zift/facts.py
# Evidence model: typed facts sharing a (kind, file, line) header, plus
# the approximate flow edges used for taint tracking.
from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Iterable, Iterator


class FactKind(str, Enum):
    ENV_READ = 'ENV_READ'
    MASS_ENV_ACCESS = 'MASS_ENV_ACCESS'
    FILE_READ_SENSITIVE = 'FILE_READ_SENSITIVE'
    FILE_WRITE_STARTUP = 'FILE_WRITE_STARTUP'
    NETWORK_SINK = 'NETWORK_SINK'
    DNS_SINK = 'DNS_SINK'
    RAW_SOCKET_SINK = 'RAW_SOCKET_SINK'
    SHELL_EXECUTION = 'SHELL_EXECUTION'
    DYNAMIC_EXECUTION = 'DYNAMIC_EXECUTION'
    DYNAMIC_REQUIRE = 'DYNAMIC_REQUIRE'
    ENCODER_USE = 'ENCODER_USE'
    OBFUSCATION = 'OBFUSCATION'
    OPAQUE_STRING_SKIP = 'OPAQUE_STRING_SKIP'
    REMOTE_FETCH_SIGNAL = 'REMOTE_FETCH_SIGNAL'
    PIPE_TO_SHELL_SIGNAL = 'PIPE_TO_SHELL_SIGNAL'
    NON_DETERMINISTIC_SINK = 'NON_DETERMINISTIC_SINK'
    EXPORTS = 'EXPORTS'
    IMPORTS = 'IMPORTS'


# ---------------------------
# Fact shapes
# ---------------------------
@dataclass(frozen=True)
class Fact:
    kind: FactKind
    file: str
    line: int

    @property
    def context(self) -> str:
        return ''

    def to_dict(self) -> dict:
        d = asdict(self)
        d['kind'] = self.kind.value
        return d


@dataclass(frozen=True)
class EnvRead(Fact):
    variable: str = 'process.env'
    cross_file: bool = False

    @property
    def context(self) -> str:
        return self.variable


@dataclass(frozen=True)
class MassEnvAccess(Fact):
    count: int = 0

    @property
    def context(self) -> str:
        return f'{self.count} environment reads in file'


@dataclass(frozen=True)
class PathAccess(Fact):
    path: str = 'unknown'

    @property
    def context(self) -> str:
        return self.path


@dataclass(frozen=True)
class SinkCall(Fact):
    """A call into a sink or encoder catalog; ``lifecycle`` marks hook commands."""
    callee: str = ''
    lifecycle: bool = False

    @property
    def context(self) -> str:
        return self.callee


@dataclass(frozen=True)
class DynamicExecution(Fact):
    via: str = 'eval'

    @property
    def context(self) -> str:
        return self.via


@dataclass(frozen=True)
class DynamicRequire(Fact):
    argument: str = ''

    @property
    def context(self) -> str:
        return self.argument


@dataclass(frozen=True)
class Obfuscation(Fact):
    """High-entropy literal, de-obfuscated call, or opaque string skip."""
    reason: str = ''
    value: str = ''
    revealed: str = ''

    @property
    def context(self) -> str:
        return self.reason


@dataclass(frozen=True)
class CommandSignal(Fact):
    command: str = ''
    lifecycle: bool = False

    @property
    def context(self) -> str:
        return self.command


@dataclass(frozen=True)
class NonDeterministicSink(Fact):
    callee: str = ''
    argument: str = ''

    @property
    def context(self) -> str:
        return f'Sink {self.callee} uses non-deterministic argument ({self.argument})'


@dataclass(frozen=True)
class ExportFact(Fact):
    name: str = 'default'
    local: str | None = None
    export_type: str = 'named'

    @property
    def context(self) -> str:
        return f'export {self.name}'


@dataclass(frozen=True)
class ImportFact(Fact):
    """ImportReference: ``local`` is bound to ``imported`` from ``source``."""
    source: str = ''
    local: str = ''
    imported: str = 'default'

    @property
    def context(self) -> str:
        return f'{self.local} <- {self.source}#{self.imported}'


FACT_TYPES: dict[FactKind, type] = {
    FactKind.ENV_READ: EnvRead,
    FactKind.MASS_ENV_ACCESS: MassEnvAccess,
    FactKind.FILE_READ_SENSITIVE: PathAccess,
    FactKind.FILE_WRITE_STARTUP: PathAccess,
    FactKind.NETWORK_SINK: SinkCall,
    FactKind.DNS_SINK: SinkCall,
    FactKind.RAW_SOCKET_SINK: SinkCall,
    FactKind.SHELL_EXECUTION: SinkCall,
    FactKind.ENCODER_USE: SinkCall,
    FactKind.DYNAMIC_EXECUTION: DynamicExecution,
    FactKind.DYNAMIC_REQUIRE: DynamicRequire,
    FactKind.OBFUSCATION: Obfuscation,
    FactKind.OPAQUE_STRING_SKIP: Obfuscation,
    FactKind.REMOTE_FETCH_SIGNAL: CommandSignal,
    FactKind.PIPE_TO_SHELL_SIGNAL: CommandSignal,
    FactKind.NON_DETERMINISTIC_SINK: NonDeterministicSink,
    FactKind.EXPORTS: ExportFact,
    FactKind.IMPORTS: ImportFact,
}


def fact_from_dict(data: dict) -> Fact:
    """Rebuild a fact from its dict form. Raises KeyError/TypeError/ValueError on bad input."""
    kind = FactKind(data['kind'])
    cls = FACT_TYPES[kind]
    names = {f.name for f in fields(cls)}
    unknown = set(data) - names
    if unknown:
        raise TypeError(f'unexpected fields for {kind.value}: {sorted(unknown)}')
    kwargs = dict(data)
    kwargs['kind'] = kind
    return cls(**kwargs)


@dataclass(frozen=True)
class FlowEdge:
    from_expr: str
    to_var: str
    file: str
    line: int

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'FlowEdge':
        return cls(str(data['from_expr']), str(data['to_var']), str(data['file']), int(data['line']))


# ---------------------------
# Aggregation
# ---------------------------
class FactSet:
    """Facts grouped by kind, preserving insertion order within each kind."""

    def __init__(self, facts: Iterable[Fact] = ()):
        self._by_kind: dict[FactKind, list[Fact]] = {k: [] for k in FactKind}
        self.extend(facts)

    def add(self, fact: Fact) -> None:
        self._by_kind[fact.kind].append(fact)

    def extend(self, facts: Iterable[Fact]) -> None:
        for fact in facts:
            self.add(fact)

    def merge(self, other: 'FactSet') -> None:
        for kind in FactKind:
            self._by_kind[kind].extend(other._by_kind[kind])

    def of(self, kind: FactKind) -> list[Fact]:
        return list(self._by_kind[kind])

    def has(self, kind: FactKind) -> bool:
        return bool(self._by_kind[kind])

    def count(self, kind: FactKind) -> int:
        return len(self._by_kind[kind])

    def __iter__(self) -> Iterator[Fact]:
        for kind in FactKind:
            yield from self._by_kind[kind]

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_kind.values())

    def __eq__(self, other) -> bool:
        if not isinstance(other, FactSet):
            return NotImplemented
        return self._by_kind == other._by_kind

    def __repr__(self) -> str:
        counts = {k.value: len(v) for k, v in self._by_kind.items() if v}
        return f'FactSet({counts})'
