# analyzer/src/zift/rules.py
# Declarative rule catalog. Rules name fact kinds only; narrow kinds
# (DNS_SINK, RAW_SOCKET_SINK, ...) come from the extractor, so nothing in
# the engine needs to know which rule it is scoring.
from dataclasses import dataclass

from zift.facts import FactKind as K


@dataclass(frozen=True)
class Rule:
    id: str
    alias: str
    name: str
    required_kinds: tuple[K, ...]
    optional_kinds: tuple[K, ...] = ()
    base_score: int = 0
    priority: int = 0
    description: str = ''


RULES: tuple[Rule, ...] = (
    Rule('ZFT-001', 'ENV_EXFILTRATION', 'Environment Variable Exfiltration',
         (K.ENV_READ, K.NETWORK_SINK), (K.OBFUSCATION,), 40, 90,
         'Environment variables read and sent over the network.'),
    Rule('ZFT-002', 'SENSITIVE_FILE_EXFILTRATION', 'Sensitive File Exfiltration',
         (K.FILE_READ_SENSITIVE, K.NETWORK_SINK), (), 50, 95,
         'Sensitive files (e.g. .ssh, .env) read and sent over the network.'),
    Rule('ZFT-003', 'PERSISTENCE_ATTEMPT', 'Persistence Attempt',
         (K.FILE_WRITE_STARTUP,), (), 60, 70,
         'Writes to startup locations, shell profiles, package.json or npm configuration.'),
    Rule('ZFT-004', 'OBFUSCATED_EXECUTION', 'Obfuscated Execution',
         (K.OBFUSCATION, K.DYNAMIC_EXECUTION), (), 40, 80,
         'High-entropy or de-obfuscated strings executed via eval or the Function constructor.'),
    Rule('ZFT-005', 'SHELL_COMMAND_EXECUTION', 'Shell Command Execution',
         (K.SHELL_EXECUTION,), (K.ENV_READ, K.FILE_READ_SENSITIVE), 50, 60,
         'Shell command execution (child_process or a shell-spawning install hook).'),
    Rule('ZFT-006', 'DYNAMIC_REQUIRE_DEPENDENCY', 'Dynamic Require Dependency',
         (K.DYNAMIC_REQUIRE,), (), 30, 30,
         'require()/import() where the module name is computed at runtime.'),
    Rule('ZFT-007', 'DNS_EXFILTRATION', 'DNS-Based Exfiltration',
         (K.ENV_READ, K.DNS_SINK), (), 45, 85,
         'Environment variable exfiltration via DNS lookups.'),
    Rule('ZFT-008', 'SUSPICIOUS_COLLECTION', 'Suspicious Information Collection',
         (K.MASS_ENV_ACCESS,), (K.FILE_READ_SENSITIVE,), 20, 20,
         'Mass environment or file reading without immediate network activity (potential harvesting).'),
    Rule('ZFT-009', 'REMOTE_DROPPER_PATTERN', 'Remote Script Dropper',
         (K.SHELL_EXECUTION, K.REMOTE_FETCH_SIGNAL), (K.PIPE_TO_SHELL_SIGNAL, K.OBFUSCATION), 55, 92,
         'Remote script download and execution (curl | sh) patterns.'),
    Rule('ZFT-010', 'ENCRYPTED_EXFILTRATION', 'Encrypted Data Exfiltration',
         (K.ENCODER_USE, K.NETWORK_SINK), (), 50, 75,
         'Data encoded or encrypted before being sent over the network.'),
    Rule('ZFT-011', 'RAW_SOCKET_TUNNEL', 'Raw Socket Tunneling',
         (K.RAW_SOCKET_SINK,), (), 45, 65,
         'Raw sockets instead of http/dns, often used for reverse shells.'),
    Rule('ZFT-012', 'EVASIVE_SINK_CONSTRUCTION', 'Evasive Sink Construction',
         (K.NON_DETERMINISTIC_SINK,), (), 50, 78,
         'Dangerous sink called with time- or random-derived arguments to defeat signature matching.'),
    Rule('ZFT-013', 'OPAQUE_PAYLOAD', 'Opaque Embedded Payload',
         (K.OPAQUE_STRING_SKIP,), (K.DYNAMIC_EXECUTION,), 35, 40,
         'Very large high-entropy string literal, likely an embedded packed payload.'),
)

# Kind categories used by the cluster bonus and the severity floor
READ_KINDS = frozenset({K.ENV_READ, K.FILE_READ_SENSITIVE, K.MASS_ENV_ACCESS})
SINK_KINDS = frozenset({
    K.NETWORK_SINK, K.DNS_SINK, K.RAW_SOCKET_SINK, K.NON_DETERMINISTIC_SINK,
    K.DYNAMIC_EXECUTION, K.SHELL_EXECUTION, K.DYNAMIC_REQUIRE,
})
DANGEROUS_SINK_KINDS = frozenset({K.NETWORK_SINK, K.DNS_SINK, K.RAW_SOCKET_SINK, K.SHELL_EXECUTION})

OPTIONAL_BONUS = 20
CLUSTER_BONUS = 40
LIFECYCLE_MULTIPLIER = 2.0
ENCODER_MULTIPLIER = 1.5
MAX_SCORE = 100

SEVERITY_BANDS = (
    (90, 'Critical'),
    (70, 'High'),
    (50, 'Medium'),
)


def classify(score: int) -> str:
    for floor, label in SEVERITY_BANDS:
        if score >= floor:
            return label
    return 'Low'
