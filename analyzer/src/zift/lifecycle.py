# analyzer/src/zift/lifecycle.py
# Install/uninstall hooks from package.json: which source files run
# automatically, and what the hook commands themselves look like.
import json
import logging
import os
import re
from pathlib import Path

from zift.errors import ConfigurationError
from zift.facts import CommandSignal, FactKind, SinkCall

log = logging.getLogger(__name__)

# Hooks that run without the user asking for anything but an install/remove
LIFECYCLE_KEYS = [
    'preinstall', 'install', 'postinstall',
    'preuninstall', 'uninstall', 'postuninstall',
]

NODE_SCRIPT_RE = re.compile(r'node\s+([\w./\\-]+\.js)')
DIRECT_SCRIPT_RE = re.compile(r'^([\w./\\-]+\.js)(\s|$)')

# Shell spawns & downloaders, matched against the command word of each
# segment of a hook command, never against path fragments
SHELL_NAMES = {'sh', 'bash', 'zsh', 'cmd', 'cmd.exe', 'powershell', 'powershell.exe', 'pwsh'}
DOWNLOADER_NAMES = {
    'curl', 'wget', 'bitsadmin', 'certutil', 'invoke-webrequest', 'iwr', 'start-bitstransfer',
}
COMMAND_PREFIXES = {'sudo', 'env', 'exec', 'command', 'nohup'}
SEGMENT_SPLIT_RE = re.compile(r'(\|\||&&|[|;&])')
ENV_ASSIGN_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*=')
URL_RE = re.compile(r'https?://[^\s\'"]+', re.I)
NODE_EVAL_RE = re.compile(r'\bnode\s+(-e|--eval|-p|--print)\b', re.I)


def load_manifest(package_dir: str | os.PathLike) -> dict:
    """package.json as a dict; ConfigurationError if absent or unparsable."""
    path = Path(package_dir) / 'package.json'
    try:
        data = json.loads(path.read_text(encoding='utf-8'))
    except (OSError, UnicodeDecodeError, ValueError) as e:
        raise ConfigurationError(f'{path}: {e}') from e
    if not isinstance(data, dict):
        raise ConfigurationError(f'{path}: manifest is not an object')
    return data


def script_files(command: str, package_dir: str | os.PathLike) -> set[Path]:
    """Absolute paths of .js files a hook command runs."""
    base = Path(package_dir).resolve()
    found = set()
    for m in NODE_SCRIPT_RE.finditer(command):
        found.add(Path(os.path.normpath(base / m.group(1).replace('\\', '/'))))
    direct = DIRECT_SCRIPT_RE.match(command.strip())
    if direct:
        found.add(Path(os.path.normpath(base / direct.group(1).replace('\\', '/'))))
    return found


def resolve(package_dir: str | os.PathLike) -> tuple[set[Path], dict[str, str]]:
    """(lifecycle file set, hook -> command). Empty on a missing or broken manifest."""
    try:
        pkg = load_manifest(package_dir)
    except ConfigurationError as e:
        log.debug('no lifecycle context: %s', e)
        return set(), {}

    scripts = pkg.get('scripts') or {}
    if not isinstance(scripts, dict):
        return set(), {}
    files, hooks = set(), {}
    for k in LIFECYCLE_KEYS:
        cmd = scripts.get(k)
        if not cmd or not isinstance(cmd, str):
            continue
        hooks[k] = cmd
        files |= script_files(cmd, package_dir)
    return files, hooks


def command_word(segment: str) -> str | None:
    """Lowercased basename of the program a single shell segment invokes."""
    for token in segment.split():
        if ENV_ASSIGN_RE.match(token) or token in COMMAND_PREFIXES:
            continue
        token = token.strip('\'"')
        return re.split(r'[\\/]', token)[-1].lower() or None
    return None


def command_words(command: str) -> list[tuple[str | None, str]]:
    """(separator before, command word) for every segment of a hook command."""
    parts = SEGMENT_SPLIT_RE.split(command)
    out, sep = [], None
    for i, part in enumerate(parts):
        if i % 2:
            sep = part
            continue
        word = command_word(part)
        if word:
            out.append((sep, word))
    return out


def classify_script(command: str) -> list[str]:
    """Tag a lifecycle script command for risk."""
    words = command_words(command)
    tags = []
    if any(w in SHELL_NAMES for _, w in words): tags.append('shell_spawn')
    if any(w in DOWNLOADER_NAMES for _, w in words): tags.append('downloader')
    if NODE_EVAL_RE.search(command): tags.append('node_eval')
    if URL_RE.search(command): tags.append('url_in_command')
    if any(sep == '|' and w in SHELL_NAMES for sep, w in words): tags.append('pipe_to_shell')
    return tags


def _hook_line(manifest_text: str, hook: str) -> int:
    for i, line in enumerate(manifest_text.splitlines(), 1):
        if f'"{hook}"' in line:
            return i
    return 1


def hook_facts(hooks: dict[str, str], manifest_path: str | os.PathLike) -> list:
    """Lifecycle-context facts describing the hook commands themselves."""
    try:
        text = Path(manifest_path).read_text(encoding='utf-8')
    except (OSError, UnicodeDecodeError):
        text = ''
    file = str(manifest_path)
    out = []
    for hook, cmd in hooks.items():
        tags = classify_script(cmd)
        line = _hook_line(text, hook)
        if 'downloader' in tags and 'url_in_command' in tags:
            out.append(CommandSignal(FactKind.REMOTE_FETCH_SIGNAL, file, line, command=cmd, lifecycle=True))
        if 'pipe_to_shell' in tags:
            out.append(CommandSignal(FactKind.PIPE_TO_SHELL_SIGNAL, file, line, command=cmd, lifecycle=True))
        if any(t in tags for t in ('shell_spawn', 'downloader', 'node_eval')):
            out.append(SinkCall(FactKind.SHELL_EXECUTION, file, line, callee=f'scripts.{hook}', lifecycle=True))
    return out
