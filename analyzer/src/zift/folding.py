# analyzer/src/zift/folding.py
# Bounded constant folder used to de-obfuscate call expressions such as
#   ['l','a','v','e'].reverse().join('')   or   global['ev' + 'al'](code)
#
# This is a tiny interpreter over the syntax tree, not an evaluator of the
# source: it knows literals, '+', indexing, .join() and .reverse() and
# nothing else, so there is no capability to reach. The "is it safe to
# try" gate below is a token denylist. It is a triage heuristic and must
# not be read as a security boundary.
import time

from tree_sitter import Node

from zift.errors import FoldError
from zift.parser import STRING_TYPES, node_text, string_value

FOLD_TIMEOUT = 0.05     # seconds
MAX_STEPS = 5000
MAX_VALUE_LEN = 4096

DENY_TOKENS = ('process', 'require', 'fs', 'child_process')
FOLD_HINTS = ('[', '+', 'join', 'reverse')


def foldable(text: str) -> bool:
    """Cheap textual gate applied before any folding is attempted."""
    if any(tok in text for tok in DENY_TOKENS):
        return False
    return any(hint in text for hint in FOLD_HINTS)


def _js_string(value) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(value)
    if isinstance(value, list):
        return ','.join(_js_string(v) for v in value)
    raise FoldError(f'cannot stringify {type(value).__name__}')


class _Folder:

    def __init__(self, timeout: float):
        self.deadline = time.monotonic() + timeout
        self.steps = 0

    def _tick(self):
        self.steps += 1
        if self.steps > MAX_STEPS or time.monotonic() > self.deadline:
            raise FoldError('evaluation budget exhausted')

    def _checked(self, value):
        if isinstance(value, (str, list)) and len(value) > MAX_VALUE_LEN:
            raise FoldError('value too large')
        return value

    def eval(self, node: Node):
        self._tick()
        kind = node.type
        if kind in STRING_TYPES:
            value = string_value(node)
            if value is None:
                raise FoldError('template with substitutions')
            return value
        if kind == 'number':
            return self._number(node_text(node))
        if kind == 'parenthesized_expression':
            inner = [c for c in node.named_children if c.type != 'comment']
            if len(inner) != 1:
                raise FoldError('sequence expression')
            return self.eval(inner[0])
        if kind == 'array':
            return self._checked([self.eval(c) for c in node.named_children if c.type != 'comment'])
        if kind == 'binary_expression':
            return self._plus(node)
        if kind == 'subscript_expression':
            return self._index(node)
        if kind == 'call_expression':
            return self._method_call(node)
        raise FoldError(f'unsupported node {kind}')

    def _number(self, text: str):
        text = text.replace('_', '')
        try:
            if text.lower().startswith(('0x', '0o', '0b')):
                return int(text, 0)
            value = float(text)
        except ValueError as e:
            raise FoldError(f'bad number {text}') from e
        return int(value) if value.is_integer() else value

    def _plus(self, node: Node):
        op = node.child_by_field_name('operator')
        if op is None or op.type != '+':
            raise FoldError('only concatenation is folded')
        left = self.eval(node.child_by_field_name('left'))
        right = self.eval(node.child_by_field_name('right'))
        numeric = (int, float)
        if isinstance(left, numeric) and isinstance(right, numeric) \
                and not isinstance(left, bool) and not isinstance(right, bool):
            return left + right
        return self._checked(_js_string(left) + _js_string(right))

    def _index(self, node: Node):
        target = self.eval(node.child_by_field_name('object'))
        index = self.eval(node.child_by_field_name('index'))
        if isinstance(index, float) and index.is_integer():
            index = int(index)
        if not isinstance(target, (str, list)) or not isinstance(index, int) or isinstance(index, bool):
            raise FoldError('unsupported index')
        if index < 0 or index >= len(target):
            raise FoldError('index out of range')
        return target[index]

    def _method_call(self, node: Node):
        func = node.child_by_field_name('function')
        if func is None or func.type != 'member_expression':
            raise FoldError('only .join/.reverse calls are folded')
        method = node_text(func.child_by_field_name('property'))
        target = self.eval(func.child_by_field_name('object'))
        args_node = node.child_by_field_name('arguments')
        args = [self.eval(a) for a in (args_node.named_children if args_node else []) if a.type != 'comment']
        if not isinstance(target, list):
            raise FoldError(f'.{method} on non-array')
        if method == 'reverse' and not args:
            return list(reversed(target))
        if method == 'join' and len(args) <= 1:
            sep = ',' if not args else args[0]
            if not isinstance(sep, str):
                raise FoldError('non-string separator')
            return self._checked(sep.join(_js_string(v) for v in target))
        raise FoldError(f'method {method} not folded')


def fold(node: Node, timeout: float = FOLD_TIMEOUT):
    """Evaluate ``node`` with the narrow interpreter. Raises FoldError."""
    if not foldable(node_text(node)):
        raise FoldError('expression refused by token gate')
    try:
        return _Folder(timeout).eval(node)
    except RecursionError as e:
        raise FoldError('expression nested too deeply') from e


def try_fold(node: Node, timeout: float = FOLD_TIMEOUT) -> str | None:
    """String result of folding ``node``; None when nothing was revealed."""
    try:
        value = fold(node, timeout)
    except FoldError:
        return None
    return value if isinstance(value, str) else None
