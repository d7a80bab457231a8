# analyzer/src/zift/parser.py
# tree-sitter adapter: source text -> syntax tree, plus node helpers.
import re

import tree_sitter_javascript as tsjs
from tree_sitter import Language, Node, Parser, Tree

from zift.errors import ParseFailure

JS_LANG = Language(tsjs.language())

STRING_TYPES = ('string', 'template_string')

_ESCAPE_RE = re.compile(r'\\(u\{[0-9a-fA-F]+\}|u[0-9a-fA-F]{4}|x[0-9a-fA-F]{2}|[0-7]{1,3}|.)', re.S)
_SIMPLE_ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', 'b': '\b', 'f': '\f', 'v': '\v', '0': '\0'}


def parse(source: str) -> Tree:
    """Parse JavaScript (module or script goal) or raise ParseFailure.

    The tree-sitter grammar accepts both ES modules and classic scripts in
    one pass, so a single parse covers what would otherwise be a module
    attempt followed by a script fallback. Any error node means the file
    is treated as unparsable.
    """
    parser = Parser(JS_LANG)
    tree = parser.parse(source.encode('utf-8'))
    if tree.root_node.has_error:
        raise ParseFailure('syntax error')
    return tree


def node_text(node: Node | None) -> str:
    if node is None or node.text is None:
        return ''
    return node.text.decode('utf-8', errors='replace')


def node_line(node: Node) -> int:
    return node.start_point[0] + 1


def call_args(node: Node) -> list[Node]:
    """Argument nodes of a call_expression / new_expression."""
    args = node.child_by_field_name('arguments')
    if args is None:
        return []
    return [c for c in args.named_children if c.type != 'comment']


def _unescape(raw: str) -> str:
    def repl(m):
        esc = m.group(1)
        if esc.startswith('u{'):
            return chr(int(esc[2:-1], 16))
        if esc[0] == 'u' and len(esc) == 5:
            return chr(int(esc[1:], 16))
        if esc[0] == 'x' and len(esc) == 3:
            return chr(int(esc[1:], 16))
        if esc.isdigit() and esc != '0':
            return chr(int(esc, 8))
        if esc == '\n':
            return ''
        return _SIMPLE_ESCAPES.get(esc, esc)
    try:
        return _ESCAPE_RE.sub(repl, raw)
    except (ValueError, OverflowError):
        return raw


def string_value(node: Node) -> str | None:
    """Value of a string literal, or of a template string with no substitutions."""
    if node.type not in STRING_TYPES:
        return None
    parts = []
    for child in node.children:
        if child.type == 'template_substitution':
            return None
        if child.type == 'string_fragment':
            parts.append(node_text(child))
        elif child.type == 'escape_sequence':
            parts.append(_unescape(node_text(child)))
    return ''.join(parts)


def literal_strings(node: Node) -> list[str]:
    """All plain string literal values under ``node`` (inclusive)."""
    out = []
    stack = [node]
    while stack:
        cur = stack.pop()
        value = string_value(cur)
        if value is not None:
            out.append(value)
            continue
        stack.extend(reversed(cur.named_children))
    return out
