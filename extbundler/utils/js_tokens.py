"""Minimal JavaScript tokenizer for source rewrites on bundled output.

Only what is needed to tell code apart from strings, template literals,
comments and regular expression literals. It does not build an AST.
"""

import re
from dataclasses import dataclass
from typing import List, Optional

IDENT = 'ident'
PUNCT = 'punct'
STRING = 'string'
TEMPLATE = 'template'
REGEX = 'regex'
NUMBER = 'number'

_IDENT_RE = re.compile(r'#?[A-Za-z_$\u0080-\uffff][\w$\u0080-\uffff]*')
_NUMBER_RE = re.compile(r'\.?\d[\w.]*(?:[eE][+-]\d+)?n?')
_PUNCTUATORS = sorted(
    [
        '>>>=', '...', '===', '!==', '**=', '<<=', '>>=', '>>>', '&&=', '||=', '??=',
        '=>', '==', '!=', '<=', '>=', '&&', '||', '??', '?.', '++', '--', '+=', '-=',
        '*=', '/=', '%=', '&=', '|=', '^=', '**', '<<', '>>',
        '{', '}', '(', ')', '[', ']', ';', ',', '<', '>', '+', '-', '*', '/', '%',
        '&', '|', '^', '!', '~', '?', ':', '=', '.', '@',
    ],
    key=len,
    reverse=True,
)

# Keywords after which a "/" starts a regular expression literal, and a
# "{" starts an object literal
_REGEX_AFTER_KEYWORDS = {
    'return', 'typeof', 'instanceof', 'in', 'of', 'new', 'delete', 'void',
    'throw', 'case', 'do', 'else', 'yield', 'await',
}

_SUBSTITUTION = 'substitution'
_BLOCK = 'block'
_OBJECT = 'object'


@dataclass
class Token:
    kind: str
    value: str
    start: int
    end: int
    newline_before: bool = False


class TokenizeError(ValueError):
    pass


def _regex_allowed(prev: Optional[Token], closed_block: bool) -> bool:
    if prev is None:
        return True
    if prev.kind == PUNCT:
        if prev.value == '}':
            return closed_block
        return prev.value not in (')', ']')
    if prev.kind == IDENT:
        return prev.value in _REGEX_AFTER_KEYWORDS
    return False


def _brace_kind(prev: Optional[Token]) -> str:
    """Classify a "{" as a statement block or an object literal from the token before it."""
    if prev is None:
        return _BLOCK
    if prev.kind == PUNCT:
        return _BLOCK if prev.value in (')', ';', '{', '}', '=>') else _OBJECT
    if prev.kind == IDENT:
        return _OBJECT if prev.value in _REGEX_AFTER_KEYWORDS - {'do', 'else'} else _BLOCK
    return _OBJECT


def tokenize(source: str) -> List[Token]:
    """
    Split JavaScript source into tokens, dropping whitespace and comments.

    Raises:
        TokenizeError: on an unterminated string, template, comment or regex
    """
    tokens: List[Token] = []
    # One entry per open "{": _SUBSTITUTION, _BLOCK or _OBJECT
    braces: List[str] = []
    closed_block = False
    pos = 0
    length = len(source)
    newline = False

    def scan_template(start: int) -> int:
        """Scan template text from ``start`` (just past ` or }) to its end or next ${."""
        i = start
        while i < length:
            ch = source[i]
            if ch == '\\':
                i += 2
                continue
            if ch == '`':
                return i + 1
            if ch == '$' and source.startswith('${', i):
                braces.append(_SUBSTITUTION)
                return i + 2
            i += 1
        raise TokenizeError(f"Unterminated template literal at {start}")

    while pos < length:
        ch = source[pos]

        if ch in ' \t\r\n\f\v\u00a0\ufeff\u2028\u2029':
            if ch in '\n\r\u2028\u2029':
                newline = True
            pos += 1
            continue

        if source.startswith('//', pos):
            end = source.find('\n', pos)
            pos = length if end == -1 else end
            continue

        if source.startswith('/*', pos):
            end = source.find('*/', pos + 2)
            if end == -1:
                raise TokenizeError(f"Unterminated comment at {pos}")
            if '\n' in source[pos:end]:
                newline = True
            pos = end + 2
            continue

        start = pos
        prev = tokens[-1] if tokens else None
        closes_block = False

        if ch in '"\'':
            i = pos + 1
            while i < length and source[i] != ch:
                if source[i] == '\\':
                    i += 1
                elif source[i] == '\n':
                    raise TokenizeError(f"Unterminated string at {start}")
                i += 1
            if i >= length:
                raise TokenizeError(f"Unterminated string at {start}")
            pos = i + 1
            kind = STRING
        elif ch == '`':
            pos = scan_template(pos + 1)
            kind = TEMPLATE
        elif ch == '}' and braces and braces[-1] == _SUBSTITUTION:
            braces.pop()
            pos = scan_template(pos + 1)
            kind = TEMPLATE
        elif ch == '/' and _regex_allowed(prev, closed_block):
            i = pos + 1
            in_class = False
            while i < length:
                c = source[i]
                if c == '\\':
                    i += 2
                    continue
                if c == '\n':
                    raise TokenizeError(f"Unterminated regex at {start}")
                if c == '[':
                    in_class = True
                elif c == ']':
                    in_class = False
                elif c == '/' and not in_class:
                    break
                i += 1
            if i >= length:
                raise TokenizeError(f"Unterminated regex at {start}")
            i += 1
            while i < length and (source[i].isalnum() or source[i] in '_$'):
                i += 1
            pos = i
            kind = REGEX
        elif ch.isdigit() or (ch == '.' and pos + 1 < length and source[pos + 1].isdigit()):
            match = _NUMBER_RE.match(source, pos)
            pos = match.end()
            kind = NUMBER
        else:
            match = _IDENT_RE.match(source, pos)
            if match:
                pos = match.end()
                kind = IDENT
            else:
                punct = next((p for p in _PUNCTUATORS if source.startswith(p, pos)), None)
                if punct is None:
                    raise TokenizeError(f"Unexpected character {ch!r} at {pos}")
                if punct == '{':
                    braces.append(_brace_kind(prev))
                elif punct == '}' and braces:
                    closes_block = braces.pop() == _BLOCK
                pos += len(punct)
                kind = PUNCT

        tokens.append(Token(kind, source[start:pos], start, pos, newline))
        closed_block = closes_block
        newline = False

    return tokens
