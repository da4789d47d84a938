"""Release-mode script finalization with a rename cache shared across artifacts."""

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple
import logging

from ..utils.exceptions import CompileFailure
from ..utils.js_tokens import (
    IDENT, NUMBER, PUNCT, REGEX, STRING, TEMPLATE, Token, TokenizeError, tokenize,
)
from ..utils.node_utils import run_node_json
from .bundler import BuildArtifact

logger = logging.getLogger(__name__)


class RenameCache:
    """
    Original identifier -> mangled identifier, in terser's ``nameCache`` layout.

    One instance is created per build and handed to every minifier call so
    that a name shared between scripts (e.g. a ``$$event`` property used by
    both the popup and the service worker) is shortened the same way
    everywhere. It is updated in place and never reset during a run.
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self.data: Dict[str, Any] = data if data is not None else {}

    def update(self, data: Dict[str, Any]) -> None:
        """Replace the contents with the cache returned by the minifier."""
        if data is self.data:
            return
        self.data.clear()
        self.data.update(copy.deepcopy(data))

    def _section(self, section: str) -> Dict[str, str]:
        # terser prefixes every key with "$"
        entries = self.data.get(section, {}).get('props', {})
        return {key[1:]: value for key, value in entries.items()}

    @property
    def properties(self) -> Dict[str, str]:
        return self._section('props')

    @property
    def variables(self) -> Dict[str, str]:
        return self._section('vars')

    def property_name(self, original: str) -> Optional[str]:
        return self.properties.get(original)

    def variable_name(self, original: str) -> Optional[str]:
        return self.variables.get(original)

    def __len__(self) -> int:
        return len(self.properties) + len(self.variables)

    def __repr__(self) -> str:
        return f"RenameCache(vars={self.variables!r}, props={self.properties!r})"


@dataclass
class MinifyOptions:
    """Minifier settings applied to every release script."""

    ecma: int = 2020
    module: bool = True
    # Only properties following the private naming convention are mangled
    mangle_properties: str = r'^\$\$|^(__click)$'
    pure_funcs: List[str] = field(default_factory=lambda: ['performance.mark', 'performance.measure'])
    passes: int = 2
    semicolons: bool = False

    def to_terser(self) -> Dict[str, Any]:
        return {
            'ecma': self.ecma,
            'module': self.module,
            'compress': {
                # Keep functions out of line so stack traces stay readable
                'reduce_funcs': False,
                'hoist_funs': True,
                'pure_funcs': list(self.pure_funcs),
                'passes': self.passes,
            },
            'mangle': {
                'properties': {
                    'regex': {'source': self.mangle_properties, 'flags': ''},
                },
            },
            'format': {
                'semicolons': self.semicolons,
            },
        }


class Minifier:
    """Interface to a code minifier sharing a rename cache between calls."""

    def minify(self, source: str, options: MinifyOptions, name_cache: RenameCache) -> str:
        raise NotImplementedError


_TERSER_SCRIPT = """
import { minify } from 'terser';

let input = '';
for await (const chunk of process.stdin) input += chunk;
const req = JSON.parse(input);

const options = req.options;
const props = options.mangle?.properties;
if (props?.regex) props.regex = new RegExp(props.regex.source, props.regex.flags);

const nameCache = req.nameCache;
const result = await minify(req.code, { ...options, nameCache });
process.stdout.write(JSON.stringify({ code: result.code ?? '', nameCache }));
"""


class TerserMinifier(Minifier):
    """Runs terser under Node in the extension project."""

    def __init__(self, project_dir: Path, node_binary: str = 'node'):
        self.project_dir = project_dir
        self.node_binary = node_binary

    def minify(self, source: str, options: MinifyOptions, name_cache: RenameCache) -> str:
        result = run_node_json(
            _TERSER_SCRIPT,
            {
                'code': source,
                'options': options.to_terser(),
                'nameCache': name_cache.data,
            },
            cwd=self.project_dir,
            tool='terser',
            node_binary=self.node_binary,
        )
        name_cache.update(result.get('nameCache') or {})
        return result.get('code', '')


# Assignment operators; "=" also covers destructuring targets
_ASSIGN_OPS = {
    '=', '+=', '-=', '*=', '/=', '%=', '**=', '<<=', '>>=', '>>>=',
    '&=', '|=', '^=', '&&=', '||=', '??=',
}
_UPDATE_OPS = {'++', '--'}
_NON_OPERAND_KEYWORDS = {
    'return', 'typeof', 'instanceof', 'in', 'of', 'new', 'delete', 'void',
    'throw', 'case', 'do', 'else', 'yield', 'await',
}
_CONTROL_KEYWORDS = {'if', 'for', 'while', 'switch', 'with'}
_OPEN = {'(': ')', '[': ']', '{': '}'}
_CLOSE = {')', ']', '}'}


def _is_member_access(tokens: List[Token], i: int) -> bool:
    return i > 0 and tokens[i - 1].value in ('.', '?.')


def _ends_operand(token: Token) -> bool:
    if token.kind == IDENT:
        return token.value not in _NON_OPERAND_KEYWORDS
    if token.kind in (NUMBER, STRING, TEMPLATE, REGEX):
        return True
    return token.value in (')', ']')


def _continues_expression(token: Token) -> bool:
    """Whether ``token`` on a new line can still extend the previous expression."""
    return token.kind in (PUNCT, TEMPLATE) or token.value in ('in', 'instanceof')


def is_const_declaration(tokens: List[Token], i: int) -> bool:
    """True when ``tokens[i]`` is the ``const`` keyword starting a declaration."""
    token = tokens[i]
    if token.kind != IDENT or token.value != 'const' or _is_member_access(tokens, i):
        return False
    if i + 1 >= len(tokens):
        return False
    following = tokens[i + 1]
    return following.kind == IDENT or following.value in ('{', '[')


def _binding_names(tokens: List[Token], i: int) -> Tuple[List[int], int]:
    """
    Collect identifier indexes bound by the pattern starting at ``tokens[i]``.

    Handles plain names, object/array destructuring and parameter lists.
    Default-value expressions inside patterns are skipped.

    Returns:
        (indexes of bound identifiers, index just past the pattern)
    """
    n = len(tokens)
    if i >= n:
        return [], i
    if tokens[i].kind == IDENT:
        return [i], i + 1
    if tokens[i].value not in _OPEN:
        return [], i

    names = []
    depth = 0
    j = i
    while j < n:
        token = tokens[j]
        if token.kind == PUNCT and token.value in _OPEN:
            depth += 1
        elif token.kind == PUNCT and token.value in _CLOSE:
            depth -= 1
            if depth == 0:
                return names, j + 1
        elif token.kind == PUNCT and token.value == '=':
            # Skip the default value up to the next "," or closing bracket
            inner = 0
            j += 1
            while j < n:
                value = tokens[j].value if tokens[j].kind == PUNCT else None
                if value in _OPEN:
                    inner += 1
                elif value in _CLOSE:
                    if inner == 0:
                        break
                    inner -= 1
                elif value == ',' and inner == 0:
                    break
                j += 1
            continue
        elif token.kind == IDENT and j + 1 < n and not _is_member_access(tokens, j):
            if tokens[j + 1].value in (',', '}', ']', ')', '='):
                names.append(j)
        j += 1
    return names, j


def _declarators(tokens: List[Token], i: int) -> List[int]:
    """
    Identifier indexes bound by the ``const``/``let``/``var`` keyword at ``i``.

    Initializers are skipped by bracket depth, so function and class
    expressions do not end the declaration early.
    """
    n = len(tokens)
    names, j = _binding_names(tokens, i + 1)
    depth = 0
    while j < n:
        token = tokens[j]
        if token.kind == PUNCT and token.value in _OPEN:
            depth += 1
        elif token.kind == PUNCT and token.value in _CLOSE:
            depth -= 1
            if depth < 0:
                break
        elif depth == 0 and token.kind == PUNCT and token.value == ';':
            break
        elif depth == 0 and token.kind == PUNCT and token.value == ',':
            more, j = _binding_names(tokens, j + 1)
            names.extend(more)
            continue
        elif depth == 0 and token.newline_before and not _continues_expression(token) and (
            _ends_operand(tokens[j - 1]) or tokens[j - 1].value == '}'
        ):
            # Automatic semicolon insertion ended the declaration
            break
        j += 1
    return names


def _matching_open(tokens: List[Token], close: int) -> Optional[int]:
    depth = 0
    for k in range(close, -1, -1):
        value = tokens[k].value if tokens[k].kind == PUNCT else None
        if value == ')':
            depth += 1
        elif value == '(':
            depth -= 1
            if depth == 0:
                return k
    return None


def _is_control_head(tokens: List[Token], start: int) -> bool:
    """True when the parenthesis at ``start`` belongs to if/for/while/switch/with."""
    before = tokens[start - 1] if start > 0 else None
    if before is None or before.kind != IDENT:
        return False
    if before.value == 'await' and start > 1:
        # for await (...)
        return tokens[start - 2].value == 'for'
    return before.value in _CONTROL_KEYWORDS


def _other_bindings(tokens: List[Token]) -> Set[str]:
    """Names bound by anything other than ``const``: let/var, functions, classes, params."""
    names: Set[str] = set()
    n = len(tokens)

    for i, token in enumerate(tokens):
        if token.kind == IDENT and not _is_member_access(tokens, i):
            if token.value in ('let', 'var') and i + 1 < n and (
                tokens[i + 1].kind == IDENT or tokens[i + 1].value in ('{', '[')
            ):
                names.update(tokens[k].value for k in _declarators(tokens, i))
            elif token.value in ('function', 'class') and i + 1 < n and tokens[i + 1].kind == IDENT:
                names.add(tokens[i + 1].value)
            elif i + 1 < n and tokens[i + 1].value == '=>':
                names.add(token.value)

        if token.kind == PUNCT and token.value == ')' and i + 1 < n and tokens[i + 1].value in ('=>', '{'):
            start = _matching_open(tokens, i)
            if start is None:
                continue
            if tokens[i + 1].value == '{':
                if _is_control_head(tokens, start):
                    continue
            params, _ = _binding_names(tokens, start)
            names.update(tokens[k].value for k in params)

    return names


def _class_members(tokens: List[Token]) -> Set[int]:
    """Indexes of tokens directly inside a class body (field names and initializers)."""
    members: Set[int] = set()
    n = len(tokens)
    for i, token in enumerate(tokens):
        if token.kind != IDENT or token.value != 'class' or _is_member_access(tokens, i):
            continue
        if i + 1 < n and tokens[i + 1].value == ':':
            continue

        j = i + 1
        depth = 0
        while j < n:
            value = tokens[j].value if tokens[j].kind == PUNCT else None
            if value == '{' and depth == 0:
                break
            if value in ('(', '['):
                depth += 1
            elif value in (')', ']'):
                depth -= 1
            j += 1

        depth = 0
        for k in range(j + 1, n):
            value = tokens[k].value if tokens[k].kind == PUNCT else None
            if value in _OPEN:
                depth += 1
            elif value in _CLOSE:
                if depth == 0:
                    break
                depth -= 1
            elif depth == 0:
                members.add(k)
    return members


def _assignment_sites(tokens: List[Token], skip: Set[int]) -> Dict[str, int]:
    """Map each assigned or updated identifier to its first token index."""
    sites: Dict[str, int] = {}
    n = len(tokens)
    skip = skip | _class_members(tokens)
    for i, token in enumerate(tokens):
        if token.kind != IDENT or i in skip or _is_member_access(tokens, i):
            continue
        following = tokens[i + 1] if i + 1 < n else None
        preceding = tokens[i - 1] if i > 0 else None

        assigned = False
        if following is not None and following.kind == PUNCT:
            if following.value in _ASSIGN_OPS:
                assigned = True
            elif following.value in _UPDATE_OPS and not following.newline_before:
                assigned = True
        if preceding is not None and preceding.kind == PUNCT and preceding.value in _UPDATE_OPS:
            before = tokens[i - 2] if i > 1 else None
            if preceding.newline_before or before is None or not _ends_operand(before):
                assigned = True

        if assigned:
            sites.setdefault(token.value, i)
    return sites


def verify_const_bindings(source: str, tokens: Optional[List[Token]] = None) -> None:
    """
    Check that no name declared only with ``const`` is ever reassigned.

    Turning ``const`` into ``let`` would silently legalize such an
    assignment, so the rewrite is refused instead. The check is not scope
    aware: a name that is also bound by ``let``/``var``, a function, a class
    or a parameter anywhere in the script is not checked.

    Raises:
        CompileFailure: when a const-only name is assigned
    """
    if tokens is None:
        tokens = _tokenize(source)

    declared: Dict[str, int] = {}
    declaration_sites: Set[int] = set()
    for i in range(len(tokens)):
        if is_const_declaration(tokens, i):
            for k in _declarators(tokens, i):
                declaration_sites.add(k)
                declared.setdefault(tokens[k].value, k)

    if not declared:
        return

    others = _other_bindings(tokens)
    sites = _assignment_sites(tokens, declaration_sites)
    conflicts = sorted(
        name for name in declared
        if name in sites and name not in others
    )
    if conflicts:
        details = ', '.join(
            f"{name} (offset {tokens[sites[name]].start})" for name in conflicts
        )
        raise CompileFailure(f"const binding reassigned, refusing const->let rewrite: {details}")


def rewrite_const_declarations(source: str) -> Tuple[str, int]:
    """
    Turn ``const`` declarations into ``let`` so the minifier can join them.

    Strings, template literals, comments, regex literals and property names
    are left untouched. The source is verified first with
    :func:`verify_const_bindings`.

    Returns:
        (rewritten source, number of declarations rewritten)
    """
    tokens = _tokenize(source)
    verify_const_bindings(source, tokens)

    parts = []
    last = 0
    count = 0
    for i, token in enumerate(tokens):
        if is_const_declaration(tokens, i):
            parts.append(source[last:token.start])
            parts.append('let')
            last = token.end
            count += 1
    parts.append(source[last:])
    return ''.join(parts), count


def _tokenize(source: str) -> List[Token]:
    try:
        return tokenize(source)
    except TokenizeError as e:
        raise CompileFailure(f"Cannot scan script for const rewrite: {e}") from None


class JsFinalizer:
    """Rewrites and minifies release scripts in place, one shared rename cache per run."""

    def __init__(self, minifier: Minifier, options: Optional[MinifyOptions] = None):
        self.minifier = minifier
        self.options = options or MinifyOptions()

    def finalize_artifact(self, artifact: BuildArtifact, rename_cache: RenameCache) -> BuildArtifact:
        """Rewrite, minify and overwrite one script."""
        source = artifact.text()
        source, rewritten = rewrite_const_declarations(source)
        logger.debug(f"{artifact.path.name}: rewrote {rewritten} const declarations")

        code = self.minifier.minify(source, self.options, rename_cache)
        artifact.write(code)
        logger.info(f"Minified {artifact.path.name}: {len(source)} -> {len(code)} chars")
        return artifact

    def finalize(self, artifacts: Sequence[BuildArtifact], rename_cache: RenameCache) -> List[BuildArtifact]:
        """
        Finalize every entry script in the given order.

        The order matters: names enter the rename cache on first use, so the
        same sequence of scripts always yields the same short names.

        Args:
            artifacts: Bundler outputs, in finalization order
            rename_cache: Cache shared by every call in this run

        Returns:
            The artifacts that were rewritten
        """
        done = []
        for artifact in artifacts:
            if not artifact.is_entry:
                logger.debug(f"Skipping chunk {artifact.path.name}")
                continue
            done.append(self.finalize_artifact(artifact, rename_cache))
        return done
