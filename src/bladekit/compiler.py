"""BladeCompiler - transforms Blade template source into Jinja2 template source.

The compiled Jinja2 text is the artifact that gets cached and rendered.

Supported syntax:
- ``{{ expr }}`` escaped echo, ``{!! expr !!}`` raw echo
- ``{{-- comment --}}`` dropped, ``@{{ ... }}`` and ``@@name`` emitted literally
- ``@verbatim ... @endverbatim`` emitted literally
- control flow: ``@if/@elseif/@else/@endif``, ``@unless``, ``@isset``, ``@empty``,
  ``@foreach``, ``@forelse``, ``@break``, ``@continue``
- composition: ``@include``, ``@includeIf``, ``@includeWhen``, ``@extends``,
  ``@section``, ``@yield``, ``@parent``, ``@show``
- custom directives registered with ``directive()``
"""

from __future__ import annotations

import ast
import hashlib
import json
import logging
import os
import re
from pathlib import Path
from typing import (
    Callable,
    Container,
    Dict,
    Iterator,
    List,
    NamedTuple,
    Optional,
    Set,
    Tuple,
    Union,
)

from bladekit.artifact import CompiledArtifact, CompileResult
from bladekit.cache import CompiledCache
from bladekit.exceptions import (
    CircularTemplateReferenceError,
    TemplateCompileError,
    UnbalancedDirectiveError,
    ViewNotFoundError,
)
from bladekit.finder import ViewFinder

log = logging.getLogger(__name__)

DirectiveHandler = Callable[[Optional[str]], str]
Extension = Callable[[str, "BladeCompiler"], str]

# Global the render engine installs for key/value loops.
PAIRS_HELPER = "_blade_pairs"

_DIRECTIVE_NAME_RE = re.compile(r"^\w+$")
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _callable_name(fn: Callable) -> str:
    module = getattr(fn, "__module__", None) or "?"
    qualname = getattr(fn, "__qualname__", None) or type(fn).__qualname__
    return f"{module}.{qualname}"


class DirectiveRegistry:
    """Custom directives and source extensions owned by one compiler.

    Registration is append-only; registering an existing directive name
    replaces its handler.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, DirectiveHandler] = {}
        self._extensions: List[Extension] = []

    def register(self, name: str, handler: DirectiveHandler) -> None:
        if not _DIRECTIVE_NAME_RE.match(name):
            raise ValueError(
                f"The directive name [{name}] is not valid. "
                "Directive names must only contain alphanumeric characters and underscores."
            )
        if not callable(handler):
            raise TypeError(f"Handler for directive [{name}] must be callable")
        self._handlers[name] = handler

    def extend(self, extension: Extension) -> None:
        if not callable(extension):
            raise TypeError("Compiler extensions must be callable")
        self._extensions.append(extension)

    def get(self, name: str) -> Optional[DirectiveHandler]:
        return self._handlers.get(name)

    @property
    def handlers(self) -> Dict[str, DirectiveHandler]:
        return dict(self._handlers)

    @property
    def extensions(self) -> List[Extension]:
        return list(self._extensions)

    def fingerprint(self) -> str:
        """Identify the registered directive set across processes."""
        parts = [f"@{name}={_callable_name(h)}" for name, h in sorted(self._handlers.items())]
        parts += [f"extend={_callable_name(e)}" for e in self._extensions]
        return hashlib.sha256("\n".join(parts).encode()).hexdigest()[:16]

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


# =============================================================================
# Tokenizer
# =============================================================================

TEXT = "text"
ECHO = "echo"
RAW_ECHO = "raw_echo"
DIRECTIVE = "directive"


class Token(NamedTuple):
    kind: str
    value: str
    args: Optional[str]
    line: int


_TOKEN_RE = re.compile(r"@\{\{|\{\{--|\{!!|\{\{|@")
_NAME_RE = re.compile(r"\w+")


def _match_parenthesis(source: str, start: int) -> Optional[int]:
    """Return the index just past the ``)`` balancing ``source[start]``."""
    depth = 0
    quote: Optional[str] = None
    i = start
    while i < len(source):
        ch = source[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in "'\"":
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    return None


class _Tokenizer:
    """Single left-to-right scan of Blade source.

    Adjacent literal text (including text around dropped comments) is merged
    into one TEXT token. Directive names not in ``known`` stay literal text.
    """

    def __init__(self, source: str, known: Container[str], path: Optional[str] = None):
        self.source = source
        self.known = known
        self.path = path
        self.pos = 0
        self.line = 1
        self._text: List[str] = []
        self._text_line = 1

    def __iter__(self) -> Iterator[Token]:
        while True:
            match = _TOKEN_RE.search(self.source, self.pos)
            if match is None:
                self._literal(self.source[self.pos :])
                break

            self._literal(self.source[self.pos : match.start()])
            token = self._read(match)
            if token is not None:
                yield from self._flush()
                yield token

        yield from self._flush()

    def _literal(self, value: str) -> None:
        if not value:
            return
        if not self._text:
            self._text_line = self.line
        self._text.append(value)
        self._skip(self.pos + len(value))

    def _skip(self, to: int) -> None:
        self.line += self.source.count("\n", self.pos, to)
        self.pos = to

    def _flush(self) -> Iterator[Token]:
        if self._text:
            yield Token(TEXT, "".join(self._text), None, self._text_line)
            self._text = []

    def _read(self, match: "re.Match[str]") -> Optional[Token]:
        src = self.source
        opener = match.group()
        start = match.start()

        if opener == "{{--":
            end = src.find("--}}", match.end())
            if end == -1:
                self._literal(opener)
            else:
                self._skip(end + 4)
            return None

        if opener == "@{{":
            end = src.find("}}", match.end())
            if end == -1:
                self._literal(opener)
            else:
                self._skip(start + 1)
                self._literal(src[start + 1 : end + 2])
            return None

        if opener in ("{{", "{!!"):
            closer = "}}" if opener == "{{" else "!!}"
            end = src.find(closer, match.end())
            if end == -1:
                self._literal(opener)
                return None
            token = Token(
                ECHO if opener == "{{" else RAW_ECHO,
                src[match.end() : end].strip(),
                None,
                self.line,
            )
            self._skip(end + len(closer))
            return token

        return self._read_directive(start)

    def _read_directive(self, start: int) -> Optional[Token]:
        src = self.source

        # e-mail addresses and the like
        if start > 0 and (src[start - 1].isalnum() or src[start - 1] == "_"):
            self._literal("@")
            return None

        if src.startswith("@", start + 1):
            escaped = _NAME_RE.match(src, start + 2)
            if escaped is None:
                self._literal("@")
            else:
                self._skip(start + 1)
                self._literal(src[start + 1 : escaped.end()])
            return None

        name_match = _NAME_RE.match(src, start + 1)
        if name_match is None:
            self._literal("@")
            return None

        name = name_match.group()
        line = self.line
        if name == "verbatim":
            end = src.find("@endverbatim", name_match.end())
            if end == -1:
                raise UnbalancedDirectiveError(
                    "verbatim", "@verbatim is never closed", self.path, line
                )
            self._skip(name_match.end())
            self._literal(src[name_match.end() : end])
            self._skip(end + len("@endverbatim"))
            return None

        if name not in self.known:
            self._literal(src[start : name_match.end()])
            return None

        args: Optional[str] = None
        after = name_match.end()
        k = after
        while k < len(src) and src[k] in " \t":
            k += 1
        if k < len(src) and src[k] == "(":
            close = _match_parenthesis(src, k)
            if close is None:
                raise TemplateCompileError(
                    f"Unclosed parenthesis in @{name}", self.path, line
                )
            args = src[k + 1 : close - 1]
            after = close

        self._skip(after)
        return Token(DIRECTIVE, name, args, line)


# =============================================================================
# Code generation
# =============================================================================

_PROTECT_RE = re.compile(r"\{(?=[{%#]|\Z)|\r")


def _protect(text: str) -> str:
    """Escape literal text so Jinja2 emits it unchanged."""

    def replace(match: "re.Match[str]") -> str:
        return "{{ '{' }}" if match.group() == "{" else "{{ '\\r' }}"

    return _PROTECT_RE.sub(replace, text)


class _Output:
    """Compiled Jinja2 source being assembled.

    Every expression-bearing fragment starts on a compiled line of its own so
    a failing line maps back to exactly one Blade expression.
    """

    LINE_BREAK = "{#\n#}"

    def __init__(self) -> None:
        self._parts: List[str] = []
        self.line = 1
        self.expressions: Dict[int, str] = {}
        self.lines: Dict[int, int] = {}
        self._claimed = False

    def text(self, value: str) -> None:
        if value:
            self._write(_protect(value))

    def code(self, fragment: str) -> None:
        if fragment:
            self._write(fragment)

    def expression(self, fragment: str, expression: str, source_line: int) -> None:
        if self._claimed:
            self._write(self.LINE_BREAK)
        first = self.line
        self._write(fragment)
        for line in range(first, self.line + 1):
            self.expressions[line] = expression
            self.lines[line] = source_line
        self._claimed = True

    def _write(self, value: str) -> None:
        self._parts.append(value)
        newlines = value.count("\n")
        if newlines:
            self.line += newlines
            self._claimed = False

    def getvalue(self) -> str:
        return "".join(self._parts)


class _Block(NamedTuple):
    kind: str
    line: int


IF_LIKE = ("if", "unless", "isset", "empty")
LOOPS = ("foreach", "forelse")

# directive -> (opening kind it closes, compiled closer)
_CLOSERS: Dict[str, Tuple[str, str]] = {
    "endif": ("if", "{% endif %}"),
    "endunless": ("unless", "{% endif %}"),
    "endisset": ("isset", "{% endif %}"),
    "endempty": ("empty", "{% endif %}"),
    "endforeach": ("foreach", "{% endfor %}"),
    "endforelse": ("forelse", "{% endfor %}"),
    "endsection": ("section", "{% endblock %}"),
    "stop": ("section", "{% endblock %}"),
    "show": ("section", "{% endblock %}"),
    "overwrite": ("section", "{% endblock %}"),
}

_BUILTINS: Dict[str, str] = {
    "if": "_compile_if",
    "elseif": "_compile_elseif",
    "else": "_compile_else",
    "unless": "_compile_unless",
    "isset": "_compile_isset",
    "empty": "_compile_empty",
    "foreach": "_compile_foreach",
    "forelse": "_compile_forelse",
    "break": "_compile_break",
    "continue": "_compile_continue",
    "include": "_compile_include",
    "includeIf": "_compile_include_if",
    "includeWhen": "_compile_include_when",
    "extends": "_compile_extends",
    "section": "_compile_section",
    "yield": "_compile_yield",
    "parent": "_compile_parent",
    "json": "_compile_json",
    "endverbatim": "_compile_endverbatim",
}
_BUILTINS.update({name: "_compile_closer" for name in _CLOSERS})


class _KnownDirectives:
    def __init__(self, registry: DirectiveRegistry):
        self.registry = registry

    def __contains__(self, name: object) -> bool:
        return name in _BUILTINS or name in self.registry


class _Compilation:
    """State for compiling one source string."""

    def __init__(self, compiler: "BladeCompiler", source: str, path: Optional[str]):
        self.compiler = compiler
        self.finder = compiler.finder
        self.source = source
        self.path = path
        self.out = _Output()
        self.stack: List[_Block] = []
        self.parent: Optional[str] = None
        self.dependencies: List[str] = []
        self.blocks: Set[str] = set()
        self.line = 1

    def run(self) -> CompileResult:
        registry = self.compiler.directives
        for token in _Tokenizer(self.source, _KnownDirectives(registry), self.path):
            self.line = token.line
            if token.kind == TEXT:
                self.out.text(token.value)
            elif token.kind == ECHO:
                self._compile_echo(token.value, "{{ %s }}")
            elif token.kind == RAW_ECHO:
                self._compile_echo(token.value, "{{ (%s)|safe }}")
            else:
                handler = registry.get(token.value)
                if handler is not None:
                    self._compile_custom(token.value, handler, token.args)
                else:
                    getattr(self, _BUILTINS[token.value])(token.value, token.args)

        if self.stack:
            block = self.stack[-1]
            raise UnbalancedDirectiveError(
                block.kind, f"@{block.kind} is never closed", self.path, block.line
            )

        source = self.out.getvalue()
        if self.parent is not None:
            source = "{% extends " + json.dumps(self.parent) + " %}" + source

        return CompileResult(
            source=source,
            dependencies=list(self.dependencies),
            expressions=dict(self.out.expressions),
            lines=dict(self.out.lines),
        )

    # -- helpers -------------------------------------------------------------

    def _error(self, message: str) -> TemplateCompileError:
        return TemplateCompileError(message, self.path, self.line)

    def _unbalanced(self, directive: str, message: str) -> UnbalancedDirectiveError:
        return UnbalancedDirectiveError(directive, message, self.path, self.line)

    def _require(self, directive: str, args: Optional[str]) -> str:
        if args is None or not args.strip():
            raise self._error(f"@{directive} requires an expression")
        return args.strip()

    def _split_arguments(
        self, directive: str, args: Optional[str]
    ) -> Tuple[List[str], List[Tuple[str, str]]]:
        """Split ``'view', a=1`` style arguments into source segments."""
        args = self._require(directive, args)
        call_source = f"_({args})"
        try:
            call = ast.parse(call_source, mode="eval").body
        except SyntaxError as exc:
            raise self._error(f"Invalid arguments to @{directive}: {exc.msg}") from exc

        if not isinstance(call, ast.Call):
            raise self._error(f"Invalid arguments to @{directive}")
        positional = [ast.get_source_segment(call_source, a) or "" for a in call.args]
        keywords: List[Tuple[str, str]] = []
        for kw in call.keywords:
            if kw.arg is None:
                raise self._error(f"@{directive} does not accept ** arguments")
            keywords.append((kw.arg, ast.get_source_segment(call_source, kw.value) or ""))
        return positional, keywords

    def _literal_name(self, directive: str, segment: str) -> str:
        try:
            value = ast.literal_eval(segment)
        except (ValueError, SyntaxError):
            value = None
        if not isinstance(value, str) or not value:
            raise self._error(f"@{directive} expects a literal view name, got {segment}")
        return value

    def _block_name(self, directive: str, segment: str) -> str:
        name = self._literal_name(directive, segment)
        if not _IDENTIFIER_RE.match(name):
            raise self._error(f"Invalid section name [{name}]")
        return name

    def _open(self, kind: str) -> None:
        self.stack.append(_Block(kind, self.line))

    def _depend(self, path: Path) -> str:
        target = str(path)
        if target not in self.dependencies:
            self.dependencies.append(target)
        return target

    def _in_loop(self) -> bool:
        return any(block.kind in LOOPS for block in self.stack)

    # -- echoes ----------------------------------------------------------------

    def _compile_echo(self, expression: str, template: str) -> None:
        if not expression:
            raise self._error("Empty echo")
        self.out.expression(template % expression, expression, self.line)

    # -- conditionals ----------------------------------------------------------

    def _compile_if(self, directive: str, args: Optional[str]) -> None:
        condition = self._require(directive, args)
        self.out.expression("{% if " + condition + " %}", condition, self.line)
        self._open("if")

    def _compile_unless(self, directive: str, args: Optional[str]) -> None:
        condition = self._require(directive, args)
        self.out.expression("{% if not (" + condition + ") %}", condition, self.line)
        self._open("unless")

    def _compile_isset(self, directive: str, args: Optional[str]) -> None:
        value = self._require(directive, args)
        self.out.expression(
            "{% if (" + value + ") is defined and (" + value + ") is not none %}", value, self.line
        )
        self._open("isset")

    def _compile_empty(self, directive: str, args: Optional[str]) -> None:
        if args is None:
            # @forelse ... @empty ... @endforelse
            if not self.stack or self.stack[-1].kind != "forelse":
                raise self._unbalanced(directive, "@empty without @forelse")
            self.out.code("{% else %}")
            return

        value = self._require(directive, args)
        self.out.expression("{% if not (" + value + ") %}", value, self.line)
        self._open("empty")

    def _compile_elseif(self, directive: str, args: Optional[str]) -> None:
        condition = self._require(directive, args)
        if not self.stack or self.stack[-1].kind not in IF_LIKE:
            raise self._unbalanced(directive, "@elseif without @if")
        self.out.expression("{% elif " + condition + " %}", condition, self.line)

    def _compile_else(self, directive: str, args: Optional[str]) -> None:
        if not self.stack or self.stack[-1].kind not in IF_LIKE:
            raise self._unbalanced(directive, "@else without @if")
        self.out.code("{% else %}")

    def _compile_closer(self, directive: str, args: Optional[str]) -> None:
        kind, closer = _CLOSERS[directive]
        if not self.stack:
            raise self._unbalanced(directive, f"@{directive} without matching @{kind}")
        top = self.stack[-1]
        if top.kind != kind:
            raise self._unbalanced(
                directive,
                f"@{directive} does not close @{top.kind} opened on line {top.line}",
            )
        self.stack.pop()
        self.out.code(closer)

    def _compile_endverbatim(self, directive: str, args: Optional[str]) -> None:
        raise self._unbalanced(directive, "@endverbatim without @verbatim")

    # -- loops -----------------------------------------------------------------

    def _loop_header(self, directive: str, args: Optional[str]) -> str:
        expression = self._require(directive, args)
        parts = re.split(r"\s+as\s+", expression)
        if len(parts) < 2:
            raise self._error(f"@{directive} expects 'items as item'")
        iterable, target = " as ".join(parts[:-1]).strip(), parts[-1].strip()

        if "=>" in target:
            key, value = (t.strip() for t in target.split("=>", 1))
            for name in (key, value):
                if not _IDENTIFIER_RE.match(name):
                    raise self._error(f"Invalid loop variable [{name}] in @{directive}")
            return "{% for " + f"{key}, {value} in {PAIRS_HELPER}({iterable})" + " %}"

        if not _IDENTIFIER_RE.match(target):
            raise self._error(f"Invalid loop variable [{target}] in @{directive}")
        return "{% for " + f"{target} in {iterable}" + " %}"

    def _compile_foreach(self, directive: str, args: Optional[str]) -> None:
        header = self._loop_header(directive, args)
        self.out.expression(header, self._require(directive, args), self.line)
        self._open("foreach")

    def _compile_forelse(self, directive: str, args: Optional[str]) -> None:
        header = self._loop_header(directive, args)
        self.out.expression(header, self._require(directive, args), self.line)
        self._open("forelse")

    def _loop_control(self, directive: str, args: Optional[str]) -> None:
        if not self._in_loop():
            raise self._error(f"@{directive} outside of a loop")
        if args is not None and args.strip():
            condition = args.strip()
            self.out.expression(
                "{% if " + condition + " %}{% " + directive + " %}{% endif %}", condition, self.line
            )
        else:
            self.out.code("{% " + directive + " %}")

    _compile_break = _loop_control
    _compile_continue = _loop_control

    # -- composition -----------------------------------------------------------

    def _emit_include(self, view: str, keywords: List[Tuple[str, str]]) -> None:
        target = self._depend(self.finder.find(view))
        include = "{% include " + json.dumps(target) + " %}"
        if not keywords:
            self.out.code(include)
            return

        assignments = ", ".join(f"{key}={value}" for key, value in keywords)
        self.out.expression(
            "{% with " + assignments + " %}" + include + "{% endwith %}", assignments, self.line
        )

    def _compile_include(self, directive: str, args: Optional[str]) -> None:
        positional, keywords = self._split_arguments(directive, args)
        if len(positional) != 1:
            raise self._error(f"@{directive} expects one view name")
        self._emit_include(self._literal_name(directive, positional[0]), keywords)

    def _compile_include_if(self, directive: str, args: Optional[str]) -> None:
        positional, keywords = self._split_arguments(directive, args)
        if len(positional) != 1:
            raise self._error(f"@{directive} expects one view name")
        view = self._literal_name(directive, positional[0])
        if self.finder.exists(view):
            self._emit_include(view, keywords)

    def _compile_include_when(self, directive: str, args: Optional[str]) -> None:
        positional, keywords = self._split_arguments(directive, args)
        if len(positional) != 2:
            raise self._error(f"@{directive} expects a condition and a view name")
        condition, view = positional[0], self._literal_name(directive, positional[1])
        self.out.expression("{% if " + condition + " %}", condition, self.line)
        self._emit_include(view, keywords)
        self.out.code("{% endif %}")

    def _compile_extends(self, directive: str, args: Optional[str]) -> None:
        positional, _ = self._split_arguments(directive, args)
        if len(positional) != 1:
            raise self._error(f"@{directive} expects one view name")
        if self.parent is not None:
            raise self._error("@extends may only be used once per template")
        self.parent = self._depend(self.finder.find(self._literal_name(directive, positional[0])))

    def _define_block(self, name: str) -> None:
        if name in self.blocks:
            raise self._error(f"Section [{name}] is defined more than once")
        self.blocks.add(name)

    def _compile_section(self, directive: str, args: Optional[str]) -> None:
        positional, _ = self._split_arguments(directive, args)
        if len(positional) not in (1, 2):
            raise self._error(f"@{directive} expects a name and optional content")
        name = self._block_name(directive, positional[0])
        self._define_block(name)

        if len(positional) == 2:
            content = positional[1]
            self.out.expression(
                "{% block " + name + " %}{{ " + content + " }}{% endblock %}", content, self.line
            )
            return

        self.out.code("{% block " + name + " %}")
        self._open("section")

    def _compile_yield(self, directive: str, args: Optional[str]) -> None:
        positional, _ = self._split_arguments(directive, args)
        if len(positional) not in (1, 2):
            raise self._error(f"@{directive} expects a name and optional default")
        name = self._block_name(directive, positional[0])

        if name in self.blocks:
            self.out.code("{{ self." + name + "() }}")
            return

        self.blocks.add(name)
        if len(positional) == 2:
            default = positional[1]
            self.out.expression(
                "{% block " + name + " %}{{ " + default + " }}{% endblock %}", default, self.line
            )
        else:
            self.out.code("{% block " + name + " %}{% endblock %}")

    def _compile_parent(self, directive: str, args: Optional[str]) -> None:
        if not any(block.kind == "section" for block in self.stack):
            raise self._error("@parent outside of a section")
        self.out.code("{{ super() }}")

    def _compile_json(self, directive: str, args: Optional[str]) -> None:
        value = self._require(directive, args)
        self.out.expression("{{ (" + value + ")|tojson }}", value, self.line)

    # -- custom ----------------------------------------------------------------

    def _compile_custom(
        self, name: str, handler: DirectiveHandler, args: Optional[str]
    ) -> None:
        fragment = handler(args.strip() if args is not None else None)
        if fragment is None:
            return
        if not isinstance(fragment, str):
            raise self._error(
                f"Directive [{name}] returned {type(fragment).__name__}, expected str"
            )
        label = f"@{name}({args.strip()})" if args is not None else f"@{name}"
        self.out.expression(fragment, label, self.line)


# =============================================================================
# Compiler
# =============================================================================


class BladeCompiler:
    """Compiles Blade templates to Jinja2 source, caching artifacts by path."""

    def __init__(
        self,
        finder: ViewFinder,
        cache: Optional[CompiledCache] = None,
        directives: Optional[DirectiveRegistry] = None,
    ):
        self.finder = finder
        self.cache = cache or CompiledCache()
        self.directives = directives or DirectiveRegistry()

    def directive(self, name: str, handler: DirectiveHandler) -> None:
        """Register a custom directive.

        ``handler`` receives the argument text between the parentheses (or
        None when the directive is used without parentheses) and returns a
        Jinja2 fragment inserted verbatim into compiled output. Templates
        already compiled are not recompiled.
        """
        self.directives.register(name, handler)

    def extend(self, extension: Extension) -> None:
        """Register a callback run over raw source before compilation."""
        self.directives.extend(extension)

    def get_custom_directives(self) -> Dict[str, DirectiveHandler]:
        return self.directives.handlers

    def get_extensions(self) -> List[Extension]:
        return self.directives.extensions

    def compile_string(self, source: str, path: Optional[str] = None) -> CompileResult:
        """Compile Blade source text to Jinja2 source."""
        for extension in self.directives.extensions:
            source = extension(source, self)
        return _Compilation(self, source, path).run()

    def compile(self, path: Union[str, Path]) -> CompiledArtifact:
        """Compile a template file unconditionally and store the artifact."""
        key = self._key(path)
        with self.cache.lock(key):
            return self._compile(key, self._mtime(key))

    def is_expired(self, path: Union[str, Path]) -> bool:
        key = self._key(path)
        artifact = self.cache.get(key, self.directives.fingerprint())
        return artifact is None or artifact.source_mtime != self._mtime(key)

    def get(self, path: Union[str, Path]) -> CompiledArtifact:
        """Get a fresh artifact for a template file, compiling when stale."""
        key = self._key(path)
        fingerprint = self.directives.fingerprint()

        artifact = self.cache.get(key, fingerprint)
        if artifact is not None and artifact.source_mtime == self._mtime(key):
            return artifact

        with self.cache.lock(key):
            # another thread may have compiled it while we waited
            mtime = self._mtime(key)
            artifact = self.cache.get(key, fingerprint)
            if artifact is not None and artifact.source_mtime == mtime:
                return artifact
            return self._compile(key, mtime)

    def ensure_compiled(self, path: Union[str, Path]) -> CompiledArtifact:
        """Get a fresh artifact and make sure its dependencies are compiled.

        Raises:
            CircularTemplateReferenceError: If includes/extends form a cycle.
        """
        done: Set[str] = set()

        def visit(key: str, chain: Tuple[str, ...]) -> CompiledArtifact:
            if key in chain:
                raise CircularTemplateReferenceError([*chain, key])
            artifact = self.get(key)
            if key not in done:
                missing = [d for d in artifact.dependencies if not os.path.exists(d)]
                if missing:
                    # the name may now resolve elsewhere in the search paths
                    log.debug("Recompiling %s: %s no longer exists", key, missing[0])
                    self.finder.flush()
                    artifact = self.compile(key)
                for dependency in artifact.dependencies:
                    visit(dependency, (*chain, key))
                done.add(key)
            return artifact

        return visit(self._key(path), ())

    def _compile(self, key: str, mtime: int) -> CompiledArtifact:
        try:
            # bytes, so carriage returns survive into the compiled output
            text = Path(key).read_bytes().decode("utf-8")
        except FileNotFoundError as exc:
            raise ViewNotFoundError(key, [Path(key)]) from exc
        except UnicodeDecodeError as exc:
            raise TemplateCompileError(f"Template is not valid UTF-8: {exc.reason}", key) from exc

        result = self.compile_string(text, key)
        artifact = CompiledArtifact.from_result(
            key, mtime, result, self.directives.fingerprint()
        )
        self.cache.put(artifact)
        log.debug("Compiled %s (%d dependencies)", key, len(artifact.dependencies))
        return artifact

    def _key(self, path: Union[str, Path]) -> str:
        return str(Path(path).resolve())

    def _mtime(self, key: str) -> int:
        try:
            return os.stat(key).st_mtime_ns
        except FileNotFoundError as exc:
            raise ViewNotFoundError(key, [Path(key)]) from exc
