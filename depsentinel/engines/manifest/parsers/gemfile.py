"""Parser for Ruby Gemfile and Gemfile.lock files.

Only the declarative subset of the Gemfile DSL is tokenized: ``source``,
``gem``, ``group``/``platforms``/``git``/``path`` blocks and conditionals.
``gemspec`` roots the lock's ``PATH`` specs. Other statements are
skipped. A statement continues onto the next line after a trailing comma
or an open bracket. A ``gem`` whose arguments are not string literals or
``key: value`` options is malformed.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass

import structlog

from depsentinel.engines.manifest.models import (
    Dependency,
    LockedSpec,
    LockSnapshot,
    Manifest,
    validate_lock_closure,
)
from depsentinel.engines.manifest.registry import register_parser
from depsentinel.engines.versioning import VersionRange, parse_version
from depsentinel.exceptions import InvalidVersionRange, MalformedManifest

log = structlog.get_logger("depsentinel.manifest")

DEFAULT_SOURCE = "https://rubygems.org"

_GEM_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_STRING_RE = re.compile(r"""^(?:"((?:[^"\\]|\\.)*)"|'((?:[^'\\]|\\.)*)')$""")
_SYMBOL_RE = re.compile(r"^:(\w+)$")
_OPTION_RE = re.compile(r"^(?::(\w+)\s*=>|(\w+):)\s*(.+)$", re.S)
_BLOCK_RE = re.compile(r"\s+do(?:\s*\|[^|]*\|)?\s*$")
_MODIFIER_RE = re.compile(r"\s+(?:if|unless)\s")
_KEYWORD_RE = re.compile(r"^\s*(\w+)")
_OPENERS = {"if", "unless", "case", "begin", "while", "until"}

# Gemfile.lock
_SECTION_RE = re.compile(r"^[A-Z][A-Z ]*$")
_SPEC_RE = re.compile(r"^ {4}(\S+) \(([^)]+)\)$")
_SPEC_DEP_RE = re.compile(r"^ {6}(\S+?)(?: \(([^)]*)\))?$")
_SOURCE_ATTR_RE = re.compile(r"^ {2}(\w+):\s*(.*)$")
_SPEC_SECTIONS = {"GEM": "", "GIT": "git:", "PATH": "path:", "PLUGIN SOURCE": "plugin:"}


@dataclass
class _Frame:
    groups: tuple[str, ...] = ()
    source: str | None = None


@dataclass(frozen=True)
class _Gemspec:
    path: str = "."
    name: str | None = None


def _gemspec(args: list[str]) -> _Gemspec:
    options: dict[str, str] = {}
    for arg in args:
        opt = _OPTION_RE.match(arg)
        if opt:
            value = _option_value(opt.group(3))
            if isinstance(value, str):
                options[opt.group(1) or opt.group(2)] = value
    path = options.get("path", ".").rstrip("/") or "."
    if path.startswith("./") and len(path) > 2:
        path = path[2:]
    return _Gemspec(path=path, name=options.get("name"))


def _scan_line(line: str, lineno: int) -> tuple[str, str]:
    """Strip a trailing comment and return ``(code, masked)``.

    *masked* has every character inside string literals replaced, so
    commas, ``#`` and keywords can be searched for without tripping on
    quoted text. Both strings have the same length.
    """
    out: list[str] = []
    quote: str | None = None
    escaped = False
    for i, ch in enumerate(line):
        if quote is None:
            if ch == "#":
                return line[:i], "".join(out)
            if ch in "\"'":
                quote = ch
            out.append(ch)
            continue
        if escaped:
            escaped = False
            out.append("x")
        elif ch == "\\":
            escaped = True
            out.append("x")
        elif ch == quote:
            quote = None
            out.append(ch)
        else:
            out.append("x")
    if quote is not None:
        raise MalformedManifest("unterminated string literal", source_file="Gemfile", line=lineno)
    return line, "".join(out)


def _open_brackets(masked: str) -> int:
    return sum(masked.count(c) for c in "([{") - sum(masked.count(c) for c in ")]}")


def _logical_lines(content: str) -> Iterator[tuple[int, str, str]]:
    """Yield ``(lineno, code, masked)`` with continuation lines joined.

    A line continues onto the next when it ends in a comma or leaves a
    bracket open; *lineno* is where the statement starts.
    """
    start = 0
    code_parts: list[str] = []
    masked_parts: list[str] = []
    for lineno, raw_line in enumerate(content.splitlines(), start=1):
        code, masked = _scan_line(raw_line, lineno)
        if not code_parts:
            if not code.strip():
                continue
            start = lineno
        elif not code.strip():
            continue
        code_parts.append(code.strip() if code_parts else code.rstrip())
        masked_parts.append(masked.strip() if masked_parts else masked.rstrip())
        joined_masked = " ".join(masked_parts)
        if joined_masked.endswith(",") or _open_brackets(joined_masked) > 0:
            continue
        yield start, " ".join(code_parts), joined_masked
        code_parts, masked_parts = [], []
    if code_parts:
        yield start, " ".join(code_parts), " ".join(masked_parts)


def _split_args(code: str, masked: str) -> list[str]:
    """Split on commas that are outside strings and brackets."""
    args: list[str] = []
    depth = 0
    start = 0
    for i, ch in enumerate(masked):
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        elif ch == "," and depth == 0:
            args.append(code[start:i].strip())
            start = i + 1
    tail = code[start:].strip()
    if tail or args:
        args.append(tail)
    return args


def _string_value(arg: str) -> str | None:
    m = _STRING_RE.match(arg)
    if not m:
        return None
    return m.group(1) if m.group(1) is not None else m.group(2)


def _option_value(raw: str) -> str | list[str]:
    raw = raw.strip()
    text = _string_value(raw)
    if text is not None:
        return text
    sym = _SYMBOL_RE.match(raw)
    if sym:
        return sym.group(1)
    if raw.startswith("[") and raw.endswith("]"):
        values: list[str] = []
        for item in raw[1:-1].split(","):
            item = item.strip()
            if not item:
                continue
            value = _option_value(item)
            values.extend(value if isinstance(value, list) else [value])
        return values
    return raw


def _as_tuple(value: str | list[str]) -> tuple[str, ...]:
    return tuple(value) if isinstance(value, list) else (value,)


def _symbols(args: list[str]) -> tuple[str, ...]:
    names = []
    for arg in args:
        m = _SYMBOL_RE.match(arg)
        if m:
            names.append(m.group(1))
        else:
            text = _string_value(arg)
            if text is not None:
                names.append(text)
    return tuple(names)


class GemfileParser:
    format_name = "gemfile"
    manifest_file = "Gemfile"
    lock_file = "Gemfile.lock"

    def parse(self, manifest_text: str, lock_text: str | None = None) -> Manifest:
        dependencies, gemspecs = self._parse_gemfile(manifest_text)
        lock = self._parse_lock(lock_text) if lock_text is not None else None
        warnings: list[str] = []
        if gemspecs:
            dependencies += self._gemspec_dependencies(gemspecs, dependencies, lock, warnings)
        if lock is not None:
            validate_lock_closure(dependencies, lock, source_file=self.lock_file)
        return Manifest(
            format=self.format_name,
            dependencies=dependencies,
            lock=lock,
            warnings=tuple(warnings),
        )

    def _gemspec_dependencies(
        self,
        gemspecs: list[_Gemspec],
        declared: tuple[Dependency, ...],
        lock: LockSnapshot | None,
        warnings: list[str],
    ) -> tuple[Dependency, ...]:
        """The project's own gems, taken from the lock's ``PATH`` specs.

        A gemspec names no gem by itself, so without a lock there is
        nothing to resolve.
        """
        names = {dep.name for dep in declared}
        found: list[Dependency] = []
        for gemspec in gemspecs:
            source = f"path:{gemspec.path}"
            specs = [
                spec
                for spec in (lock.specs if lock is not None else ())
                if spec.source == source and gemspec.name in (None, spec.name)
            ]
            if not specs:
                warnings.append(f"gemspec at {gemspec.path} has no lock entry; not resolved")
                continue
            for spec in specs:
                if spec.name in names:
                    continue
                names.add(spec.name)
                found.append(
                    Dependency(
                        name=spec.name,
                        requirement=VersionRange.any(),
                        source=source,
                        groups=("default",),
                    )
                )
        return tuple(found)

    # ── Gemfile ──────────────────────────────────────────────────────────

    def _parse_gemfile(self, content: str) -> tuple[tuple[Dependency, ...], list[_Gemspec]]:
        deps: list[Dependency] = []
        gemspecs: list[_Gemspec] = []
        stack: list[_Frame] = []
        default_source = DEFAULT_SOURCE

        for lineno, code, masked in _logical_lines(content):
            indent = len(masked) - len(masked.lstrip())
            modifier = _MODIFIER_RE.search(masked, indent)
            if modifier:
                code, masked = code[: modifier.start()], masked[: modifier.start()]

            stripped = code.strip()
            if stripped == "end":
                if not stack:
                    raise MalformedManifest(
                        "'end' without an open block", source_file="Gemfile", line=lineno
                    )
                stack.pop()
                continue
            if stripped in ("else", "ensure") or stripped.startswith(("elsif ", "when ", "rescue")):
                continue

            block = _BLOCK_RE.search(masked)
            if block:
                code, masked = code[: block.start()], masked[: block.start()]

            kw = _KEYWORD_RE.match(masked)
            if not kw:
                if block:
                    stack.append(_Frame())
                continue
            keyword = kw.group(1)
            rest_code = code[kw.end():].strip()
            rest_masked = masked[kw.end():].strip()
            if rest_masked.startswith("(") and rest_masked.endswith(")"):
                rest_code, rest_masked = rest_code[1:-1], rest_masked[1:-1]
            args = _split_args(rest_code, rest_masked)

            if keyword in _OPENERS and not block:
                stack.append(_Frame())
                continue

            if keyword == "gem":
                deps.append(self._parse_gem(args, stack, default_source, lineno))
                if block:
                    stack.append(_Frame())
                continue

            if keyword == "gemspec":
                gemspecs.append(_gemspec(args))
                continue

            if keyword == "source":
                url = _string_value(args[0]) if args else None
                if url is None:
                    raise MalformedManifest(
                        "source needs a string URL", source_file="Gemfile", line=lineno
                    )
                if block:
                    stack.append(_Frame(source=url))
                else:
                    default_source = url
                continue

            if block:
                if keyword == "group":
                    stack.append(_Frame(groups=_symbols(args)))
                elif keyword in ("git", "path") and args and _string_value(args[0]):
                    stack.append(_Frame(source=f"{keyword}:{_string_value(args[0])}"))
                else:
                    stack.append(_Frame())
                continue

            log.debug("gemfile.statement_skipped", keyword=keyword, line=lineno)

        if stack:
            raise MalformedManifest(
                f"{len(stack)} block(s) not closed with 'end'", source_file="Gemfile"
            )
        return tuple(deps), gemspecs

    def _parse_gem(
        self,
        args: list[str],
        stack: list[_Frame],
        default_source: str,
        lineno: int,
    ) -> Dependency:
        name = _string_value(args[0]) if args else None
        if name is None or not _GEM_NAME_RE.match(name):
            raise MalformedManifest(
                "gem declaration needs a quoted gem name", source_file="Gemfile", line=lineno
            )

        constraints: list[str] = []
        options: dict[str, str | list[str]] = {}
        for arg in args[1:]:
            text = _string_value(arg)
            if text is not None:
                if options:
                    raise MalformedManifest(
                        f"version constraint after options for gem {name!r}",
                        source_file="Gemfile",
                        line=lineno,
                    )
                constraints.append(text)
                continue
            opt = _OPTION_RE.match(arg)
            if not opt:
                raise MalformedManifest(
                    f"cannot tokenize argument {arg!r} for gem {name!r}",
                    source_file="Gemfile",
                    line=lineno,
                )
            key = opt.group(1) or opt.group(2)
            options[key] = _option_value(opt.group(3))

        try:
            requirement = VersionRange.parse(", ".join(constraints))
        except InvalidVersionRange as exc:
            raise MalformedManifest(
                f"gem {name!r}: {exc}", source_file="Gemfile", line=lineno
            ) from exc

        source = default_source
        groups: list[str] = []
        for frame in stack:
            groups.extend(frame.groups)
            if frame.source:
                source = frame.source
        if "source" in options:
            source = str(options["source"])
        if "git" in options:
            source = f"git:{options['git']}"
        elif "github" in options:
            source = f"git:https://github.com/{options['github']}.git"
        elif "path" in options:
            source = f"path:{options['path']}"
        for key in ("group", "groups"):
            if key in options:
                groups.extend(_as_tuple(options[key]))

        return Dependency(
            name=name,
            requirement=requirement,
            source=source,
            groups=tuple(dict.fromkeys(groups)) or ("default",),
        )

    # ── Gemfile.lock ─────────────────────────────────────────────────────

    def _parse_lock(self, content: str) -> LockSnapshot:
        specs: dict[str, LockedSpec] = {}
        section: str | None = None
        remote = ""
        current: str | None = None

        for lineno, line in enumerate(content.splitlines(), start=1):
            if not line.strip():
                continue
            if _SECTION_RE.match(line):
                section = line.strip()
                remote = ""
                current = None
                continue
            if section is None:
                raise MalformedManifest(
                    "content before the first lock section", source_file=self.lock_file, line=lineno
                )
            if section not in _SPEC_SECTIONS:
                continue

            attr = _SOURCE_ATTR_RE.match(line)
            if attr:
                if attr.group(1) == "remote":
                    remote = attr.group(2).strip()
                continue

            spec = _SPEC_RE.match(line)
            if spec:
                name = spec.group(1)
                current = name
                if name in specs:
                    # platform variants of one gem share a name
                    continue
                try:
                    version = parse_version(spec.group(2))
                except InvalidVersionRange as exc:
                    raise MalformedManifest(
                        str(exc), source_file=self.lock_file, line=lineno
                    ) from exc
                specs[name] = LockedSpec(
                    name=name,
                    version=version,
                    source=f"{_SPEC_SECTIONS[section]}{remote}",
                )
                continue

            dep = _SPEC_DEP_RE.match(line)
            if dep and current is not None:
                dep_name = dep.group(1)
                try:
                    requirement = VersionRange.parse(dep.group(2) or "")
                except InvalidVersionRange as exc:
                    raise MalformedManifest(
                        str(exc), source_file=self.lock_file, line=lineno
                    ) from exc
                parent = specs[current]
                if any(existing == dep_name for existing, _ in parent.dependencies):
                    continue
                specs[current] = LockedSpec(
                    name=parent.name,
                    version=parent.version,
                    dependencies=parent.dependencies + ((dep_name, requirement),),
                    source=parent.source,
                )
                continue

            raise MalformedManifest(
                f"unrecognized lock line {line.strip()!r}", source_file=self.lock_file, line=lineno
            )

        return LockSnapshot(specs=tuple(specs.values()))


register_parser(GemfileParser())
