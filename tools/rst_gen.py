#!/usr/bin/env python3
"""rst_gen Reset() method generator.

Input:  Go source files of one package.
Output: Go source with a generated Reset() method for every selected struct.
"""

from __future__ import annotations

import argparse
import dataclasses
import pathlib
import re
import sys
from typing import Dict, FrozenSet, Iterable, List, Sequence, Tuple, Union

GENERATOR_NAME = "rst_gen"
HEADER = f"// Code generated by {GENERATOR_NAME}. DO NOT EDIT."
TAG_KEY = "reset"
TAG_NONIL = "nonil"

POLICY_NILABLE = "nilable"
POLICY_NONIL = "nonil"

CONSTRUCT_COMPOSITE = "composite"
CONSTRUCT_MAKE = "make"
CONSTRUCT_ADDRESS = "address"

OMIT_EMBEDDED = "embedded"
OMIT_UNRESOLVED = "unresolved"
OMIT_NO_RESET = "no-reset"
OMIT_BLANK = "blank"


class GeneratorError(RuntimeError):
    def __init__(self, message: str, index: int = -1, path: pathlib.Path | None = None) -> None:
        super().__init__(message)
        self.index = index
        self.path = path


class ResolutionError(GeneratorError):
    """The input package does not type-check."""


class ParseError(ResolutionError):
    pass


class NotAStruct(GeneratorError):
    pass


class UnsupportedType(GeneratorError):
    def __init__(self, category: str, field: str = "", index: int = -1, path: pathlib.Path | None = None) -> None:
        super().__init__(f"unsupported type {category}", index, path)
        self.category = category
        self.field = field

    def __str__(self) -> str:
        if self.field:
            return f"{self.field}: unsupported type {self.category}"
        return f"unsupported type {self.category}"


# Type descriptors


@dataclasses.dataclass(frozen=True)
class Basic:
    kind: str  # integer | float | string | boolean | other
    name: str


@dataclasses.dataclass(eq=False)
class Named:
    name: str
    scope: str = ""  # import path; empty inside the generated package
    package: str = ""  # qualifier for scope in generated code
    underlying: "TypeDescriptor | None" = dataclasses.field(default=None, repr=False)
    type_args: Tuple["TypeDescriptor", ...] = ()

    @property
    def qualified_name(self) -> str:
        if self.scope:
            return f"{self.scope}.{self.name}"
        return self.name


@dataclasses.dataclass(frozen=True)
class Pointer:
    elem: "TypeDescriptor"


@dataclasses.dataclass(frozen=True)
class Slice:
    elem: "TypeDescriptor"


@dataclasses.dataclass(frozen=True)
class Array:
    elem: "TypeDescriptor"
    length: int


@dataclasses.dataclass(frozen=True)
class Map:
    key: "TypeDescriptor"
    elem: "TypeDescriptor"


@dataclasses.dataclass(frozen=True)
class Channel:
    elem: "TypeDescriptor"


@dataclasses.dataclass(frozen=True)
class StructField:
    name: str
    type: "TypeDescriptor | None"
    tag: str = ""
    embedded: bool = False
    index: int = dataclasses.field(default=-1, compare=False)
    path: pathlib.Path | None = dataclasses.field(default=None, compare=False)


@dataclasses.dataclass(frozen=True)
class StructType:
    fields: Tuple[StructField, ...] = ()


@dataclasses.dataclass(frozen=True)
class InterfaceType:
    pass


@dataclasses.dataclass(frozen=True)
class FuncType:
    pass


TypeDescriptor = Union[Basic, Named, Pointer, Slice, Array, Map, Channel, StructType, InterfaceType, FuncType]

CATEGORY_NAMES = {
    Basic: "basic",
    Pointer: "pointer",
    Slice: "slice",
    Array: "array",
    Map: "map",
    Channel: "chan",
    StructType: "struct",
    InterfaceType: "interface",
    FuncType: "func",
}


def category_of(typ: TypeDescriptor) -> str:
    if isinstance(typ, Named):
        return typ.qualified_name
    return CATEGORY_NAMES.get(type(typ), type(typ).__name__)


def underlying_of(typ: TypeDescriptor | None) -> TypeDescriptor | None:
    if isinstance(typ, Named):
        return typ.underlying
    return typ


def is_resolved(typ: TypeDescriptor | None) -> bool:
    while isinstance(typ, Named):
        if typ.underlying is None:
            return False
        typ = typ.underlying
    return typ is not None


def predeclared_types() -> Dict[str, TypeDescriptor]:
    types: Dict[str, TypeDescriptor] = {}
    for name in (
        "int", "int8", "int16", "int32", "int64",
        "uint", "uint8", "uint16", "uint32", "uint64", "uintptr",
        "byte", "rune",
    ):
        types[name] = Basic("integer", name)
    for name in ("float32", "float64"):
        types[name] = Basic("float", name)
    for name in ("complex64", "complex128"):
        types[name] = Basic("other", name)
    types["string"] = Basic("string", "string")
    types["bool"] = Basic("boolean", "bool")
    for name in ("error", "any", "comparable"):
        types[name] = Named(name, underlying=InterfaceType())
    return types


PREDECLARED = predeclared_types()


# Go source tokens

KEYWORDS = {
    "break", "case", "chan", "const", "continue", "default", "defer", "else",
    "fallthrough", "for", "func", "go", "goto", "if", "import", "interface",
    "map", "package", "range", "return", "select", "struct", "switch", "type", "var",
}
OPERATORS = sorted(
    [
        "<<=", ">>=", "&^=", "...", "&&", "||", "<-", "++", "--", "==", "!=", "<=", ">=",
        ":=", "<<", ">>", "&^", "+=", "-=", "*=", "/=", "%=", "&=", "|=", "^=",
        "+", "-", "*", "/", "%", "&", "|", "^", "<", ">", "=", "!", "~",
        "(", ")", "[", "]", "{", "}", ",", ";", ".", ":",
    ],
    key=len,
    reverse=True,
)
IDENT_PATTERN = re.compile(r"[^\W\d]\w*")
NUMBER_PATTERN = re.compile(
    r"0[xX][0-9a-fA-F_]*(?:\.[0-9a-fA-F_]*)?(?:[pP][+-]?[0-9_]+)?i?"
    r"|0[bBoO][0-9_]+i?"
    r"|(?:[0-9][0-9_]*(?:\.[0-9_]*)?|\.[0-9][0-9_]*)(?:[eE][+-]?[0-9_]+)?i?"
)
TAG_PAIR_PATTERN = re.compile(r' *([^\x00-\x20:"\x7f]+):("(?:[^"\\]|\\.)*")')
ESCAPES = {
    "a": "\a", "b": "\b", "f": "\f", "n": "\n", "r": "\r", "t": "\t", "v": "\v",
    "\\": "\\", "'": "'", '"': '"',
}


@dataclasses.dataclass(frozen=True)
class Token:
    kind: str  # ident | keyword | number | string | char | op | eof
    value: str
    index: int


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    i = 0
    n = len(text)

    def ends_statement() -> bool:
        if not tokens:
            return False
        last = tokens[-1]
        if last.kind in ("ident", "number", "string", "char"):
            return True
        if last.kind == "keyword":
            return last.value in ("break", "continue", "fallthrough", "return")
        return last.kind == "op" and last.value in (")", "]", "}", "++", "--")

    while i < n:
        ch = text[i]
        if ch == "\n":
            if ends_statement():
                tokens.append(Token("op", ";", i))
            i += 1
            continue
        if ch.isspace():
            i += 1
            continue
        if text.startswith("//", i):
            j = text.find("\n", i)
            i = n if j == -1 else j
            continue
        if text.startswith("/*", i):
            j = text.find("*/", i + 2)
            if j == -1:
                raise ParseError("comment not terminated", i)
            if "\n" in text[i:j] and ends_statement():
                tokens.append(Token("op", ";", i))
            i = j + 2
            continue
        if ch in ('"', "'"):
            j = i + 1
            while j < n and text[j] != ch and text[j] != "\n":
                if text[j] == "\\":
                    j += 1
                j += 1
            if j >= n or text[j] != ch:
                what = "string" if ch == '"' else "rune"
                raise ParseError(f"{what} literal not terminated", i)
            tokens.append(Token("string" if ch == '"' else "char", text[i : j + 1], i))
            i = j + 1
            continue
        if ch == "`":
            j = text.find("`", i + 1)
            if j == -1:
                raise ParseError("raw string literal not terminated", i)
            tokens.append(Token("string", text[i : j + 1], i))
            i = j + 1
            continue
        m = IDENT_PATTERN.match(text, i)
        if m:
            word = m.group(0)
            tokens.append(Token("keyword" if word in KEYWORDS else "ident", word, i))
            i = m.end()
            continue
        m = NUMBER_PATTERN.match(text, i)
        if m:
            tokens.append(Token("number", m.group(0), i))
            i = m.end()
            continue
        for op in OPERATORS:
            if text.startswith(op, i):
                tokens.append(Token("op", op, i))
                i += len(op)
                break
        else:
            raise ParseError(f"invalid character {ch!r}", i)

    if ends_statement():
        tokens.append(Token("op", ";", n))
    tokens.append(Token("eof", "", n))
    return tokens


def unquote(literal: str) -> str:
    if literal.startswith("`"):
        return literal[1:-1].replace("\r", "")
    body = literal[1:-1]
    out: List[str] = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch != "\\":
            out.append(ch)
            i += 1
            continue
        esc = body[i + 1]
        if esc in ESCAPES:
            out.append(ESCAPES[esc])
            i += 2
        elif esc in "xuU":
            width = {"x": 2, "u": 4, "U": 8}[esc]
            out.append(chr(int(body[i + 2 : i + 2 + width], 16)))
            i += 2 + width
        elif esc in "01234567":
            out.append(chr(int(body[i + 1 : i + 4], 8)))
            i += 4
        else:
            raise ValueError(f"unknown escape sequence \\{esc}")
    return "".join(out)


def parse_int_literal(text: str) -> int | None:
    digits = text.replace("_", "")
    try:
        if re.fullmatch(r"0[0-7]+", digits):
            return int(digits, 8)
        return int(digits, 0)
    except ValueError:
        return None


def struct_tag_lookup(tag: str, key: str) -> str | None:
    """Value of key in a conventional `key:"value"` struct tag, or None."""
    i = 0
    while i < len(tag):
        m = TAG_PAIR_PATTERN.match(tag, i)
        if not m:
            return None
        if m.group(1) == key:
            try:
                return unquote(m.group(2))
            except (ValueError, IndexError):
                return None
        i = m.end()
    return None


# Go source declarations


@dataclasses.dataclass(eq=False)
class TypeDecl:
    name: str
    index: int
    source: "SourceFile" = dataclasses.field(repr=False)
    start: int = 0  # token range of the right-hand side
    end: int = 0
    alias: bool = False
    generic: bool = False


@dataclasses.dataclass(eq=False)
class SourceFile:
    path: pathlib.Path
    text: str
    tokens: List[Token] = dataclasses.field(default_factory=list, repr=False)
    package: str = ""
    package_index: int = 0
    imports: Dict[str, str] = dataclasses.field(default_factory=dict)  # qualifier -> import path
    types: List[TypeDecl] = dataclasses.field(default_factory=list)
    consts: Dict[str, int] = dataclasses.field(default_factory=dict)


def describe(tok: Token) -> str:
    if tok.kind == "eof":
        return "EOF"
    return repr(tok.value)


def at(tok: Token, value: str) -> bool:
    return tok.kind in ("op", "keyword") and tok.value == value


def expect(tokens: Sequence[Token], i: int, value: str) -> int:
    if not at(tokens[i], value):
        raise ParseError(f"expected {value!r}, found {describe(tokens[i])}", tokens[i].index)
    return i + 1


def expect_ident(tokens: Sequence[Token], i: int) -> Tuple[str, int]:
    if tokens[i].kind != "ident":
        raise ParseError(f"expected identifier, found {describe(tokens[i])}", tokens[i].index)
    return tokens[i].value, i + 1


def skip_group(tokens: Sequence[Token], i: int) -> int:
    depth = 0
    start = tokens[i].index
    while tokens[i].kind != "eof":
        tok = tokens[i]
        if tok.kind == "op" and tok.value in ("(", "[", "{"):
            depth += 1
        elif tok.kind == "op" and tok.value in (")", "]", "}"):
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    raise ParseError("unbalanced brackets", start)


def skip_decl(tokens: Sequence[Token], i: int) -> int:
    """Advance to the ';' ending a declaration, or to the ')' closing its group."""
    depth = 0
    while tokens[i].kind != "eof":
        tok = tokens[i]
        if tok.kind == "op":
            if tok.value in ("(", "[", "{"):
                depth += 1
            elif tok.value in (")", "]", "}"):
                if depth == 0:
                    return i
                depth -= 1
            elif tok.value == ";" and depth == 0:
                return i
        i += 1
    if depth:
        raise ParseError("unexpected EOF", tokens[i].index)
    return i


def parse_group(tokens: Sequence[Token], i: int, parse_spec) -> int:
    if not at(tokens[i], "("):
        return parse_spec(tokens, i)
    i += 1
    while not at(tokens[i], ")"):
        i = parse_spec(tokens, i)
        if at(tokens[i], ")"):
            break
        i = expect(tokens, i, ";")
    return i + 1


def default_package_name(import_path: str) -> str:
    parts = [p for p in import_path.split("/") if p]
    if len(parts) > 1 and re.fullmatch(r"v\d+", parts[-1]):
        parts.pop()
    name = parts[-1] if parts else import_path
    name = re.sub(r"\.v\d+$", "", name)
    if name.startswith("go-"):
        name = name[3:]
    if name.endswith("-go"):
        name = name[:-3]
    return re.sub(r"\W", "_", name)


def parse_source(path: pathlib.Path, text: str) -> SourceFile:
    try:
        return parse_declarations(SourceFile(path=path, text=text, tokens=tokenize(text)))
    except GeneratorError as e:
        if e.path is None:
            e.path = path
        raise


def parse_declarations(source: SourceFile) -> SourceFile:
    tokens = source.tokens

    def import_spec(tokens: Sequence[Token], i: int) -> int:
        name = ""
        if tokens[i].kind == "ident" or at(tokens[i], "."):
            name = tokens[i].value
            i += 1
        if tokens[i].kind != "string":
            raise ParseError(f"expected import path, found {describe(tokens[i])}", tokens[i].index)
        try:
            import_path = unquote(tokens[i].value)
        except (ValueError, IndexError):
            raise ParseError("invalid import path", tokens[i].index) from None
        if name:
            names = [name]
        else:
            names = [default_package_name(import_path)]
            last = import_path.rstrip("/").rsplit("/", 1)[-1]
            if re.fullmatch(r"v\d+", last) and last not in names:
                names.append(last)
        for name in names:
            if name not in ("_", "."):
                source.imports[name] = import_path
        return i + 1

    def type_spec(tokens: Sequence[Token], i: int) -> int:
        index = tokens[i].index
        name, i = expect_ident(tokens, i)
        decl = TypeDecl(name=name, index=index, source=source)
        if at(tokens[i], "[") and tokens[i + 1].kind == "ident" and not at(tokens[i + 2], "]"):
            decl.generic = True
            i = skip_group(tokens, i)
        if at(tokens[i], "="):
            decl.alias = True
            i += 1
        decl.start = i
        decl.end = skip_decl(tokens, i)
        if decl.end == decl.start:
            raise ParseError(f"expected type, found {describe(tokens[i])}", tokens[i].index)
        source.types.append(decl)
        return decl.end

    def const_spec(tokens: Sequence[Token], i: int) -> int:
        end = skip_decl(tokens, i)
        spec = tokens[i:end]
        if (
            len(spec) in (3, 4)
            and spec[0].kind == "ident"
            and at(spec[-2], "=")
            and spec[-1].kind == "number"
        ):
            value = parse_int_literal(spec[-1].value)
            if value is not None:
                source.consts[spec[0].value] = value
        return end

    i = expect(tokens, 0, "package")
    source.package_index = tokens[i].index
    source.package, i = expect_ident(tokens, i)
    i = expect(tokens, i, ";")

    while at(tokens[i], "import"):
        i = parse_group(tokens, i + 1, import_spec)
        i = expect(tokens, i, ";")

    while tokens[i].kind != "eof":
        tok = tokens[i]
        if at(tok, "type"):
            i = parse_group(tokens, i + 1, type_spec)
        elif at(tok, "const"):
            i = parse_group(tokens, i + 1, const_spec)
        elif at(tok, "var") or at(tok, "func"):
            i = skip_decl(tokens, i + 1)
        elif at(tok, "import"):
            raise ParseError("imports must appear before other declarations", tok.index)
        else:
            raise ParseError(f"non-declaration statement outside function body: {describe(tok)}", tok.index)
        i = expect(tokens, i, ";")

    return source


# Type resolution


@dataclasses.dataclass
class Package:
    name: str
    files: List[SourceFile]
    decls: List[TypeDecl]
    types: Dict[str, TypeDescriptor]  # declared name -> Named, or the alias target


class TypeResolver:
    """Resolves the type declarations of one package into type descriptors.

    Types from imported packages are not loaded: they become Named
    descriptors with an unknown underlying type, which can be mentioned by
    name but never reset on their own.
    """

    def __init__(self, files: Sequence[SourceFile]) -> None:
        self.files = list(files)
        self.decls: Dict[str, TypeDecl] = {}
        self.consts: Dict[str, int] = {}
        self.qualifiers: Dict[str, str] = {}  # import path -> qualifier
        self.named: Dict[str, Named] = {}
        self.aliases: Dict[str, TypeDescriptor] = {}
        self.instances: Dict[tuple, Named] = {}
        self.in_progress: set[str] = set()
        self.resolved: set[str] = set()

    def resolve(self) -> Package:
        if not self.files:
            raise ResolutionError("no input files")
        package_name = self.files[0].package
        ordered: List[TypeDecl] = []
        for source in self.files:
            if source.package != package_name:
                raise ResolutionError(
                    f"found packages {package_name} and {source.package}", source.package_index, source.path
                )
            for decl in source.types:
                if decl.name in self.decls:
                    raise ResolutionError(f"{decl.name} redeclared in this block", decl.index, source.path)
                self.decls[decl.name] = decl
                ordered.append(decl)
                if not decl.alias:
                    self.named[decl.name] = Named(decl.name)
            self.consts.update(source.consts)

        types = {decl.name: self.resolve_decl(decl) for decl in ordered}

        for named in self.named.values():
            if isinstance(named.underlying, StructType):
                named.underlying = StructType(
                    tuple(
                        dataclasses.replace(f, type=f.type if is_resolved(f.type) else None)
                        for f in named.underlying.fields
                    )
                )

        return Package(name=package_name, files=self.files, decls=ordered, types=types)

    def qualifier_for(self, import_path: str, preferred: str) -> str:
        if import_path in self.qualifiers:
            return self.qualifiers[import_path]
        used = set(self.qualifiers.values())
        candidate = preferred
        suffix = 2
        while candidate in used:
            candidate = f"{preferred}{suffix}"
            suffix += 1
        self.qualifiers[import_path] = candidate
        return candidate

    def resolve_decl(self, decl: TypeDecl) -> TypeDescriptor:
        if decl.name in self.in_progress:
            raise ResolutionError(f"invalid recursive type {decl.name}", decl.index, decl.source.path)
        if decl.name not in self.resolved:
            self.in_progress.add(decl.name)
            target = None if decl.generic else self.parse_rhs(decl)
            if decl.alias:
                self.aliases[decl.name] = target if target is not None else Named(decl.name)
            else:
                if isinstance(target, Named) and target is self.named.get(target.name):
                    self.resolve_decl(self.decls[target.name])
                self.named[decl.name].underlying = underlying_of(target)
            self.in_progress.discard(decl.name)
            self.resolved.add(decl.name)
        if decl.alias:
            return self.aliases[decl.name]
        return self.named[decl.name]

    def parse_rhs(self, decl: TypeDecl) -> TypeDescriptor:
        tokens = decl.source.tokens
        try:
            typ, i = self.parse_type(decl.source, decl.start)
        except GeneratorError as e:
            if e.path is None:
                e.path = decl.source.path
            raise
        if i != decl.end:
            raise ParseError(f"unexpected {describe(tokens[i])} in type declaration", tokens[i].index, decl.source.path)
        return typ

    def parse_type(self, source: SourceFile, i: int) -> Tuple[TypeDescriptor, int]:
        tokens = source.tokens
        tok = tokens[i]
        if tok.kind == "ident":
            return self.parse_type_name(source, i)
        if at(tok, "*"):
            elem, i = self.parse_type(source, i + 1)
            return Pointer(elem), i
        if at(tok, "["):
            if at(tokens[i + 1], "]"):
                elem, i = self.parse_type(source, i + 2)
                return Slice(elem), i
            length, i = self.parse_array_length(source, i + 1)
            i = expect(tokens, i, "]")
            elem, i = self.parse_type(source, i)
            return Array(elem, length), i
        if at(tok, "("):
            typ, i = self.parse_type(source, i + 1)
            return typ, expect(tokens, i, ")")
        if at(tok, "<-"):
            i = expect(tokens, i + 1, "chan")
            elem, i = self.parse_type(source, i)
            return Channel(elem), i
        if at(tok, "chan"):
            i += 1
            if at(tokens[i], "<-"):
                i += 1
            elem, i = self.parse_type(source, i)
            return Channel(elem), i
        if at(tok, "map"):
            i = expect(tokens, i + 1, "[")
            key, i = self.parse_type(source, i)
            i = expect(tokens, i, "]")
            elem, i = self.parse_type(source, i)
            return Map(key, elem), i
        if at(tok, "struct"):
            return self.parse_struct(source, i + 1)
        if at(tok, "interface"):
            if not at(tokens[i + 1], "{"):
                raise ParseError(f"expected '{{', found {describe(tokens[i + 1])}", tokens[i + 1].index)
            return InterfaceType(), skip_group(tokens, i + 1)
        if at(tok, "func"):
            return FuncType(), self.skip_signature(source, i + 1)
        raise ParseError(f"expected type, found {describe(tok)}", tok.index)

    def parse_type_name(self, source: SourceFile, i: int) -> Tuple[TypeDescriptor, int]:
        tokens = source.tokens
        tok = tokens[i]
        name = tok.value
        i += 1
        if at(tokens[i], "."):
            member, i = expect_ident(tokens, i + 1)
            if name not in source.imports:
                raise ResolutionError(f"undefined: {name}", tok.index, source.path)
            import_path = source.imports[name]
            qualifier = self.qualifier_for(import_path, name)
            type_args, i = self.parse_type_args(source, i)
            return self.instance(import_path, member, type_args, qualifier), i

        type_args, i = self.parse_type_args(source, i)
        decl = self.decls.get(name)
        if decl is not None:
            if decl.alias:
                return self.resolve_decl(decl), i
            if decl.generic or type_args:
                return self.instance("", name, type_args), i
            return self.named[name], i
        if name in PREDECLARED:
            return PREDECLARED[name], i
        raise ResolutionError(f"undefined: {name}", tok.index, source.path)

    def parse_type_args(self, source: SourceFile, i: int) -> Tuple[Tuple[TypeDescriptor, ...], int]:
        tokens = source.tokens
        if not at(tokens[i], "["):
            return (), i
        args: List[TypeDescriptor] = []
        i += 1
        while True:
            arg, i = self.parse_type(source, i)
            args.append(arg)
            if not at(tokens[i], ","):
                break
            i += 1
        return tuple(args), expect(tokens, i, "]")

    def instance(
        self, import_path: str, name: str, type_args: Tuple[TypeDescriptor, ...], qualifier: str = ""
    ) -> Named:
        key = (import_path, name, type_args)
        if key not in self.instances:
            self.instances[key] = Named(name, scope=import_path, package=qualifier, type_args=type_args)
        return self.instances[key]

    def parse_array_length(self, source: SourceFile, i: int) -> Tuple[int, int]:
        tok = source.tokens[i]
        value = None
        if tok.kind == "number":
            value = parse_int_literal(tok.value)
        elif tok.kind == "ident":
            value = self.consts.get(tok.value)
        if value is None or not at(source.tokens[i + 1], "]"):
            raise ResolutionError("array length must be an integer constant", tok.index, source.path)
        return value, i + 1

    def skip_signature(self, source: SourceFile, i: int) -> int:
        tokens = source.tokens
        if not at(tokens[i], "("):
            raise ParseError(f"expected '(', found {describe(tokens[i])}", tokens[i].index)
        i = skip_group(tokens, i)
        tok = tokens[i]
        if at(tok, "("):
            return skip_group(tokens, i)
        if tok.kind == "ident" or any(at(tok, v) for v in ("*", "[", "<-", "chan", "map", "struct", "interface", "func")):
            _, i = self.parse_type(source, i)
        return i

    def parse_struct(self, source: SourceFile, i: int) -> Tuple[StructType, int]:
        tokens = source.tokens
        i = expect(tokens, i, "{")
        fields: List[StructField] = []
        while not at(tokens[i], "}"):
            decl_fields, i = self.parse_field_decl(source, i)
            fields.extend(decl_fields)
            if at(tokens[i], "}"):
                break
            i = expect(tokens, i, ";")
        return StructType(tuple(fields)), i + 1

    def parse_field_decl(self, source: SourceFile, i: int) -> Tuple[List[StructField], int]:
        tokens = source.tokens
        tok = tokens[i]
        following = tokens[i + 1]
        embedded = at(tok, "*") or (
            tok.kind == "ident"
            and (at(following, ";") or at(following, "}") or at(following, ".") or following.kind == "string")
        )
        if not embedded and tok.kind == "ident" and at(following, "["):
            # List[int] is an embedded instance, List [4]int a named field
            after = tokens[skip_group(tokens, i + 1)]
            embedded = at(after, ";") or at(after, "}") or after.kind == "string"
        if embedded:
            typ, i = self.parse_type(source, i)
            tag, i = self.parse_tag(source, i)
            base = typ.elem if isinstance(typ, Pointer) else typ
            name = base.name if isinstance(base, (Named, Basic)) else tok.value
            return [StructField(name, typ, tag, embedded=True, index=tok.index, path=source.path)], i

        names: List[Tuple[str, int]] = []
        while True:
            index = tokens[i].index
            name, i = expect_ident(tokens, i)
            names.append((name, index))
            if not at(tokens[i], ","):
                break
            i += 1
        typ, i = self.parse_type(source, i)
        tag, i = self.parse_tag(source, i)
        return [StructField(name, typ, tag, index=index, path=source.path) for name, index in names], i

    def parse_tag(self, source: SourceFile, i: int) -> Tuple[str, int]:
        tok = source.tokens[i]
        if tok.kind != "string":
            return "", i
        try:
            return unquote(tok.value), i + 1
        except (ValueError, IndexError):
            raise ParseError("invalid struct tag literal", tok.index, source.path) from None


def resolve_package(files: Sequence[SourceFile]) -> Package:
    return TypeResolver(files).resolve()


def select_structs(package: Package, names: Sequence[str] = ()) -> List[TypeDecl]:
    if not names:
        return [
            d
            for d in package.decls
            if not d.alias and not d.generic and isinstance(underlying_of(package.types[d.name]), StructType)
        ]

    by_name = {d.name: d for d in package.decls}
    selected: List[TypeDecl] = []
    for name in names:
        decl = by_name.get(name)
        if decl is None:
            raise ResolutionError(f"undefined: {name}")
        if decl.alias or decl.generic or not isinstance(underlying_of(package.types[name]), StructType):
            raise NotAStruct(f"{name} is not a struct type", decl.index, decl.source.path)
        if decl not in selected:
            selected.append(decl)
    return selected


# Field scanning


@dataclasses.dataclass(frozen=True)
class FieldSpec:
    name: str
    type: TypeDescriptor
    policy: str  # nilable | nonil
    index: int = dataclasses.field(default=-1, compare=False)
    path: pathlib.Path | None = dataclasses.field(default=None, compare=False)


@dataclasses.dataclass(frozen=True)
class FieldOmitted:
    name: str
    reason: str  # embedded | blank | unresolved | no-reset
    detail: str = ""
    index: int = dataclasses.field(default=-1, compare=False)
    path: pathlib.Path | None = dataclasses.field(default=None, compare=False)


def parse_policy(tag: str) -> str:
    if struct_tag_lookup(tag, TAG_KEY) == TAG_NONIL:
        return POLICY_NONIL
    return POLICY_NILABLE


def scan_fields(fields: Iterable[StructField]) -> Tuple[List[FieldSpec], List[FieldOmitted]]:
    specs: List[FieldSpec] = []
    omitted: List[FieldOmitted] = []
    for field in fields:
        if field.embedded:
            omitted.append(FieldOmitted(field.name, OMIT_EMBEDDED, index=field.index, path=field.path))
            continue
        if field.name == "_":
            omitted.append(FieldOmitted(field.name, OMIT_BLANK, index=field.index, path=field.path))
            continue
        if field.type is None:
            omitted.append(FieldOmitted(field.name, OMIT_UNRESOLVED, index=field.index, path=field.path))
            continue
        specs.append(FieldSpec(field.name, field.type, parse_policy(field.tag), field.index, field.path))
    return specs, omitted


# Type expressions


@dataclasses.dataclass(frozen=True)
class TypeExpression:
    text: str
    imports: FrozenSet[Tuple[str, str]] = frozenset()  # (qualifier, import path)


def render_type(typ: TypeDescriptor) -> TypeExpression:
    if isinstance(typ, Basic):
        return TypeExpression(typ.name)
    if isinstance(typ, Named):
        text = typ.name
        imports: FrozenSet[Tuple[str, str]] = frozenset()
        if typ.scope:
            text = f"{typ.package}.{typ.name}"
            imports = frozenset({(typ.package, typ.scope)})
        if typ.type_args:
            args = [render_type(arg) for arg in typ.type_args]
            text += "[" + ", ".join(arg.text for arg in args) + "]"
            imports = imports.union(*(arg.imports for arg in args))
        return TypeExpression(text, imports)
    if isinstance(typ, Map):
        key = render_type(typ.key)
        elem = render_type(typ.elem)
        return TypeExpression(f"map[{key.text}]{elem.text}", key.imports | elem.imports)
    if isinstance(typ, Array):
        elem = render_type(typ.elem)
        return TypeExpression(f"[{typ.length}]{elem.text}", elem.imports)
    if isinstance(typ, Slice):
        elem = render_type(typ.elem)
        return TypeExpression(f"[]{elem.text}", elem.imports)
    if isinstance(typ, Pointer):
        elem = render_type(typ.elem)
        return TypeExpression(f"*{elem.text}", elem.imports)
    if isinstance(typ, Channel):
        # direction is not tracked; every channel is rebuilt bidirectional
        elem = render_type(typ.elem)
        return TypeExpression(f"chan {elem.text}", elem.imports)
    raise UnsupportedType(category_of(typ))


# Reset expressions


@dataclasses.dataclass(frozen=True)
class Literal:
    text: str


@dataclasses.dataclass(frozen=True)
class NilValue:
    pass


NIL = NilValue()


@dataclasses.dataclass(frozen=True)
class Construct:
    kind: str  # composite | make | address
    of_type: TypeDescriptor
    type_expr: TypeExpression


@dataclasses.dataclass(frozen=True)
class NoReset:
    category: str


ResetExpression = Union[Literal, NilValue, Construct, NoReset]


def construct(kind: str, typ: TypeDescriptor) -> Construct:
    return Construct(kind, typ, render_type(typ))


def synthesize(typ: TypeDescriptor, policy: str) -> ResetExpression:
    """Map a field type and its reset policy to the value the field is reset to.

    Arrays are values and always reset to an empty composite literal. Maps,
    slices, channels and pointers reset to nil unless the policy is nonil,
    in which case a fresh empty instance is built. A named type resets like
    its underlying type but constructions keep the declared name.
    """
    if isinstance(typ, Basic):
        if typ.kind == "integer":
            return Literal("0")
        if typ.kind == "string":
            return Literal('""')
        return NoReset(typ.kind)
    if isinstance(typ, Array):
        return construct(CONSTRUCT_COMPOSITE, typ)
    if isinstance(typ, (Map, Slice, Channel)):
        if policy == POLICY_NONIL:
            return construct(CONSTRUCT_MAKE, typ)
        return NIL
    if isinstance(typ, Pointer):
        if policy == POLICY_NONIL:
            return construct(CONSTRUCT_ADDRESS, typ.elem)
        return NIL
    if isinstance(typ, Named) and typ.underlying is not None:
        expr = synthesize(typ.underlying, policy)
        # an address construction names the pointee, not the pointer type
        if isinstance(expr, Construct) and expr.kind != CONSTRUCT_ADDRESS:
            return construct(expr.kind, typ)
        return expr
    raise UnsupportedType(category_of(typ))


def reset_source(expr: ResetExpression) -> Tuple[str, FrozenSet[Tuple[str, str]]]:
    if isinstance(expr, Literal):
        return expr.text, frozenset()
    if isinstance(expr, NilValue):
        return "nil", frozenset()
    if not isinstance(expr, Construct):
        raise ValueError(f"no source for {expr!r}")
    text = expr.type_expr.text
    imports = expr.type_expr.imports
    shape = underlying_of(expr.of_type)
    if expr.kind == CONSTRUCT_COMPOSITE:
        return f"{text}{{}}", imports
    if expr.kind == CONSTRUCT_MAKE:
        if isinstance(shape, Slice):
            return f"make({text}, 0)", imports
        return f"make({text})", imports
    if isinstance(shape, (StructType, Array, Slice, Map)):
        return f"&{text}{{}}", imports
    return f"new({text})", imports


# Method emission


@dataclasses.dataclass(frozen=True)
class GeneratedMethod:
    struct_name: str
    receiver: str
    assignments: Tuple[Tuple[str, ResetExpression], ...]
    omitted: Tuple[FieldOmitted, ...] = ()


def emit_reset_method(
    accumulator: Tuple[GeneratedMethod, ...], struct_name: str, fields: Sequence[StructField]
) -> Tuple[GeneratedMethod, ...]:
    specs, omitted = scan_fields(fields)
    assignments: List[Tuple[str, ResetExpression]] = []
    for spec in specs:
        try:
            expr = synthesize(spec.type, spec.policy)
        except UnsupportedType as e:
            if not e.field:
                e.field = f"{struct_name}.{spec.name}"
            if e.index < 0:
                e.index, e.path = spec.index, spec.path
            raise
        if isinstance(expr, NoReset):
            omitted.append(FieldOmitted(spec.name, OMIT_NO_RESET, expr.category, spec.index, spec.path))
            continue
        assignments.append((spec.name, expr))

    omitted.sort(key=lambda o: o.index)
    method = GeneratedMethod(
        struct_name=struct_name,
        receiver=struct_name[0],
        assignments=tuple(assignments),
        omitted=tuple(omitted),
    )
    return accumulator + (method,)


def generate(package: Package, names: Sequence[str] = ()) -> Tuple[GeneratedMethod, ...]:
    methods: Tuple[GeneratedMethod, ...] = ()
    for decl in select_structs(package, names):
        struct = underlying_of(package.types[decl.name])
        methods = emit_reset_method(methods, decl.name, struct.fields)
    return methods


def render_imports(imports: Iterable[Tuple[str, str]]) -> List[str]:
    specs: List[str] = []
    for qualifier, import_path in sorted(imports, key=lambda item: item[1]):
        if qualifier == default_package_name(import_path):
            specs.append(f'"{import_path}"')
        else:
            specs.append(f'{qualifier} "{import_path}"')
    if len(specs) == 1:
        return [f"import {specs[0]}"]
    return ["import ("] + [f"\t{spec}" for spec in specs] + [")"]


def render_method(method: GeneratedMethod) -> Tuple[str, FrozenSet[Tuple[str, str]]]:
    head = f"func ({method.receiver} *{method.struct_name}) Reset() {{"
    if not method.assignments:
        return head + "}", frozenset()
    lines = [head]
    imports: FrozenSet[Tuple[str, str]] = frozenset()
    for field_name, expr in method.assignments:
        text, needed = reset_source(expr)
        imports |= needed
        lines.append(f"\t{method.receiver}.{field_name} = {text}")
    lines.append("}")
    return "\n".join(lines), imports


def render_file(package_name: str, methods: Sequence[GeneratedMethod]) -> str:
    bodies: List[str] = []
    imports: set[Tuple[str, str]] = set()
    for method in methods:
        body, needed = render_method(method)
        bodies.append(body)
        imports |= needed

    lines = [HEADER, "", f"package {package_name}", ""]
    if imports:
        lines.extend(render_imports(imports))
        lines.append("")
    lines.append("\n\n".join(bodies))
    return "\n".join(lines).rstrip("\n") + "\n"


# Command line


OMIT_DESCRIPTIONS = {
    OMIT_EMBEDDED: "embedded field",
    OMIT_BLANK: "blank field",
    OMIT_UNRESOLVED: "type could not be resolved",
    OMIT_NO_RESET: "no reset defined for {detail} values",
}


def line_col(text: str, index: int) -> Tuple[int, int]:
    line = text.count("\n", 0, index) + 1
    line_start = text.rfind("\n", 0, index)
    if line_start < 0:
        line_start = -1
    col = index - line_start
    return line, col


def location(path: pathlib.Path | None, index: int, texts: Dict[pathlib.Path, str]) -> str:
    if path is None or index < 0 or path not in texts:
        return ""
    line, col = line_col(texts[path], index)
    return f"{path}:{line}:{col}: "


def fail(error: GeneratorError, texts: Dict[pathlib.Path, str]) -> None:
    print(f"{location(error.path, error.index, texts)}error: {error}", file=sys.stderr)


def report_omitted(methods: Sequence[GeneratedMethod], texts: Dict[pathlib.Path, str]) -> None:
    for method in methods:
        for omitted in method.omitted:
            why = OMIT_DESCRIPTIONS[omitted.reason].format(detail=omitted.detail)
            print(
                f"{location(omitted.path, omitted.index, texts)}note: "
                f"{method.struct_name}.{omitted.name} omitted ({why})",
                file=sys.stderr,
            )


def run(args: argparse.Namespace) -> int:
    in_paths = [pathlib.Path(p) for p in args.input]
    out_path = pathlib.Path(args.output)

    for in_path in in_paths:
        if not in_path.exists():
            print(f"error: input file does not exist: {in_path}", file=sys.stderr)
            return 1

    texts: Dict[pathlib.Path, str] = {}
    try:
        sources = []
        for in_path in in_paths:
            texts[in_path] = in_path.read_text(encoding="utf-8")
            sources.append(parse_source(in_path, texts[in_path]))
        package = resolve_package(sources)
        methods = generate(package, args.types)
    except GeneratorError as e:
        fail(e, texts)
        return 1

    if args.verbose:
        report_omitted(methods, texts)
    rendered = render_file(package.name, methods)

    if args.check:
        if not out_path.exists():
            print(f"{out_path} is missing (run generator)", file=sys.stderr)
            return 1
        existing = out_path.read_text(encoding="utf-8")
        if existing != rendered:
            print(f"{out_path} is out of date (run generator)", file=sys.stderr)
            return 1
        print(f"up-to-date: {out_path}")
        return 0

    if out_path.exists() and out_path.read_text(encoding="utf-8") == rendered:
        print(f"unchanged: {out_path}")
        return 0

    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(rendered, encoding="utf-8")
    print(f"generated: {out_path}")
    return 0


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Generate Reset() methods for Go structs")
    parser.add_argument(
        "--in", dest="input", action="append", required=True, help="Input .go file (repeat for each file of the package)"
    )
    parser.add_argument("--out", dest="output", required=True, help="Output generated .go file")
    parser.add_argument(
        "--type", dest="types", action="append", default=[], help="Struct to generate for (repeatable, default: all)"
    )
    parser.add_argument("--check", action="store_true", help="Check output is up to date")
    parser.add_argument("--verbose", action="store_true", help="Report fields left out of the generated methods")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    return run(build_arg_parser().parse_args(argv))


if __name__ == "__main__":
    raise SystemExit(main())
