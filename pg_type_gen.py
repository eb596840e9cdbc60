"""Postgres built-in type catalog generator.

Generates a typed `Type` module for a Python Postgres client from the
server's pg_type.h and pg_range.h catalog snapshots.
Produces a single `types/type_gen.py` module under the output directory.

Usage:
    python pg_type_gen.py --output-dir ../pgclient/src/pgclient
"""

import argparse
import html
import keyword
import os
import re
import stat
import tempfile
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent
DEFAULT_PG_TYPE = PROJECT_ROOT / "snapshots" / "pg_type.h"
DEFAULT_PG_RANGE = PROJECT_ROOT / "snapshots" / "pg_range.h"
DEFAULT_OUTPUT_DIR = PROJECT_ROOT / "generated"
DEFAULT_RUNTIME_MODULE = ".base"
ARTIFACT_PATH = Path("types") / "type_gen.py"


# ===--- CLI config contracts ---=== #


@dataclass(frozen=True)
class GenerateConfig:
    pg_type: Path
    pg_range: Path
    output_dir: Path
    runtime_module: str = DEFAULT_RUNTIME_MODULE
    check: bool = False


@dataclass(frozen=True)
class DiscoveryConfig:
    filter_text: str | None
    pg_type: Path
    pg_range: Path


VALID_ERROR_CODES = {
    "PATH_NOT_FOUND",
    "FILTER_WITHOUT_LIST",
    "CONFLICT_CHECK_LIST",
    "INVALID_RUNTIME_MODULE",
}
_RUNTIME_MODULE_RE = re.compile(r"^\.*[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


def validate_snapshot_path(path: Path | None, flag: str, hint: str) -> Path:
    """Return path when it names an existing snapshot file."""
    if path is not None and path.is_file():
        return path
    shown = "<unset>" if path is None else path
    raise ConfigError("PATH_NOT_FOUND", f"No snapshot at {shown} for {flag}.", hint)


def validate_runtime_module(name: str) -> str:
    if _RUNTIME_MODULE_RE.match(name):
        return name
    raise ConfigError(
        "INVALID_RUNTIME_MODULE",
        f"Invalid runtime module: {name}",
        "Pass a dotted module path, relative (.base) or absolute (pgclient.types).",
    )


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate the Postgres built-in Type module"
    )

    parser.add_argument("--pg-type", type=Path, default=DEFAULT_PG_TYPE)
    parser.add_argument("--pg-range", type=Path, default=DEFAULT_PG_RANGE)
    parser.add_argument("--output-dir", type=Path, default=DEFAULT_OUTPUT_DIR)
    parser.add_argument("--runtime-module", type=str, default=DEFAULT_RUNTIME_MODULE)

    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument("--check", action="store_true", default=False)
    mode_group.add_argument("--list-types", action="store_true", default=False)

    parser.add_argument("--filter", type=str, default=None)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace) -> GenerateConfig | DiscoveryConfig:
    if args.filter and not args.list_types:
        raise ConfigError(
            "FILTER_WITHOUT_LIST",
            "--filter requires --list-types.",
            "Add --list-types or remove --filter.",
        )

    if args.check and args.list_types:
        raise ConfigError(
            "CONFLICT_CHECK_LIST",
            "--check cannot be combined with --list-types.",
            "Choose either --check or --list-types.",
        )

    pg_type = validate_snapshot_path(
        args.pg_type,
        "--pg-type",
        "Copy src/include/catalog/pg_type.h from the Postgres source tree\n"
        "Or pass a custom path: --pg-type /your/path/to/pg_type.h",
    )
    pg_range = validate_snapshot_path(
        args.pg_range,
        "--pg-range",
        "Copy src/include/catalog/pg_range.h from the Postgres source tree\n"
        "Or pass a custom path: --pg-range /your/path/to/pg_range.h",
    )

    if args.list_types:
        return DiscoveryConfig(
            filter_text=args.filter,
            pg_type=pg_type,
            pg_range=pg_range,
        )

    return GenerateConfig(
        pg_type=pg_type,
        pg_range=pg_range,
        output_dir=args.output_dir,
        runtime_module=validate_runtime_module(args.runtime_module),
        check=bool(args.check),
    )


def build_config(argv: list[str] | None = None) -> GenerateConfig | DiscoveryConfig:
    return validate_config(parse_args(argv))


# ===--- Catalog errors ---=== #


VALID_CATALOG_ERROR_CODES = {
    "STRUCTURAL_PARSE",
    "UNRESOLVED_REFERENCE",
    "DUPLICATE_KEY",
}


class CatalogError(Exception):
    """Fatal problem with the catalog snapshots.

    Snapshots are pinned, trusted inputs, so any of these means the snapshot
    and the generator disagree. Nothing is written once one is raised.
    """

    def __init__(self, code: str, message: str, line_number: int | None = None):
        if code not in VALID_CATALOG_ERROR_CODES:
            raise ValueError(f"Unknown catalog error code: {code}")
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)
        self.code = code
        self.message = message
        self.line_number = line_number


class StructuralParseError(CatalogError):
    def __init__(self, message: str, line_number: int | None = None):
        super().__init__("STRUCTURAL_PARSE", message, line_number)


class UnresolvedReferenceError(CatalogError):
    def __init__(self, message: str, line_number: int | None = None):
        super().__init__("UNRESOLVED_REFERENCE", message, line_number)


class DuplicateKeyError(CatalogError):
    def __init__(self, message: str, line_number: int | None = None):
        super().__init__("DUPLICATE_KEY", message, line_number)


_CATALOG_ERROR_TYPES: dict[str, type[CatalogError]] = {
    "STRUCTURAL_PARSE": StructuralParseError,
    "UNRESOLVED_REFERENCE": UnresolvedReferenceError,
    "DUPLICATE_KEY": DuplicateKeyError,
}


# ===--- Snapshot row grammar ---=== #

# Both snapshots mark data rows with a DATA(insert ...) line and lay their
# columns out positionally. The offsets below follow the pg_type.h and
# pg_range.h column order; a Postgres release that reorders those columns
# requires revisiting them.
ROW_MARKER = "DATA"

RANGE_OID_FIELD = 2
RANGE_ELEMENT_FIELD = 3

TYPE_OID_FIELD = 3
TYPE_NAME_FIELD = 5
TYPE_KIND_FIELD = 11
TYPE_ELEMENT_FIELD = 16

KIND_PSEUDO = "P"
KIND_ARRAY = "A"
KIND_RANGE = "R"
KIND_COMPOSITE = "C"
KIND_ENUM = "E"
# Composite fields and enum labels can only be read at runtime.
SKIPPED_KINDS = frozenset({KIND_COMPOSITE, KIND_ENUM})

MAX_OID = 0xFFFFFFFF

_OID_RE = re.compile(r"^[0-9]+$")
_TYPE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_DESCR_RE = re.compile(r'DESCR\("([^"]+)"\)')


@dataclass(frozen=True)
class RangeRow:
    range_oid: int
    element_oid: int
    line_number: int


@dataclass(frozen=True)
class TypeRow:
    oid: int
    name: str
    kind_code: str
    static_element: int
    line_number: int


@dataclass(frozen=True)
class RowError:
    """A rejected snapshot row.

    Row parsers return this instead of raising so callers decide when a bad
    row aborts the run. to_exception() gives the matching CatalogError.
    """

    code: str
    message: str
    line_number: int

    def to_exception(self) -> CatalogError:
        return _CATALOG_ERROR_TYPES[self.code](self.message, self.line_number)


def is_data_row(line: str) -> bool:
    return line.startswith(ROW_MARKER)


def _parse_oid_field(
    fields: list[str], index: int, label: str, line_number: int
) -> int | RowError:
    raw = fields[index]
    if not _OID_RE.match(raw) or int(raw) > MAX_OID:
        return RowError(
            "STRUCTURAL_PARSE",
            f"{label} field {index} is not a valid oid: {raw!r}",
            line_number,
        )
    return int(raw)


def parse_range_row(line: str, line_number: int) -> RangeRow | RowError:
    """Parse one pg_range.h DATA row into its (range oid, subtype oid) pair."""
    fields = line.split()
    needed = max(RANGE_OID_FIELD, RANGE_ELEMENT_FIELD) + 1
    if len(fields) < needed:
        return RowError(
            "STRUCTURAL_PARSE",
            f"range row has {len(fields)} fields, expected at least {needed}",
            line_number,
        )

    range_oid = _parse_oid_field(fields, RANGE_OID_FIELD, "range oid", line_number)
    if isinstance(range_oid, RowError):
        return range_oid
    element_oid = _parse_oid_field(
        fields, RANGE_ELEMENT_FIELD, "range subtype", line_number
    )
    if isinstance(element_oid, RowError):
        return element_oid

    return RangeRow(range_oid, element_oid, line_number)


def parse_type_row(line: str, line_number: int) -> TypeRow | RowError:
    """Parse one pg_type.h DATA row.

    Extracts the oid, typname, typcategory and typelem columns. Every
    structural problem (short row, non-numeric oid, name that cannot be
    emitted as a literal, multi-character category) is reported as a
    STRUCTURAL_PARSE RowError.

    Args:
        line: Raw snapshot line, starting with the row marker.
        line_number: 1-based line number, for error messages.

    Returns:
        TypeRow on success, RowError otherwise.
    """
    fields = line.split()
    needed = TYPE_ELEMENT_FIELD + 1
    if len(fields) < needed:
        return RowError(
            "STRUCTURAL_PARSE",
            f"type row has {len(fields)} fields, expected at least {needed}",
            line_number,
        )

    oid = _parse_oid_field(fields, TYPE_OID_FIELD, "type oid", line_number)
    if isinstance(oid, RowError):
        return oid
    static_element = _parse_oid_field(
        fields, TYPE_ELEMENT_FIELD, "element oid", line_number
    )
    if isinstance(static_element, RowError):
        return static_element

    name = fields[TYPE_NAME_FIELD]
    if not _TYPE_NAME_RE.match(name):
        return RowError(
            "STRUCTURAL_PARSE", f"invalid type name: {name!r}", line_number
        )

    kind_code = fields[TYPE_KIND_FIELD]
    if len(kind_code) != 1 or not kind_code.isalpha():
        return RowError(
            "STRUCTURAL_PARSE",
            f"invalid category for {name}: {kind_code!r}",
            line_number,
        )

    return TypeRow(oid, name, kind_code, static_element, line_number)


# ===--- Range table parser ---=== #


def parse_ranges(text: str) -> dict[int, int]:
    """Return range type oid -> subtype oid from the pg_range.h snapshot.

    Lines that are not DATA rows (comments, #defines) are ignored.

    Raises:
        StructuralParseError: A DATA row is short or has a non-numeric oid.
        DuplicateKeyError: The same range oid appears twice.
    """
    ranges: dict[int, int] = {}
    for line_number, line in enumerate(text.splitlines(), start=1):
        if not is_data_row(line):
            continue
        row = parse_range_row(line, line_number)
        if isinstance(row, RowError):
            raise row.to_exception()
        if row.range_oid in ranges:
            raise DuplicateKeyError(
                f"range oid {row.range_oid} defined twice", line_number
            )
        ranges[row.range_oid] = row.element_oid
    return dict(sorted(ranges.items()))


# ===--- Variant names ---=== #

ANYARRAY_NAME = "anyarray"
ANYARRAY_VARIANT = "AnyArray"
OTHER_VARIANT = "Other"

_RANGE_VECTOR_RE = re.compile(r"(range|vector)$")
_ARRAY_RE = re.compile(r"^_(.*)")


def snake_to_camel(name: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in name.split("_"))


def derive_variant(name: str) -> str:
    """Return the Variant member label for a catalog type name.

    "_int4" -> "Int4Array", "int4range" -> "Int4Range",
    "int2vector" -> "Int2Vector", "anyarray" -> "AnyArray".
    """
    if name == ANYARRAY_NAME:
        return ANYARRAY_VARIANT
    variant = _RANGE_VECTOR_RE.sub(r"_\1", name)
    variant = _ARRAY_RE.sub(r"\1_array", variant)
    return snake_to_camel(variant)


# ===--- Type catalog ---=== #


@dataclass(frozen=True)
class TypeRecord:
    oid: int
    name: str
    variant: str
    kind_code: str
    element_oid: int | None
    doc: str


@dataclass(frozen=True)
class TypeCatalog:
    """Validated built-in types keyed by oid, in ascending oid order.

    Attributes:
        types: oid -> TypeRecord. Every array/range element_oid is a key.
        skipped: Number of composite and enum rows left out.
    """

    types: dict[int, TypeRecord]
    skipped: int = 0

    @property
    def records(self) -> tuple[TypeRecord, ...]:
        return tuple(self.types.values())

    def by_oid(self, oid: int) -> TypeRecord | None:
        return self.types.get(oid)

    def element_of(self, record: TypeRecord) -> TypeRecord | None:
        if record.element_oid is None:
            return None
        return self.types.get(record.element_oid)

    def kind_counts(self) -> dict[str, int]:
        counts = Counter(kind_label(r.kind_code) for r in self.types.values())
        return {label: counts.get(label, 0) for label in KIND_LABELS}

    def __len__(self) -> int:
        return len(self.types)


KIND_LABELS = ("simple", "array", "range", "pseudo")


def kind_label(kind_code: str) -> str:
    if kind_code == KIND_PSEUDO:
        return "pseudo"
    if kind_code == KIND_ARRAY:
        return "array"
    if kind_code == KIND_RANGE:
        return "range"
    return "simple"


def build_doc(name: str, next_line: str | None) -> str:
    """Return the escaped doc comment text for a type.

    "_int4" becomes "INT4[]". A DESCR("...") annotation on the line right
    after the DATA row is appended as " - <description>".
    """
    doc = _ARRAY_RE.sub(r"\1[]", name).upper()
    if next_line is not None:
        match = _DESCR_RE.search(next_line)
        if match:
            doc = f"{doc} - {match.group(1)}"
    return html.escape(doc)


def resolve_element(row: TypeRow, ranges: dict[int, int]) -> int | None:
    """Return the element oid an array or range row points at.

    The range table wins over the row's own typelem column. Other kinds
    carry no element even when typelem is set (name, point, _record).
    """
    if row.kind_code not in (KIND_ARRAY, KIND_RANGE):
        return None
    if row.oid in ranges:
        return ranges[row.oid]
    if row.static_element != 0:
        return row.static_element
    return None


def parse_types(text: str, ranges: dict[int, int]) -> TypeCatalog:
    """Build the type catalog from the pg_type.h snapshot.

    Composite (C) and enum (E) rows are skipped. Each remaining row becomes a
    TypeRecord with its derived variant label, resolved element oid and doc
    text. Cross references are checked once every row has been read.

    Args:
        text: Full pg_type.h snapshot.
        ranges: Output of parse_ranges for the matching pg_range.h.

    Returns:
        TypeCatalog ordered by oid.

    Raises:
        StructuralParseError: A DATA row does not match the row grammar, or
            a derived variant is not a usable identifier.
        DuplicateKeyError: Two rows share an oid or a variant label.
        UnresolvedReferenceError: An array/range row has no element, or its
            element is not in the catalog.
    """
    lines = text.splitlines()
    types: dict[int, TypeRecord] = {}
    variants: dict[str, int] = {}
    line_numbers: dict[int, int] = {}
    seen: dict[int, str] = {}
    skipped = 0

    for index, line in enumerate(lines):
        if not is_data_row(line):
            continue
        line_number = index + 1
        row = parse_type_row(line, line_number)
        if isinstance(row, RowError):
            raise row.to_exception()

        if row.oid in seen:
            raise DuplicateKeyError(
                f"type oid {row.oid} defined twice ({seen[row.oid]}, {row.name})",
                line_number,
            )
        seen[row.oid] = row.name

        if row.kind_code in SKIPPED_KINDS:
            skipped += 1
            continue

        variant = derive_variant(row.name)
        if not variant.isidentifier() or keyword.iskeyword(variant):
            raise StructuralParseError(
                f"type {row.name} derives unusable label {variant!r}", line_number
            )
        if variant == OTHER_VARIANT:
            raise DuplicateKeyError(
                f"type {row.name} collides with the reserved {OTHER_VARIANT} label",
                line_number,
            )
        if variant in variants:
            other = types[variants[variant]].name
            raise DuplicateKeyError(
                f"types {other} and {row.name} both derive label {variant}",
                line_number,
            )

        next_line = lines[index + 1] if index + 1 < len(lines) else None
        record = TypeRecord(
            oid=row.oid,
            name=row.name,
            variant=variant,
            kind_code=row.kind_code,
            element_oid=resolve_element(row, ranges),
            doc=build_doc(row.name, next_line),
        )
        types[row.oid] = record
        variants[variant] = row.oid
        line_numbers[row.oid] = line_number

    for record in types.values():
        if record.kind_code not in (KIND_ARRAY, KIND_RANGE):
            continue
        if record.element_oid is None:
            raise UnresolvedReferenceError(
                f"{kind_label(record.kind_code)} type {record.name} has no element type",
                line_numbers[record.oid],
            )
        if record.element_oid not in types:
            raise UnresolvedReferenceError(
                f"{kind_label(record.kind_code)} type {record.name} references "
                f"unknown element oid {record.element_oid}",
                line_numbers[record.oid],
            )

    return TypeCatalog(types=dict(sorted(types.items())), skipped=skipped)


def build_catalog(type_text: str, range_text: str) -> TypeCatalog:
    return parse_types(type_text, parse_ranges(range_text))


# ===--- Code emitter ---=== #


@dataclass(frozen=True)
class WriteConfig:
    """Metadata embedded in the generated module preamble.

    Attributes:
        runtime_module: Module the generated code imports Kind, Oid and
            Other from. Relative to the generated file when it starts
            with a dot.
        sources: Snapshot file names listed in the header. Names only, so
            output does not depend on where the snapshots live.
    """

    runtime_module: str = DEFAULT_RUNTIME_MODULE
    sources: tuple[str, ...] = ("pg_type.h", "pg_range.h")


_HEADER_BORDER: str = "# x-------------------------------------------x #"
BUILTIN_SCHEMA = "pg_catalog"
DISPLAY_BARE_SCHEMAS = ("public", "pg_catalog")


def format_file_header(config: WriteConfig) -> list[str]:
    """Return the banner and import lines that open the generated module."""
    return [
        _HEADER_BORDER,
        "# | Postgres built-in types",
        "# | Autogenerated file - DO NOT EDIT",
        "# | Generated by pg-type-gen",
        f"# | Source: {', '.join(config.sources)}",
        _HEADER_BORDER,
        "",
        "from __future__ import annotations",
        "",
        "import enum",
        "from dataclasses import dataclass",
        "",
        f"from {config.runtime_module} import Kind, Oid, Other",
    ]


def format_enum_block(catalog: TypeCatalog) -> list[str]:
    lines = [
        "class Variant(enum.Enum):",
        '    """Labels of the built-in Postgres types, plus Other for the rest."""',
        "",
    ]
    for record in catalog.records:
        lines.append(f"    #: {record.doc}")
        lines.append(f'    {record.variant} = "{record.variant}"')
    lines.append("    #: An unknown type.")
    lines.append(f'    {OTHER_VARIANT} = "{OTHER_VARIANT}"')
    return lines


def format_display_block() -> list[str]:
    bare = ", ".join(f'"{schema}"' for schema in DISPLAY_BARE_SCHEMAS)
    return [
        "@dataclass(frozen=True)",
        "class Type:",
        '    """A Postgres type.',
        "",
        "    Built-in types are identified by their Variant alone. Anything else",
        "    is Variant.Other wrapping the client's Other description.",
        '    """',
        "",
        "    variant: Variant",
        "    other: Other | None = None",
        "",
        "    def __post_init__(self) -> None:",
        f"        if (self.variant is Variant.{OTHER_VARIANT}) != (self.other is not None):",
        f'            raise ValueError("other is required for, and only for, Variant.{OTHER_VARIANT}")',
        "",
        "    def __str__(self) -> str:",
        f"        if self.schema in ({bare}):",
        "            return self.name",
        '        return f"{self.schema}.{self.name}"',
    ]


def _kind_expression(record: TypeRecord, catalog: TypeCatalog) -> str:
    if record.kind_code == KIND_PSEUDO:
        return "Kind.PSEUDO"
    if record.kind_code in (KIND_ARRAY, KIND_RANGE):
        element = catalog.element_of(record)
        if element is None:
            raise UnresolvedReferenceError(
                f"{record.name} references unknown element oid {record.element_oid}"
            )
        factory = "array" if record.kind_code == KIND_ARRAY else "range"
        return f"Kind.{factory}(Type(Variant.{element.variant}))"
    return "Kind.SIMPLE"


def format_accessor_block(catalog: TypeCatalog) -> list[str]:
    """Return the Type accessors followed by the lookup tables backing them.

    The accessor methods continue the Type class opened by
    format_display_block. Tables are emitted after the class because the
    kind table instantiates Type for array and range elements.
    """
    lines = [
        "    @staticmethod",
        "    def from_oid(oid: Oid) -> Type | None:",
        '        """Return the built-in type with this oid, or None."""',
        "        variant = _OID_TO_VARIANT.get(oid)",
        "        if variant is None:",
        "            return None",
        "        return Type(variant)",
        "",
        "    @property",
        "    def oid(self) -> Oid:",
        "        if self.other is not None:",
        "            return self.other.oid",
        "        return Oid(_VARIANT_TO_OID[self.variant])",
        "",
        "    @property",
        "    def kind(self) -> Kind:",
        "        if self.other is not None:",
        "            return self.other.kind",
        "        return _KINDS[self.variant]",
        "",
        "    @property",
        "    def schema(self) -> str:",
        "        if self.other is not None:",
        "            return self.other.schema",
        f'        return "{BUILTIN_SCHEMA}"',
        "",
        "    @property",
        "    def name(self) -> str:",
        "        if self.other is not None:",
        "            return self.other.name",
        "        return _NAMES[self.variant]",
        "",
        "",
        "_OID_TO_VARIANT: dict[int, Variant] = {",
    ]
    records = catalog.records
    lines.extend(f"    {r.oid}: Variant.{r.variant}," for r in records)
    lines.append("}")
    lines.append("")
    lines.append("_VARIANT_TO_OID: dict[Variant, int] = {")
    lines.extend(f"    Variant.{r.variant}: {r.oid}," for r in records)
    lines.append("}")
    lines.append("")
    lines.append("_KINDS: dict[Variant, Kind] = {")
    lines.extend(
        f"    Variant.{r.variant}: {_kind_expression(r, catalog)}," for r in records
    )
    lines.append("}")
    lines.append("")
    lines.append("_NAMES: dict[Variant, str] = {")
    lines.extend(f'    Variant.{r.variant}: "{r.name}",' for r in records)
    lines.append("}")
    return lines


def render_module(catalog: TypeCatalog, config: WriteConfig) -> str:
    """Render the complete generated module source.

    File structure:
        <header + imports>
        <Variant enum>              <- one member per record, then Other
        <Type dataclass + __str__>
        <Type accessors>
        <lookup tables>

    Blocks are separated by two blank lines. Output depends only on the
    catalog and config, so identical inputs give identical text.

    Returns:
        Module source with a single trailing newline.
    """
    parts: list[str] = list(format_file_header(config))
    parts.extend(["", ""])
    parts.extend(format_enum_block(catalog))
    parts.extend(["", ""])
    parts.extend(format_display_block())
    parts.append("")
    parts.extend(format_accessor_block(catalog))
    return "\n".join(parts) + "\n"


# ===--- Writer ---=== #


@dataclass(frozen=True)
class FileWriteResult:
    """Result of writing the generated module.

    Attributes:
        filename: Path of the module relative to the output directory.
        path: Absolute path of the written file.
        line_count: Number of newline characters in the content.
        byte_count: Number of UTF-8 bytes written.
    """

    filename: str
    path: Path
    line_count: int
    byte_count: int


def _artifact_mode(file_path: Path) -> int:
    """Mode for the artifact: the existing file's bits, else 0o666 under umask."""
    try:
        return stat.S_IMODE(file_path.stat().st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def write_artifact(output_dir: Path, content: str) -> FileWriteResult:
    """Write the generated module under output_dir.

    Content goes to a temporary file in the destination directory which is
    then renamed over the target, so a failed write never leaves a partial
    module behind. The file keeps the mode of the module it replaces, or
    gets the usual umask-derived mode when it is new.

    Raises:
        OSError: Propagated directly if the filesystem write fails.
    """
    file_path = Path(output_dir) / ARTIFACT_PATH
    file_path.parent.mkdir(parents=True, exist_ok=True)
    data = content.encode("utf-8")
    mode = _artifact_mode(file_path)

    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{file_path.name}.", suffix=".tmp", dir=file_path.parent
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, file_path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    return FileWriteResult(
        filename=ARTIFACT_PATH.as_posix(),
        path=file_path.resolve(),
        line_count=content.count("\n"),
        byte_count=len(data),
    )


def check_artifact(output_dir: Path, content: str) -> bool:
    """Return True when the module on disk already matches content."""
    file_path = Path(output_dir) / ARTIFACT_PATH
    if not file_path.is_file():
        return False
    return file_path.read_bytes() == content.encode("utf-8")


# ===--- Summary report ---=== #


@dataclass(frozen=True)
class GenerationSummary:
    """Data for the post-generation console report.

    Attributes:
        source_label: Snapshot names, e.g. "pg_type.h, pg_range.h".
        output_path: Path of the generated module as a string.
        kind_counts: Record count per kind label, in KIND_LABELS order.
        skipped: Composite and enum rows left out of the catalog.
        line_count: Lines in the generated module.
        byte_count: Bytes in the generated module.
    """

    source_label: str
    output_path: str
    kind_counts: dict[str, int] = field(default_factory=dict)
    skipped: int = 0
    line_count: int = 0
    byte_count: int = 0

    @property
    def total(self) -> int:
        return sum(self.kind_counts.values())


def build_generation_summary(
    catalog: TypeCatalog, config: WriteConfig, result: FileWriteResult
) -> GenerationSummary:
    return GenerationSummary(
        source_label=", ".join(config.sources),
        output_path=str(result.path),
        kind_counts=catalog.kind_counts(),
        skipped=catalog.skipped,
        line_count=result.line_count,
        byte_count=result.byte_count,
    )


def format_generation_summary(summary: GenerationSummary) -> str:
    """Render a GenerationSummary for the console.

    Output format:

        Postgres built-in types generated:

          Source:     pg_type.h, pg_range.h
          Output:     /abs/path/types/type_gen.py

          Types generated:
            Simple:        41
            Array:         44
            ...
            Total:         99

          Skipped:    4 composite/enum rows
          Written:    1,234 lines (56,789 bytes)

    Returns:
        Formatted multi-line string including trailing newline.
    """
    lines = [
        "Postgres built-in types generated:",
        "",
        f"  Source:     {summary.source_label}",
        f"  Output:     {summary.output_path}",
        "",
        "  Types generated:",
    ]
    for label in KIND_LABELS:
        count = summary.kind_counts.get(label, 0)
        lines.append(f"    {label.capitalize() + ':':<11}{count:>6}")
    lines.append(f"    {'Total:':<11}{summary.total:>6}")
    lines.append("")
    lines.append(f"  Skipped:    {summary.skipped} composite/enum rows")
    lines.append(
        f"  Written:    {summary.line_count:,} lines ({summary.byte_count:,} bytes)"
    )
    lines.append("")
    return "\n".join(lines)


def print_generation_summary(summary: GenerationSummary) -> None:
    print(format_generation_summary(summary), end="")


# ===--- Discovery ---=== #


def filter_records(
    records: tuple[TypeRecord, ...], filter_text: str | None
) -> tuple[TypeRecord, ...]:
    """Keep records whose name or variant contains filter_text (any case)."""
    if not filter_text:
        return records
    needle = filter_text.lower()
    return tuple(
        r for r in records if needle in r.name.lower() or needle in r.variant.lower()
    )


def format_types_table(catalog: TypeCatalog, records: tuple[TypeRecord, ...]) -> str:
    """Return the --list-types output.

    Output format:

        3 built-in types in pg_type.h:

            OID  VARIANT    KIND    ELEMENT
             23  Int4       simple
           1007  Int4Array  array   Int4
    """
    lines = [f"{len(records)} built-in types in pg_type.h:", ""]
    if not records:
        lines.append("")
        return "\n".join(lines)

    oid_width = max(len("OID"), max(len(str(r.oid)) for r in records))
    variant_width = max(len("VARIANT"), max(len(r.variant) for r in records))
    kind_width = max(len(label) for label in KIND_LABELS)

    lines.append(
        f"  {'OID':>{oid_width}}  {'VARIANT':<{variant_width}}  "
        f"{'KIND':<{kind_width}}  ELEMENT"
    )
    for r in records:
        element = catalog.element_of(r)
        element_col = element.variant if element is not None else ""
        row = (
            f"  {r.oid:>{oid_width}}  {r.variant:<{variant_width}}  "
            f"{kind_label(r.kind_code):<{kind_width}}  {element_col}"
        )
        lines.append(row.rstrip())
    lines.append("")
    return "\n".join(lines)


def read_snapshot(path: Path) -> str:
    return Path(path).read_text(encoding="utf-8")


def run_discovery(config: DiscoveryConfig) -> None:
    catalog = build_catalog(read_snapshot(config.pg_type), read_snapshot(config.pg_range))
    records = filter_records(catalog.records, config.filter_text)
    print(format_types_table(catalog, records), end="")


# ===--- Pipeline ---=== #


def build_write_config(config: GenerateConfig) -> WriteConfig:
    return WriteConfig(
        runtime_module=config.runtime_module,
        sources=(config.pg_type.name, config.pg_range.name),
    )


def load_and_render(config: GenerateConfig) -> tuple[TypeCatalog, WriteConfig, str]:
    """Parse both snapshots and render the module text.

    Raises:
        OSError: A snapshot is not readable.
        CatalogError: A snapshot does not match the row grammar or fails
            cross-reference validation.
    """
    print(f"Parsing: {config.pg_range}")
    ranges = parse_ranges(read_snapshot(config.pg_range))
    print(f"  Ranges: {len(ranges)} range types")

    print(f"Parsing: {config.pg_type}")
    catalog = parse_types(read_snapshot(config.pg_type), ranges)
    print(f"  Catalog: {len(catalog)} types, {catalog.skipped} skipped")

    write_config = build_write_config(config)
    content = render_module(catalog, write_config)
    return catalog, write_config, content


def run_generate(config: GenerateConfig) -> FileWriteResult:
    """Execute the full generation pipeline for a GenerateConfig.

    Parse ranges -> parse types -> render -> write -> report. The catalog is
    complete and validated before anything touches the output directory.

    Returns:
        FileWriteResult for the written module.

    Raises:
        OSError: Snapshot not readable or filesystem write failure.
        CatalogError: Snapshot rejected; nothing is written.
    """
    catalog, write_config, content = load_and_render(config)

    result = write_artifact(config.output_dir, content)
    print(f"  Written: {result.line_count} lines to {result.path}")

    print_generation_summary(build_generation_summary(catalog, write_config, result))
    return result


def run_check(config: GenerateConfig) -> bool:
    """Return True when the module on disk is up to date. Writes nothing."""
    _catalog, _write_config, content = load_and_render(config)
    target = Path(config.output_dir) / ARTIFACT_PATH
    if check_artifact(config.output_dir, content):
        print(f"  Up to date: {target}")
        return True
    print(f"  Stale: {target} (rerun without --check to regenerate)")
    return False


# ===--- Main generation ---=== #


def main():
    try:
        config = build_config()
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}")
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err

    try:
        if isinstance(config, DiscoveryConfig):
            run_discovery(config)
        elif config.check:
            if not run_check(config):
                raise SystemExit(1)
        else:
            run_generate(config)
    except CatalogError as err:
        print(f"Catalog error [{err.code}]: {err.message}")
        raise SystemExit(1) from err
    except OSError as err:
        print(f"Error: {err}")
        raise SystemExit(1) from err


if __name__ == "__main__":
    main()
