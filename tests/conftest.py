import argparse
import importlib
import sys
import uuid
from collections.abc import Callable
from pathlib import Path
from types import ModuleType

import pytest

GENERATOR_DIR = Path(__file__).resolve().parent.parent
if str(GENERATOR_DIR) not in sys.path:
    sys.path.insert(0, str(GENERATOR_DIR))

import pg_type_gen as gen  # noqa: E402

# Stand-in for the client library's runtime types. Only the surface the
# generated module touches is provided.
RUNTIME_STUB = '''\
from dataclasses import dataclass

Oid = int


@dataclass(frozen=True)
class Kind:
    tag: str
    element: object = None

    @classmethod
    def array(cls, element):
        return cls("array", element)

    @classmethod
    def range(cls, element):
        return cls("range", element)


Kind.SIMPLE = Kind("simple")
Kind.PSEUDO = Kind("pseudo")


@dataclass(frozen=True)
class Other:
    name: str
    oid: int
    kind: Kind
    schema: str
'''


def _type_row(
    oid: int,
    name: str,
    kind: str = "U",
    element: int = 0,
    typtype: str = "b",
) -> str:
    return (
        f"DATA(insert OID = {oid} (\t{name}\tPGNSP PGUID -1 f {typtype} {kind} f t "
        f"\\054 0\t{element} 0 {name}_in {name}_out - - - i x f 0 -1 0 0 "
        "_null_ _null_ _null_ ));"
    )


def _range_row(range_oid: int, element_oid: int) -> str:
    return f"DATA(insert ( {range_oid} {element_oid} 0 0 - -));"


def _descr(text: str) -> str:
    return f'DESCR("{text}");'


def _snapshot(*lines: str) -> str:
    return "\n".join(["/* snapshot */", "", *lines, "", "#endif"]) + "\n"


@pytest.fixture
def small_type_text() -> str:
    return _snapshot(
        _type_row(16, "bool", "B"),
        _descr("boolean, 'true'/'false'"),
        "#define BOOLOID 16",
        _type_row(23, "int4", "N"),
        _descr("-2 billion to 2 billion integer, 4-byte storage"),
        _type_row(71, "pg_type", "C", typtype="c"),
        _type_row(1000, "_bool", "A", element=16),
        _type_row(1007, "_int4", "A", element=23),
        _type_row(2277, "anyarray", "P", typtype="p"),
        _type_row(3500, "anyenum", "P", typtype="p"),
        _type_row(3904, "int4range", "R", typtype="r"),
        _descr("range of integers"),
        _type_row(3905, "_int4range", "A", element=3904),
        _type_row(9001, "mood", "E", typtype="e"),
    )


@pytest.fixture
def small_range_text() -> str:
    return _snapshot(_range_row(3904, 23))


@pytest.fixture
def snapshot_paths(
    tmp_path: Path, small_type_text: str, small_range_text: str
) -> dict[str, Path]:
    pg_type = tmp_path / "pg_type.h"
    pg_type.write_text(small_type_text, encoding="utf-8")
    pg_range = tmp_path / "pg_range.h"
    pg_range.write_text(small_range_text, encoding="utf-8")
    return {
        "pg_type": pg_type,
        "pg_range": pg_range,
        "output_dir": tmp_path / "out",
    }


@pytest.fixture
def make_args(snapshot_paths: dict[str, Path]) -> Callable[..., argparse.Namespace]:
    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "pg_type": snapshot_paths["pg_type"],
            "pg_range": snapshot_paths["pg_range"],
            "output_dir": snapshot_paths["output_dir"],
            "runtime_module": gen.DEFAULT_RUNTIME_MODULE,
            "check": False,
            "list_types": False,
            "filter": None,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args


@pytest.fixture
def load_generated(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Callable[[str], ModuleType]:
    """Import rendered module text inside a throwaway client package."""

    def _load_generated(content: str) -> ModuleType:
        package = f"pgclient_{uuid.uuid4().hex}"
        root = tmp_path / "pkgs"
        output_dir = root / package
        types_dir = output_dir / "types"
        types_dir.mkdir(parents=True)
        (output_dir / "__init__.py").write_text("", encoding="utf-8")
        (types_dir / "__init__.py").write_text("", encoding="utf-8")
        (types_dir / "base.py").write_text(RUNTIME_STUB, encoding="utf-8")
        gen.write_artifact(output_dir, content)

        monkeypatch.syspath_prepend(str(root))
        importlib.invalidate_caches()
        return importlib.import_module(f"{package}.types.type_gen")

    return _load_generated


@pytest.fixture
def make_type_row() -> Callable[..., str]:
    return _type_row


@pytest.fixture
def make_range_row() -> Callable[[int, int], str]:
    return _range_row


@pytest.fixture
def make_descr() -> Callable[[str], str]:
    return _descr


@pytest.fixture
def make_snapshot() -> Callable[..., str]:
    return _snapshot
