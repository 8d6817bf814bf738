"""Tests for formula loading (Python and declarative flavors)."""

import sys
from pathlib import Path
from textwrap import dedent

import pytest

from llar.build.cache import BuildResult
from llar.build.context import BuildContext, Project
from llar.errors import FormulaLoadError
from llar.formula.base import ModuleDeps
from llar.formula.declarative import DeclarativeFormula
from llar.formula.python import PythonFormula, load_comparator
from llar.formula.store import load_formula
from llar.types import ModuleRef

PY_FORMULA = dedent(
    """
    ID = "madler/zlib"
    FROM_VER = "1.2.11"

    def on_require(project, deps):
        if b"needs-ssl" in project.read_file("README"):
            deps.require("openssl/openssl", "3.0.0")
        deps.require("other/lib")

    def on_build(ctx, project, result):
        result.output_dir = ctx.output_dir()
        result.metadata = "-lz " + ctx.current_matrix()
    """
)


def _ctx(tmp_path: Path) -> BuildContext:
    src = tmp_path / "src"
    src.mkdir(exist_ok=True)
    return BuildContext(
        module=ModuleRef("madler/zlib", "1.3.1"),
        source_dir=src,
        install_dir=tmp_path / "install",
        matrix="amd64-linux",
        build_results={},
        output_dir_of=lambda ref: tmp_path / "other",
    )


class TestModuleDeps:
    """Tests for ModuleDeps."""

    def test_require(self) -> None:
        """Declared deps should keep order and default to the empty version."""
        deps = ModuleDeps()
        deps.require("a/b", "1.0")
        deps.require("c/d")
        assert deps.deps == [ModuleRef("a/b", "1.0"), ModuleRef("c/d", "")]
        assert len(deps) == 2


class TestPythonFormula:
    """Tests for PythonFormula."""

    def test_load(self, tmp_path: Path) -> None:
        """Module-level names should become formula properties."""
        path = tmp_path / "zlib_llar.py"
        path.write_text(PY_FORMULA)
        formula = PythonFormula(path)
        assert formula.module_id == "madler/zlib"
        assert formula.from_ver == "1.2.11"
        assert formula.has_on_require

    def test_on_require(self, tmp_path: Path) -> None:
        """on_require should see the project sources."""
        path = tmp_path / "zlib_llar.py"
        path.write_text(PY_FORMULA)
        src = tmp_path / "src"
        src.mkdir()
        (src / "README").write_text("needs-ssl")

        deps = ModuleDeps()
        PythonFormula(path).on_require(Project(source_dir=src), deps)
        assert deps.deps == [ModuleRef("openssl/openssl", "3.0.0"), ModuleRef("other/lib")]

    def test_on_build(self, tmp_path: Path) -> None:
        """on_build should fill the result."""
        path = tmp_path / "zlib_llar.py"
        path.write_text(PY_FORMULA)
        result = BuildResult()
        PythonFormula(path).on_build(_ctx(tmp_path), Project(), result)
        assert result.output_dir == tmp_path / "install"
        assert result.metadata == "-lz amd64-linux"

    def test_missing_id(self, tmp_path: Path) -> None:
        """A formula without ID should be rejected."""
        path = tmp_path / "bad_llar.py"
        path.write_text("FROM_VER = '1'\ndef on_build(ctx, project, result): pass\n")
        with pytest.raises(FormulaLoadError) as exc_info:
            PythonFormula(path)
        assert exc_info.value.code == "invalid_formula"

    def test_missing_on_build(self, tmp_path: Path) -> None:
        """A formula without on_build should be rejected."""
        path = tmp_path / "bad_llar.py"
        path.write_text("ID = 'a/b'\nFROM_VER = '1'\n")
        with pytest.raises(FormulaLoadError):
            PythonFormula(path)

    def test_import_error(self, tmp_path: Path) -> None:
        """Errors raised at import should become FormulaLoadError."""
        path = tmp_path / "bad_llar.py"
        path.write_text("raise RuntimeError('broken formula')\n")
        with pytest.raises(FormulaLoadError, match="broken formula"):
            PythonFormula(path)

    def test_not_registered_in_sys_modules(self, tmp_path: Path) -> None:
        """Formula files should load as anonymous modules."""
        path = tmp_path / "zlib_llar.py"
        path.write_text(PY_FORMULA)
        PythonFormula(path)
        assert not any("zlib_llar" in name for name in sys.modules)


class TestComparator:
    """Tests for load_comparator."""

    def test_load(self, tmp_path: Path) -> None:
        """compare_ver should be returned as a callable."""
        path = tmp_path / "zlib_cmp.py"
        path.write_text(
            "def compare_ver(a, b):\n"
            "    return (len(a.version) > len(b.version)) - (len(a.version) < len(b.version))\n"
        )
        cmp = load_comparator(path)
        assert cmp(ModuleRef("a/b", "10"), ModuleRef("a/b", "9")) > 0

    def test_missing_function(self, tmp_path: Path) -> None:
        """A comparator file without compare_ver should be rejected."""
        path = tmp_path / "zlib_cmp.py"
        path.write_text("x = 1\n")
        with pytest.raises(FormulaLoadError) as exc_info:
            load_comparator(path)
        assert exc_info.value.code == "invalid_comparator"


class TestDeclarativeFormula:
    """Tests for DeclarativeFormula."""

    def test_load(self, tmp_path: Path) -> None:
        """YAML content should be validated into the schema."""
        path = tmp_path / "zlib_llar.yaml"
        path.write_text(
            dedent(
                """
                id: madler/zlib
                from_ver: "1.2.11"
                require:
                  - id: other/lib
                    version: "1.0"
                  - id: third/lib
                metadata: "-I{install_dir}/include"
                """
            )
        )
        formula = DeclarativeFormula.from_file(path)
        assert formula.module_id == "madler/zlib"
        assert formula.from_ver == "1.2.11"
        assert formula.has_on_require

        deps = ModuleDeps()
        formula.on_require(Project(), deps)
        assert deps.deps == [ModuleRef("other/lib", "1.0"), ModuleRef("third/lib", "")]

    def test_on_build_runs_steps(self, tmp_path: Path) -> None:
        """Build steps should run with placeholders expanded."""
        path = tmp_path / "app_llar.yaml"
        path.write_text(
            dedent(
                f"""
                id: acme/app
                from_ver: "1.0"
                env:
                  LLAR_OUT: "{{install_dir}}/marker"
                build:
                  - ["{sys.executable}", "-c",
                     "import os, pathlib; p = pathlib.Path(os.environ['LLAR_OUT']); p.parent.mkdir(parents=True, exist_ok=True); p.write_text('{{matrix}}')"]
                metadata: "-L{{install_dir}}/lib"
                """
            )
        )
        formula = DeclarativeFormula.from_file(path)
        result = BuildResult()
        formula.on_build(_ctx(tmp_path), Project(), result)

        install = tmp_path / "install"
        assert (install / "marker").read_text() == "amd64-linux"
        assert (tmp_path / "src" / "_build").is_dir()
        assert result.output_dir == install
        assert result.metadata == f"-L{install}/lib"

    def test_unknown_field(self, tmp_path: Path) -> None:
        """Unknown keys should be rejected."""
        path = tmp_path / "bad_llar.yaml"
        path.write_text("id: a/b\nfrom_ver: '1'\nbogus: true\n")
        with pytest.raises(FormulaLoadError) as exc_info:
            DeclarativeFormula.from_file(path)
        assert exc_info.value.code == "invalid_formula"

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        """Malformed YAML should be rejected."""
        path = tmp_path / "bad_llar.yaml"
        path.write_text("id: [unclosed\n")
        with pytest.raises(FormulaLoadError):
            DeclarativeFormula.from_file(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file should report formula_not_found."""
        with pytest.raises(FormulaLoadError) as exc_info:
            DeclarativeFormula.from_file(tmp_path / "nope_llar.yaml")
        assert exc_info.value.code == "formula_not_found"


class TestLoadFormula:
    """Tests for load_formula dispatch."""

    def test_dispatch(self, tmp_path: Path) -> None:
        """The suffix should select the formula flavor."""
        py = tmp_path / "zlib_llar.py"
        py.write_text(PY_FORMULA)
        yml = tmp_path / "zlib_llar.yaml"
        yml.write_text("id: a/b\nfrom_ver: '1'\n")
        assert isinstance(load_formula(py), PythonFormula)
        assert isinstance(load_formula(yml), DeclarativeFormula)

    def test_unknown_suffix(self, tmp_path: Path) -> None:
        """Other files should be rejected."""
        with pytest.raises(FormulaLoadError):
            load_formula(tmp_path / "README.md")
