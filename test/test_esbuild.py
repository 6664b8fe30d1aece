from __future__ import annotations

import json
import os
import shlex
import shutil
from pathlib import Path

import pytest

from conftest import write_file
from fnwrap.builders.esbuild import (
    Artifact,
    BuildInput,
    BuildOptions,
    EsbuildCompiler,
    OutputFile,
    esbuild_args,
    rebase_source_map,
    source_file_loader,
)
from fnwrap.errors import BuildError, ResolutionError

needs_esbuild = pytest.mark.skipif(shutil.which("esbuild") is None, reason="esbuild is not installed")


def test_esbuild_args_for_entry() -> None:
    options = BuildOptions(outfile="/build/hello.cjs", node="18", cwd="/project")
    args = esbuild_args(BuildInput.entry("/project/functions/hello.ts"), options,
                        "/tmp/x/hello.cjs", "/tmp/x/meta.json")
    assert args[0] == "/project/functions/hello.ts"
    assert "--bundle" in args
    assert "--packages=external" in args
    assert "--platform=node" in args
    assert "--target=node18" in args
    assert "--format=cjs" in args
    assert "--sourcemap=external" in args
    assert "--outfile=/tmp/x/hello.cjs" in args
    assert "--metafile=/tmp/x/meta.json" in args


def test_esbuild_args_for_virtual_input() -> None:
    options = BuildOptions(outfile="/build/index.cjs", node="20", cwd="/project", bundle=False)
    args = esbuild_args(BuildInput.virtual("export {}", "/project/functions", "index.cjs"), options,
                        "/tmp/x/index.cjs", "/tmp/x/meta.json")
    assert "--sourcefile=index.cjs" in args
    assert "--loader=js" in args
    assert "--bundle" not in args
    assert "--packages=external" not in args
    assert "--target=node20" in args


def test_source_file_loader() -> None:
    assert source_file_loader("init.ts") == "ts"
    assert source_file_loader("page.tsx") == "tsx"
    assert source_file_loader("index.cjs") == "js"
    assert source_file_loader(None) == "js"


def test_rebase_source_map() -> None:
    data = json.dumps({"version": 3, "sources": ["../../project/functions/hello.ts"]}).encode("utf-8")
    rebased = json.loads(rebase_source_map(data, "/tmp/fnwrap-1", "/project/build/development/functions"))
    assert rebased["sources"] == ["../../../functions/hello.ts"]
    assert rebased["version"] == 3


class RecordingCompiler(EsbuildCompiler):
    """Reports the entry plus any extra files as inputs without running esbuild."""

    def __init__(self, *extra: str) -> None:
        super().__init__("esbuild")
        self.extra = list(extra)
        self.compiled = 0

    def compile(self, name, build_input, options) -> Artifact:
        self.compiled += 1
        inputs = [os.path.abspath(build_input.path)] + self.extra
        return Artifact(name, [OutputFile(options.outfile, b"")], inputs)


def test_context_skips_unchanged_inputs(tmp_path: Path) -> None:
    entry = write_file(tmp_path / "hello.ts", 'import { message } from "./message";')
    message = write_file(tmp_path / "message.ts", 'export const message = "hi";')
    compiler = RecordingCompiler(str(message))
    options = BuildOptions(outfile=str(tmp_path / "out" / "hello.cjs"), node="18", cwd=str(tmp_path))

    with compiler.context("hello.cjs", BuildInput.entry(str(entry)), options) as context:
        assert context.rebuild().changed
        assert not context.rebuild().changed
        assert compiler.compiled == 1

        message.write_text('export const message = "bye";')
        assert context.rebuild().changed
        assert compiler.compiled == 2

    with pytest.raises(BuildError):
        context.rebuild()


def test_context_detects_change_with_same_mtime(tmp_path: Path) -> None:
    entry = write_file(tmp_path / "hello.ts", "export default () => 1;")
    compiler = RecordingCompiler()
    options = BuildOptions(outfile=str(tmp_path / "out" / "hello.cjs"), node="18", cwd=str(tmp_path))

    with compiler.context("hello.cjs", BuildInput.entry(str(entry)), options) as context:
        context.rebuild()
        stat = entry.stat()
        entry.write_text("export default () => 2;")
        os.utime(entry, ns=(stat.st_atime_ns, stat.st_mtime_ns))
        assert context.rebuild().changed
        assert compiler.compiled == 2


class WritingCompiler(RecordingCompiler):
    """Simulates an editor saving the entry while esbuild is running."""

    def compile(self, name, build_input, options) -> Artifact:
        artifact = super().compile(name, build_input, options)
        if self.compiled == 1:
            Path(build_input.path).write_text("export default () => 2;")
        return artifact


def test_context_detects_write_during_compile(tmp_path: Path) -> None:
    entry = write_file(tmp_path / "hello.ts", "export default () => 1;")
    compiler = WritingCompiler()
    options = BuildOptions(outfile=str(tmp_path / "out" / "hello.cjs"), node="18", cwd=str(tmp_path))

    with compiler.context("hello.cjs", BuildInput.entry(str(entry)), options) as context:
        context.rebuild()
        assert context.rebuild().changed
        assert not context.rebuild().changed
        assert compiler.compiled == 2


def test_context_rebuilds_after_input_removed(tmp_path: Path) -> None:
    entry = write_file(tmp_path / "hello.ts", "export default () => 1;")
    message = write_file(tmp_path / "message.ts")
    compiler = RecordingCompiler(str(message))
    options = BuildOptions(outfile=str(tmp_path / "out" / "hello.cjs"), node="18", cwd=str(tmp_path))

    with compiler.context("hello.cjs", BuildInput.entry(str(entry)), options) as context:
        context.rebuild()
        message.unlink()
        assert context.rebuild().changed


FAILURE_OUTPUT = """\
✘ [ERROR] Could not resolve "./missing"

    hello.ts:1:7:
      1 │ import "./missing";
        ╵        ~~~~~~~~~~~

1 error
"""


def _failing_esbuild(tmp_path: Path, output: str) -> str:
    script = write_file(tmp_path / "esbuild.sh", f"cat >&2 <<'EOF'\n{output}EOF\nexit 1\n")
    return f"sh {shlex.quote(str(script))}"


def test_unresolved_module_is_a_resolution_error(tmp_path: Path) -> None:
    entry = write_file(tmp_path / "hello.ts", 'import "./missing";')
    compiler = EsbuildCompiler(_failing_esbuild(tmp_path, FAILURE_OUTPUT))
    options = BuildOptions(outfile=str(tmp_path / "out" / "hello.cjs"), node="18", cwd=str(tmp_path))

    with pytest.raises(ResolutionError) as excinfo:
        compiler.compile("hello.cjs", BuildInput.entry(str(entry)), options)
    assert excinfo.value.unit == "hello.cjs"
    assert excinfo.value.specifier == "./missing"
    assert excinfo.value.resolve_dir == str(tmp_path)
    assert any("Could not resolve" in line for line in excinfo.value.diagnostics)
    assert not (tmp_path / "out").exists()


def test_syntax_error_is_a_build_error(tmp_path: Path) -> None:
    entry = write_file(tmp_path / "hello.ts", "export default (")
    output = '✘ [ERROR] Unexpected end of file\n\n    hello.ts:1:16:\n'
    compiler = EsbuildCompiler(_failing_esbuild(tmp_path, output))
    options = BuildOptions(outfile=str(tmp_path / "out" / "hello.cjs"), node="18", cwd=str(tmp_path))

    with pytest.raises(BuildError) as excinfo:
        compiler.compile("hello.cjs", BuildInput.entry(str(entry)), options)
    assert not isinstance(excinfo.value, ResolutionError)
    assert "✘ [ERROR] Unexpected end of file" in excinfo.value.diagnostics


def test_missing_executable_is_a_build_error(tmp_path: Path) -> None:
    entry = write_file(tmp_path / "hello.js", "module.exports = 1;")
    compiler = EsbuildCompiler(str(tmp_path / "no-such-esbuild"))
    options = BuildOptions(outfile=str(tmp_path / "out" / "hello.cjs"), node="18", cwd=str(tmp_path))
    with pytest.raises(BuildError):
        compiler.compile("hello.cjs", BuildInput.entry(str(entry)), options)


@needs_esbuild
def test_esbuild_compiles_sample_function(sample_project: Path) -> None:
    out_dir = sample_project / "build" / "development" / "functions"
    options = BuildOptions(outfile=str(out_dir / "hello.cjs"), node="18", cwd=str(sample_project))
    compiler = EsbuildCompiler("esbuild")
    with compiler.context("hello.cjs", BuildInput.entry(str(sample_project / "functions" / "hello.ts")),
                          options) as context:
        artifact = context.rebuild()

    code, source_map = artifact.outputs
    assert b"from fnwrap" in code.contents
    sources = json.loads(source_map.contents)["sources"]
    assert any(source.endswith("functions/shared/message.ts") for source in sources)
    assert str(sample_project / "functions" / "shared" / "message.ts") in artifact.inputs


@needs_esbuild
def test_type_only_import_of_declaration_file(tmp_path: Path) -> None:
    write_file(tmp_path / "functions" / "types.d.ts", "export interface Config { name: string }")
    entry = write_file(
        tmp_path / "functions" / "typed.ts",
        'import type { Config } from "./types";\nexport default (config: Config) => config.name;\n',
    )
    options = BuildOptions(outfile=str(tmp_path / "out" / "typed.cjs"), node="18", cwd=str(tmp_path))

    artifact = EsbuildCompiler("esbuild").compile("typed.cjs", BuildInput.entry(str(entry)), options)
    assert b"config.name" in artifact.outputs[0].contents
    assert artifact.inputs == [str(entry)]


@needs_esbuild
def test_glob_in_string_literal_keeps_package_external(tmp_path: Path) -> None:
    entry = write_file(
        tmp_path / "functions" / "files.ts",
        'const pattern = "src/*.ts";\nimport _ from "lodash";\nexport default () => _.identity(pattern);\n',
    )
    options = BuildOptions(outfile=str(tmp_path / "out" / "files.cjs"), node="18", cwd=str(tmp_path))

    artifact = EsbuildCompiler("esbuild").compile("files.cjs", BuildInput.entry(str(entry)), options)
    code = artifact.outputs[0].contents
    assert b'require("lodash")' in code
    assert b"src/*.ts" in code
    assert list(artifact.externals) == ["lodash"]


@needs_esbuild
def test_esbuild_reports_missing_local_module(tmp_path: Path) -> None:
    entry = write_file(tmp_path / "functions" / "hello.ts", 'import "./missing";')
    options = BuildOptions(outfile=str(tmp_path / "out" / "hello.cjs"), node="18", cwd=str(tmp_path))

    with pytest.raises(ResolutionError) as excinfo:
        EsbuildCompiler("esbuild").compile("hello.cjs", BuildInput.entry(str(entry)), options)
    assert excinfo.value.specifier == "./missing"
    assert excinfo.value.resolve_dir == str(tmp_path / "functions")
