from __future__ import annotations

import json
import os
import shutil
import threading
from pathlib import Path

import pytest

from fnwrap.builders.esbuild import Artifact, OutputFile
from fnwrap.config import BuildConfig
from fnwrap.errors import BuildError

SAMPLE_PROJECT = Path(__file__).resolve().parent / "sample_project"


def write_file(path: Path, text: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def make_config(root: Path, **overrides) -> BuildConfig:
    config = {"functions_path": "functions", "build_path": "build"}
    config.update(overrides)
    (root / "functions").mkdir(parents=True, exist_ok=True)
    (root / "fnwrap.json").write_text(json.dumps(config), encoding="utf-8")
    return BuildConfig.load(str(root))


@pytest.fixture
def sample_project(tmp_path: Path) -> Path:
    root = tmp_path / "sample_project"
    shutil.copytree(SAMPLE_PROJECT, root)
    return root


class FakeContext:
    def __init__(self, compiler, name, build_input, options) -> None:
        self.compiler = compiler
        self.name = name
        self.build_input = build_input
        self.options = options
        self.disposed = False

    def rebuild(self) -> Artifact:
        return self.compiler.compile(self)

    def dispose(self) -> None:
        self.disposed = True
        self.compiler.disposed.append(self.name)


class FakeCompiler:
    """Compiles by copying the entry source, so outputs track input contents."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.disposed: list[str] = []
        self.contexts: list[FakeContext] = []
        self.fail: set[str] = set()
        self.gate: threading.Event | None = None
        self.entered = threading.Event()
        self._lock = threading.Lock()

    def context(self, name, build_input, options) -> FakeContext:
        context = FakeContext(self, name, build_input, options)
        self.contexts.append(context)
        return context

    def compile(self, context: FakeContext) -> Artifact:
        with self._lock:
            self.calls.append(context.name)
        if self.gate is not None:
            self.entered.set()
            self.gate.wait(5)
        if context.name in self.fail:
            raise BuildError(context.name, f"{context.name} failed", ["error: boom"])

        build_input = context.build_input
        inputs = []
        if build_input.path is not None:
            with open(build_input.path, "rb") as f:
                contents = f.read()
            inputs.append(os.path.abspath(build_input.path))
        else:
            contents = build_input.contents.encode("utf-8")
        outfile = context.options.outfile
        outputs = [
            OutputFile(outfile, contents),
            OutputFile(outfile + ".map", b'{"version":3,"sources":[]}'),
        ]
        return Artifact(context.name, outputs, inputs)


@pytest.fixture
def compiler() -> FakeCompiler:
    return FakeCompiler()


class DummyObserver:
    """Observer stand-in that records schedules without touching the file system."""

    def __init__(self) -> None:
        self.scheduled: list[tuple[str, bool]] = []
        self.unscheduled: list[object] = []
        self.started = False
        self.stopped = False

    def schedule(self, handler, path, recursive=False):
        self.scheduled.append((path, recursive))
        return (path, recursive)

    def unschedule(self, watch) -> None:
        self.unscheduled.append(watch)

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def join(self, timeout=None) -> None:
        pass
