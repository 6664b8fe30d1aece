# -*- coding: utf-8 -*-
"""
esbuild 编译模块 - 调用 esbuild 编译单个构建单元

esbuild 输出到临时目录，产物读入内存后由构建单元管理器负责写入，
编译失败时不会影响已经写出的文件。
"""

import hashlib
import json
import os
import shlex
import tempfile
from typing import Dict, List, NamedTuple, Optional, Sequence

from ..errors import BuildError
from ..utils.utils import run_command
from .resolver import EXTERNAL_ARGS, ModuleResolver

DEFAULT_ESBUILD = "npx --no-install esbuild"

LOADERS = {
    ".ts": "ts",
    ".tsx": "tsx",
    ".jsx": "jsx",
}


class BuildInput(NamedTuple):
    """
    构建输入：入口文件（path），或者虚拟模块源码（contents + resolve_dir）
    """

    path: Optional[str] = None
    contents: Optional[str] = None
    source_file: Optional[str] = None
    resolve_dir: Optional[str] = None

    @classmethod
    def entry(cls, path, source_file=None):
        return cls(path=path, source_file=source_file or os.path.basename(path))

    @classmethod
    def virtual(cls, contents, resolve_dir, source_file):
        return cls(contents=contents, source_file=source_file, resolve_dir=resolve_dir)


class BuildOptions(NamedTuple):
    """所有构建单元共用的编译参数"""

    outfile: str
    node: str
    cwd: str
    bundle: bool = True


class OutputFile(NamedTuple):
    path: str
    contents: bytes


class Artifact(NamedTuple):
    """
    一次编译的产物

    Attributes:
        unit: 构建单元名
        outputs: 输出文件
        inputs: 本次编译涉及的本地文件（绝对路径）
        changed: 为 False 时表示输入没有变化，沿用上次的产物
        externals: 保持外部引用的模块
    """

    unit: str
    outputs: List[OutputFile]
    inputs: List[str]
    changed: bool = True
    externals: Sequence[str] = ()


def source_file_loader(source_file):
    """根据源文件扩展名选择 esbuild loader"""
    return LOADERS.get(os.path.splitext(source_file or "")[1], "js")


def esbuild_args(build_input, options, outfile, metafile):
    """生成 esbuild 命令行参数（不包含 esbuild 命令本身）"""
    args = []
    if build_input.path is not None:
        args.append(build_input.path)
    else:
        args.append(f"--sourcefile={build_input.source_file}")
        args.append(f"--loader={source_file_loader(build_input.source_file)}")
    if options.bundle:
        args.append("--bundle")
        args.extend(EXTERNAL_ARGS)
    args.extend([
        "--platform=node",
        f"--target=node{options.node}",
        "--format=cjs",
        "--sourcemap=external",
        f"--outfile={outfile}",
        f"--metafile={metafile}",
        "--allow-overwrite",
        "--log-level=warning",
    ])
    return args


def rebase_source_map(data, from_dir, to_dir):
    """把 source map 中的 sources 路径从 esbuild 输出目录改为相对于最终输出目录"""
    source_map = json.loads(data)
    sources = []
    for source in source_map.get("sources", []):
        absolute = os.path.normpath(os.path.join(from_dir, source))
        sources.append(os.path.relpath(absolute, to_dir).replace(os.sep, "/"))
    source_map["sources"] = sources
    return json.dumps(source_map).encode("utf-8")


class EsbuildContext:
    """
    单个构建单元的增量编译句柄

    记录上次编译涉及的文件及其内容摘要，输入没有变化时直接返回上次的产物。
    """

    def __init__(self, compiler, name, build_input, options):
        self.compiler = compiler
        self.name = name
        self.build_input = build_input
        self.options = options
        self.disposed = False
        self._last: Optional[Artifact] = None
        self._digests: Dict[str, Optional[str]] = {}

    def rebuild(self) -> Artifact:
        if self.disposed:
            raise BuildError(self.name, f"{self.name} 的编译句柄已释放")
        if self._last is not None and self._is_fresh():
            return self._last._replace(changed=False)

        # 编译前记录已知输入的摘要，编译期间被修改的文件在下次重建时会被发现
        before = {path: _digest(path) for path in self._known_inputs()}
        artifact = self.compiler.compile(self.name, self.build_input, self.options)
        self._digests = {path: before[path] if path in before else _digest(path) for path in artifact.inputs}
        self._last = artifact
        return artifact

    def _known_inputs(self):
        paths = set(self._digests)
        if self.build_input.path is not None:
            paths.add(os.path.normpath(os.path.join(self.options.cwd, self.build_input.path)))
        return paths

    def _is_fresh(self):
        if not self._digests:
            return False
        return all(_digest(path) == digest for path, digest in self._digests.items())

    def dispose(self):
        self.disposed = True
        self._digests.clear()
        self._last = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.dispose()


def _digest(path):
    # 修改时间精度不足时同一秒内的两次写入无法区分，按内容比较
    try:
        with open(path, 'rb') as f:
            return hashlib.sha1(f.read()).hexdigest()
    except OSError:
        return None


class EsbuildCompiler:
    """通过 esbuild 命令行编译"""

    def __init__(self, command=None, resolver=None):
        self.command = shlex.split(command or DEFAULT_ESBUILD)
        self.resolver = resolver or ModuleResolver()

    def context(self, name, build_input, options) -> EsbuildContext:
        return EsbuildContext(self, name, build_input, options)

    def compile(self, name, build_input, options) -> Artifact:
        out_dir = os.path.dirname(options.outfile)
        out_name = os.path.basename(options.outfile)

        with tempfile.TemporaryDirectory(prefix="fnwrap-") as tmp_dir:
            tmp_outfile = os.path.join(tmp_dir, out_name)
            metafile = os.path.join(tmp_dir, "meta.json")
            args = esbuild_args(build_input, options, tmp_outfile, metafile)

            # 虚拟模块从 stdin 输入，相对路径以工作目录解析
            cwd = build_input.resolve_dir if build_input.path is None else options.cwd
            success, output = run_command(self.command + args, cwd=cwd, input=build_input.contents)
            if not success:
                diagnostics = [line for line in output.splitlines() if line.strip()]
                unresolved = self.resolver.unresolved(output, cwd, unit=name)
                if unresolved:
                    unresolved[0].diagnostics = diagnostics
                    raise unresolved[0]
                raise BuildError(name, f"{name} 编译失败", diagnostics)

            outputs = []
            with open(tmp_outfile, 'rb') as f:
                outputs.append(OutputFile(options.outfile, f.read()))
            map_path = tmp_outfile + ".map"
            if os.path.exists(map_path):
                with open(map_path, 'rb') as f:
                    outputs.append(OutputFile(options.outfile + ".map", rebase_source_map(f.read(), tmp_dir, out_dir)))

            with open(metafile, 'r', encoding='utf-8') as f:
                graph = self.resolver.read_metafile(json.load(f), cwd)

        inputs = list(graph.files)
        if build_input.path is not None:
            entry = os.path.normpath(os.path.join(cwd, build_input.path))
            if entry not in inputs:
                inputs.insert(0, entry)
        return Artifact(name, outputs, inputs, externals=graph.externals)
