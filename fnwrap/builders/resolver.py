# -*- coding: utf-8 -*-
"""
模块解析模块 - 决定哪些依赖打包、哪些保持外部引用

模块路径由 esbuild 自己解析：第三方包通过 --packages=external 保持外部引用，
Node.js 内置模块由 --platform=node 处理。这里读取 esbuild 的 metafile 中的
import 记录对结果分类，并把 esbuild 无法解析的模块转换为 ResolutionError。
"""

import os
import re
from typing import List, NamedTuple, Optional

from ..errors import ResolutionError

# 第三方依赖目录，其中的模块由运行时提供
DEPENDENCY_DIR = "node_modules"

# Node.js 内置模块
BUILTIN_MODULES = frozenset([
    "assert", "async_hooks", "buffer", "child_process", "cluster", "console",
    "constants", "crypto", "dgram", "diagnostics_channel", "dns", "domain",
    "events", "fs", "http", "http2", "https", "inspector", "module", "net",
    "os", "path", "perf_hooks", "process", "punycode", "querystring",
    "readline", "repl", "stream", "string_decoder", "sys", "timers", "tls",
    "trace_events", "tty", "url", "util", "v8", "vm", "wasi",
    "worker_threads", "zlib",
])

# 交给 esbuild 的外部依赖规则：按包名引用的模块保持运行时 require
EXTERNAL_ARGS = ("--packages=external",)

# esbuild 诊断输出
UNRESOLVED_RE = re.compile(r'Could not resolve "([^"]+)"')
LOCATION_RE = re.compile(r"^\s+(\S.*?):(\d+):(\d+):\s*$")


class Resolution(NamedTuple):
    """解析结果，external 为 True 时不打包"""

    specifier: str
    path: Optional[str]
    external: bool


class ImportGraph(NamedTuple):
    """一次编译涉及的本地文件和外部依赖"""

    files: List[str]
    externals: List[str]


def is_builtin(specifier):
    """判断是否为 Node.js 内置模块（包括 node: 前缀和子路径，如 fs/promises）"""
    if specifier.startswith("node:"):
        return True
    return specifier.split("/", 1)[0] in BUILTIN_MODULES


def _is_virtual(path):
    return path.startswith("<")


class ModuleResolver:
    """根据 esbuild 的 import 记录和诊断输出对模块解析结果分类"""

    def resolve(self, record, cwd) -> Resolution:
        """
        对 metafile 中的一条 import 记录分类

        内置模块和按包名引用的模块为外部依赖，其余为打包进产物的本地文件。
        """
        path = record.get("path", "")
        original = record.get("original")
        specifier = original or path
        # 本地文件的 path 是相对路径，只按源码中的写法判断内置模块
        if record.get("external") or (original and is_builtin(original)):
            return Resolution(specifier, None, True)
        if _is_virtual(path):
            return Resolution(specifier, None, False)
        absolute = os.path.normpath(os.path.join(cwd, path))
        return Resolution(specifier, absolute, False)

    def read_metafile(self, meta, cwd) -> ImportGraph:
        """从 metafile 中收集本地输入文件和外部依赖，保持出现顺序并去重"""
        files: List[str] = []
        externals: List[str] = []
        for input_path, info in meta.get("inputs", {}).items():
            if not _is_virtual(input_path):
                absolute = os.path.normpath(os.path.join(cwd, input_path))
                if absolute not in files:
                    files.append(absolute)
            for record in info.get("imports", []):
                resolution = self.resolve(record, cwd)
                if resolution.external and resolution.specifier not in externals:
                    externals.append(resolution.specifier)
        return ImportGraph(files, externals)

    def unresolved(self, output, cwd, unit=None) -> List[ResolutionError]:
        """把 esbuild 的 “Could not resolve” 诊断转换为 ResolutionError"""
        errors = []
        lines = output.splitlines()
        for index, line in enumerate(lines):
            match = UNRESOLVED_RE.search(line)
            if not match:
                continue
            resolve_dir = cwd
            for following in lines[index + 1:index + 4]:
                location = LOCATION_RE.match(following)
                if location:
                    importer = location.group(1)
                    if not _is_virtual(importer):
                        resolve_dir = os.path.dirname(os.path.normpath(os.path.join(cwd, importer)))
                    break
            errors.append(ResolutionError(match.group(1), resolve_dir, unit))
        return errors
