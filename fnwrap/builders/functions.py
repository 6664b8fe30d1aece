# -*- coding: utf-8 -*-
"""
函数发现模块 - 负责把函数目录中的文件映射为函数
"""

import os
import re
from dataclasses import dataclass
from typing import List, Optional

import click

from ..errors import ConfigurationError, DiscoveryError

# 目录形式函数的入口文件
INDEX_FILE_RE = re.compile(r"^index\.[tj]sx?$")
# 单文件函数
FUNCTION_FILE_RE = re.compile(r"^.+\.[tj]sx?$")
# 目录形式函数可能的入口文件名
INDEX_ENTRY_NAMES = ("index.js", "index.jsx", "index.ts", "index.tsx")


@dataclass(frozen=True)
class FunctionIdentity:
    """
    函数定义

    Attributes:
        name: 函数名，单文件取文件名（不含扩展名），目录取目录名
        source_path: 入口文件相对于工作目录的路径
    """

    name: str
    source_path: str


def _absolute(build_config, path):
    return os.path.normpath(os.path.join(build_config.cwd, path))


def is_init_path(build_config, path):
    """判断路径是否为 init 模块"""
    if not build_config.init_path:
        return False
    return _absolute(build_config, path) == build_config.init_path


def parse_function(build_config, path) -> Optional[FunctionIdentity]:
    """
    判断路径是否为函数入口，是则返回函数定义

    只支持两种写法：函数目录下的单个文件，或者一级子目录中的 index 文件。
    """
    if is_init_path(build_config, path):
        return None

    full_path = _absolute(build_config, path)
    relative_path = os.path.relpath(full_path, build_config.functions_src)
    if relative_path.startswith(os.pardir):
        return None

    parts = relative_path.split(os.sep)
    source_path = build_config.relative(full_path)

    if len(parts) == 1:
        base = parts[0]
        if FUNCTION_FILE_RE.match(base) and not INDEX_FILE_RE.match(base):
            name = os.path.splitext(base)[0]
            return FunctionIdentity(name, source_path)
    elif len(parts) == 2:
        if INDEX_FILE_RE.match(parts[1]):
            return FunctionIdentity(parts[0], source_path)
    return None


def included_function(build_config, fn: FunctionIdentity) -> bool:
    """判断函数是否参与构建：不是 init 模块，未被忽略，且在 only_functions 列表中（如果配置了）"""
    if is_init_path(build_config, fn.source_path):
        return False
    if any(pattern.search(fn.source_path) for pattern in build_config.ignore_patterns):
        return False
    if build_config.only_functions is not None and fn.name not in build_config.only_functions:
        return False
    return True


def reserved_names(build_config):
    """与 index、init 产物同名的函数会覆盖它们，不允许使用"""
    names = {"index"}
    if build_config.init_path:
        names.add("init")
    return names


def classify(build_config, path) -> Optional[FunctionIdentity]:
    """解析路径并应用包含规则"""
    fn = parse_function(build_config, path)
    if fn is None or not included_function(build_config, fn):
        return None
    return fn


def directory_functions(build_config, path) -> List[FunctionIdentity]:
    """
    列出函数目录下一级子目录中可能的入口

    子目录被整个删除时，一些平台只发出目录事件，用它推算被删除的函数入口。
    """
    full_path = _absolute(build_config, path)
    if os.path.dirname(full_path) != build_config.functions_src:
        return []
    functions = []
    for entry in INDEX_ENTRY_NAMES:
        fn = classify(build_config, os.path.join(full_path, entry))
        if fn is not None:
            functions.append(fn)
    return functions


def find_function_path(path) -> Optional[str]:
    """查找函数入口：单个脚本文件，或者目录中的 index 文件"""
    if os.path.isdir(path):
        for item in sorted(os.listdir(path)):
            if INDEX_FILE_RE.match(item):
                return os.path.join(path, item)
        return None
    if FUNCTION_FILE_RE.match(os.path.basename(path)):
        return path
    return None


class FunctionRegistry:
    """枚举函数目录，得到当前的函数列表"""

    def __init__(self, build_config):
        self.build_config = build_config

    def discover(self) -> List[FunctionIdentity]:
        """
        扫描函数目录（不缓存，每次重新读取文件系统）

        单个候选文件读取失败时跳过并继续扫描；
        两个不同路径得到同一个函数名时抛出 ConfigurationError。
        """
        src = self.build_config.functions_src
        try:
            items = sorted(os.listdir(src))
        except OSError as e:
            raise ConfigurationError(f"无法读取函数目录 {src}: {e}")

        functions = []
        seen = {}
        for item in items:
            try:
                entry = find_function_path(os.path.join(src, item))
            except OSError as e:
                error = DiscoveryError(os.path.join(src, item), e.strerror or str(e))
                click.secho(f"⚠️ {error}，已跳过", fg="yellow")
                continue
            if entry is None:
                continue

            fn = classify(self.build_config, entry)
            if fn is None:
                continue

            if fn.name in reserved_names(self.build_config):
                raise ConfigurationError(f"函数名 {fn.name!r} 与构建产物冲突: {fn.source_path}")
            if fn.name in seen:
                raise ConfigurationError(
                    f"函数名冲突 {fn.name!r}: {seen[fn.name]} 和 {fn.source_path}"
                )
            seen[fn.name] = fn.source_path
            functions.append(fn)
        return functions


def list_functions(build_config) -> List[FunctionIdentity]:
    """列出函数目录中的所有函数"""
    return FunctionRegistry(build_config).discover()
