# -*- coding: utf-8 -*-
"""
错误类型模块

只有 ConfigurationError 和终止信号会让整个进程退出，
其余错误只影响产生它的函数、候选文件或子进程。
"""


class FnwrapError(Exception):
    """所有 fnwrap 错误的基类"""


class ConfigurationError(FnwrapError):
    """构建配置无效，在开始监控前终止"""


class DiscoveryError(FnwrapError):
    """扫描函数目录时某个候选文件无法读取"""

    def __init__(self, path, reason):
        self.path = path
        self.reason = reason
        super().__init__(f"无法读取 {path}: {reason}")


class BuildError(FnwrapError):
    """某个构建单元编译失败，保留之前的产物"""

    def __init__(self, unit, message, diagnostics=None):
        self.unit = unit
        self.diagnostics = list(diagnostics or [])
        super().__init__(message)

    def describe(self):
        """拼接错误信息和编译器诊断"""
        lines = [str(self)]
        lines.extend(self.diagnostics)
        return "\n".join(lines)


class ResolutionError(BuildError):
    """模块解析失败，作为构建错误上报"""

    def __init__(self, specifier, resolve_dir, unit=None, diagnostics=None):
        self.specifier = specifier
        self.resolve_dir = resolve_dir
        super().__init__(unit, f"无法解析模块 {specifier!r}（解析目录: {resolve_dir}）", diagnostics)


class UnitStateError(BuildError):
    """对未构建或已释放的构建单元执行增量构建"""


class ChildProcessExitError(FnwrapError):
    """子进程以非零状态退出"""

    def __init__(self, label, returncode):
        self.label = label
        self.returncode = returncode
        super().__init__(f"{label} 进程退出，状态码: {returncode}")
