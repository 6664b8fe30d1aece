# -*- coding: utf-8 -*-
"""
配置模块 - 负责读取 fnwrap.json 并解析为构建配置
"""

import json
import os
import re
from typing import List, Optional, Pattern

from .errors import ConfigurationError
from .utils.utils import ensure_dir

CONFIG_FILE = "fnwrap.json"

PRESETS = ("astro", "cra", "vite", "remix", "next")

DEFAULT_CONFIG = {
    "node": "18",
    "functions_path": "functions",
    "build_path": "build",
    "functions_init_path": None,
    "functions_ignore_paths": [],
    "only_functions": None,
    "emulators": True,
    "emulators_persistence": ".firebase/emulators",
    "hosting": False,
    "preset": None,
    "renderer": False,
    "esbuild": None,
}


def config_exists(cwd=None, config_path=None):
    """判断配置文件是否存在"""
    return os.path.isfile(_config_file_path(cwd, config_path))


def read_config(config_path=None, cwd=None):
    """读取配置文件内容，返回字典"""
    path = _config_file_path(cwd, config_path)
    if not os.path.isfile(path):
        raise ConfigurationError(f"未找到配置文件: {path}")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"配置文件格式错误 {path}: {e}")
    except OSError as e:
        raise ConfigurationError(f"读取配置文件失败 {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigurationError(f"配置文件顶层必须是对象: {path}")
    return data


def get_fnwrap_config(config_path=None, cwd=None):
    """读取配置并补全默认值"""
    config = dict(DEFAULT_CONFIG)
    config.update(read_config(config_path, cwd))
    return config


def _config_file_path(cwd, config_path):
    cwd = cwd or os.getcwd()
    return os.path.normpath(os.path.join(cwd, config_path or CONFIG_FILE))


def _expect(config, key, types, type_name):
    value = config.get(key)
    if value is not None and not isinstance(value, types):
        raise ConfigurationError(f"配置项 {key} 必须是{type_name}，实际为: {value!r}")
    return value


def _expect_str_list(config, key):
    value = config.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigurationError(f"配置项 {key} 必须是字符串列表，实际为: {value!r}")
    return value


class BuildConfig(object):
    """已解析的构建配置，所有路径均为绝对路径"""

    cwd: str
    mode: str
    app_env: str
    project: Optional[str]
    node: str
    functions_src: str
    functions_build: str
    app_env_build: str
    init_path: Optional[str]
    ignore_patterns: List[Pattern]
    only_functions: Optional[List[str]]
    emulators: bool
    emulators_persistence: Optional[str]
    hosting: bool
    preset: Optional[str]
    renderer: bool
    esbuild: Optional[str]

    def __init__(self, cwd, config, mode="dev", app_env="development", project=None):
        self.cwd = os.path.abspath(cwd)
        self.mode = mode
        self.app_env = app_env
        self.project = project

        node = config.get("node", DEFAULT_CONFIG["node"])
        if isinstance(node, int) and not isinstance(node, bool):
            node = str(node)
        if not isinstance(node, str) or not node:
            raise ConfigurationError(f"配置项 node 必须是版本号字符串，实际为: {node!r}")
        self.node = node

        functions_path = _expect(config, "functions_path", str, "字符串") or DEFAULT_CONFIG["functions_path"]
        build_path = _expect(config, "build_path", str, "字符串") or DEFAULT_CONFIG["build_path"]
        self.functions_src = os.path.normpath(os.path.join(self.cwd, functions_path))
        self.app_env_build = os.path.normpath(os.path.join(self.cwd, build_path, app_env))
        self.functions_build = os.path.join(self.app_env_build, "functions")

        init_path = _expect(config, "functions_init_path", str, "字符串")
        self.init_path = os.path.normpath(os.path.join(self.cwd, init_path)) if init_path else None

        self.ignore_patterns = []
        for pattern in _expect_str_list(config, "functions_ignore_paths") or []:
            try:
                self.ignore_patterns.append(re.compile(pattern))
            except re.error as e:
                raise ConfigurationError(f"忽略规则不是有效的正则表达式 {pattern!r}: {e}")

        self.only_functions = _expect_str_list(config, "only_functions")

        emulators = _expect(config, "emulators", bool, "布尔值")
        self.emulators = DEFAULT_CONFIG["emulators"] if emulators is None else emulators

        persistence = config.get("emulators_persistence", DEFAULT_CONFIG["emulators_persistence"])
        if persistence is True or persistence is None:
            persistence = DEFAULT_CONFIG["emulators_persistence"]
        elif persistence is not False and not isinstance(persistence, str):
            raise ConfigurationError(f"配置项 emulators_persistence 必须是路径或 false，实际为: {persistence!r}")
        self.emulators_persistence = persistence or None

        self.hosting = bool(_expect(config, "hosting", bool, "布尔值"))
        self.renderer = bool(_expect(config, "renderer", bool, "布尔值"))

        preset = _expect(config, "preset", str, "字符串")
        if preset is not None and preset not in PRESETS:
            raise ConfigurationError(f"未知的预设 {preset!r}，可选: {', '.join(PRESETS)}")
        self.preset = preset

        self.esbuild = os.environ.get("FNWRAP_ESBUILD") or _expect(config, "esbuild", str, "字符串")

    @classmethod
    def load(cls, cwd, config_path=None, project=None, app_env="development"):
        """读取配置文件并校验函数目录"""
        config = get_fnwrap_config(config_path, cwd)
        build_config = cls(cwd, config, app_env=app_env, project=project)
        if not os.path.isdir(build_config.functions_src):
            raise ConfigurationError(f"函数目录不存在: {build_config.functions_src}")
        return build_config

    def relative(self, path):
        """返回相对于工作目录的路径，统一使用 / 分隔"""
        return os.path.relpath(path, self.cwd).replace(os.sep, "/")

    def output_path(self, file):
        """返回构建产物的绝对路径"""
        return os.path.join(self.functions_build, file)


def prepare_build(build_config):
    """准备构建目录"""
    return ensure_dir(build_config.functions_build)
