# -*- coding: utf-8 -*-
"""
构建模块包，提供函数发现、编译和监控功能
"""

from .functions import FunctionIdentity, FunctionRegistry, parse_function, included_function, list_functions
from .index_file import render_index, stringify_functions_index
from .build_units import BuildUnitManager, UnitScheduler, UnitState
from .esbuild import EsbuildCompiler, BuildInput, BuildOptions, Artifact
from .resolver import ModuleResolver
from .watcher import FunctionsWatcher, DependencyWatcher

__all__ = ['FunctionIdentity', 'FunctionRegistry', 'parse_function', 'included_function', 'list_functions',
           'render_index', 'stringify_functions_index',
           'BuildUnitManager', 'UnitScheduler', 'UnitState',
           'EsbuildCompiler', 'BuildInput', 'BuildOptions', 'Artifact',
           'ModuleResolver', 'FunctionsWatcher', 'DependencyWatcher']
