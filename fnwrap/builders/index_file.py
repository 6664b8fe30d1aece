# -*- coding: utf-8 -*-
"""
入口文件生成模块 - 生成汇总导出所有函数的 index 模块
"""

INDEX_FILE = "index.cjs"
INIT_FILE = "init.cjs"


def function_file(name):
    """函数构建产物的文件名"""
    return f"{name}.cjs"


def render_index(functions, init=False, renderer=False):
    """
    生成 index 模块源码

    输出只取决于参数，相同输入得到完全相同的文本。

    Args:
        functions: 函数列表，按顺序导出
        init: 是否先导入 init 模块
        renderer: 是否导出服务端渲染模块
    """
    lines = []
    if init:
        lines.append(f'import "./{INIT_FILE}";')
    for fn in functions:
        lines.append(f'export {{ default as {fn.name} }} from "./{function_file(fn.name)}";')
    if renderer:
        lines.append('export { default as renderer } from "./renderer";')
    return "\n".join(lines)


def stringify_functions_index(functions, build_config):
    """按构建配置生成 index 模块源码"""
    return render_index(
        functions,
        init=bool(build_config.init_path),
        renderer=build_config.renderer,
    )
