# -*- coding: utf-8 -*-
"""
文件处理模块 - 负责写入和删除构建产物
"""

import os

from ..utils.utils import atomic_write


def write_output_file(dest_path, contents):
    """写入单个输出文件，覆盖已有文件"""
    return atomic_write(dest_path, contents)


def write_artifact(artifact):
    """写入构建产物的所有输出文件，返回写入的路径"""
    written = []
    for output in artifact.outputs:
        written.append(write_output_file(output.path, output.contents))
    return written


def remove_outputs(*paths):
    """删除构建产物，返回实际删除的路径"""
    removed = []
    for path in paths:
        if os.path.exists(path):
            os.remove(path)
            removed.append(path)
    return removed
