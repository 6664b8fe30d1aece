# -*- coding: utf-8 -*-
"""
工具模块包
"""

from .utils import ensure_dir, run_command, atomic_write, format_label, log

__all__ = ['ensure_dir', 'run_command', 'atomic_write', 'format_label', 'log']
