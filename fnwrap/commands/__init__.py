# -*- coding: utf-8 -*-
"""
命令模块包
"""

from .dev_cmd import dev_cmd, DevSession

__all__ = ['dev_cmd', 'DevSession']
