# -*- coding: utf-8 -*-
"""
fnwrap - Firebase 云函数开发构建工具
"""

__version__ = "0.1.0"
