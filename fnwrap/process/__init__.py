# -*- coding: utf-8 -*-
"""
子进程模块包，提供子进程管理和外部工具命令
"""

from .supervisor import ProcessSupervisor, ChildProcessRecord
from .firebase import emulator_command
from .presets import dev_server_for

__all__ = ['ProcessSupervisor', 'ChildProcessRecord', 'emulator_command', 'dev_server_for']
