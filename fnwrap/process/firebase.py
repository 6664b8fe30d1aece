# -*- coding: utf-8 -*-
"""
Firebase 模拟器模块 - 生成模拟器启动命令
"""

import os


def emulator_command(build_config):
    """
    生成 Firebase 模拟器命令，在构建目录中运行

    Returns:
        (命令参数列表, 工作目录)
    """
    cwd = build_config.app_env_build
    if build_config.emulators:
        args = ["npx", "firebase", "emulators:start"]
        if build_config.emulators_persistence:
            # 持久化目录相对于项目目录配置，模拟器在构建目录中运行
            cwd_relative = os.path.relpath(build_config.cwd, cwd)
            emulators_path = os.path.join(cwd_relative, build_config.emulators_persistence)
            args += [f"--import={emulators_path}", "--export-on-exit"]
    else:
        args = ["npx", "firebase", "serve", "--only", "functions"]
        if build_config.hosting:
            args += ["--only", "hosting"]

    if build_config.project:
        args += ["--project", build_config.project]
    return args, cwd
