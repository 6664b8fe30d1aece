# -*- coding: utf-8 -*-

"""
通用工具函数
"""
import os
import subprocess
import tempfile
import threading
from pathlib import Path

import click

# 子进程日志标签宽度
LABEL_WIDTH = 8

_echo_lock = threading.Lock()


def ensure_dir(path_str):
    """确保目录存在，如果不存在则创建"""
    path = Path(path_str).expanduser().resolve()
    if not path.exists():
        path.mkdir(parents=True, exist_ok=True)
    return str(path)


def run_command(cmd, cwd=None, shell=False, input=None, env=None):
    """运行系统命令，返回 (是否成功, 输出)"""
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            shell=shell,
            input=input,
            env=env,
            check=True,
            text=True,
            capture_output=True
        )
        return True, result.stdout
    except subprocess.CalledProcessError as e:
        return False, e.stderr or e.stdout or ""
    except FileNotFoundError as e:
        return False, f"命令不存在: {e.filename or cmd[0]}"


def atomic_write(dest_path, data):
    """
    原子写入文件：先写入同目录下的临时文件，刷新落盘后再替换目标文件。

    写入中途出错时目标文件保持原样，临时文件会被清理。
    """
    dest_dir = os.path.dirname(dest_path) or "."
    ensure_dir(dest_dir)
    fd, tmp_path = tempfile.mkstemp(prefix=".fnwrap-", suffix=".tmp", dir=dest_dir)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, dest_path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
    return dest_path


def format_label(label):
    """生成固定宽度、右对齐的日志标签前缀"""
    return label.rjust(LABEL_WIDTH, " ") + " | "


def log(label, message, color="magenta", error=False):
    """
    输出一行带标签的日志

    Args:
        label: 标签，如 Firebase、Vite
        message: 日志内容
        color: 标签颜色
        error: 是否为错误输出（标签显示为红色）
    """
    prefix = format_label(label)
    if error:
        styled = click.style(prefix, fg="red")
    else:
        styled = click.style(prefix, fg=color, dim=True)
    # 多个线程同时输出时避免行交错
    with _echo_lock:
        click.echo(styled + message)
