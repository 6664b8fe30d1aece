# -*- coding: utf-8 -*-
"""
子进程管理模块 - 启动模拟器、前端开发服务器等子进程，转发输出并协调退出
"""

import os
import shlex
import signal
import subprocess
import threading
from typing import Callable, List, Optional

import click
import psutil

from ..errors import ChildProcessExitError
from ..utils.utils import log

# 需要转发给子进程的终止信号
TERMINATION_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGINT", "SIGTERM", "SIGHUP", "SIGQUIT") if hasattr(signal, name)
)


class ChildProcessRecord(object):
    """运行中的子进程"""

    handle: subprocess.Popen
    label: str
    color: str

    def __init__(self, handle, label, color):
        self.handle = handle
        self.label = label
        self.color = color
        self.threads: List[threading.Thread] = []

    @property
    def pid(self):
        return self.handle.pid

    def __repr__(self):
        return f"ChildProcessRecord({self.label!r}, pid={self.pid})"


class ProcessSupervisor:
    """
    子进程管理器

    收到终止信号后进入退出状态：把同一个信号转发给所有子进程，不再启动新进程，
    所有子进程退出后调用 on_exit(0)。退出过程中再次收到的信号转发给仍在运行的子进程。

    Args:
        sink: 日志输出函数 sink(label, message, color, error)
        on_exit: 所有子进程退出后的回调
    """

    def __init__(self, sink: Callable = log, on_exit: Optional[Callable] = None):
        self.sink = sink
        self.on_exit = on_exit
        self.children: List[ChildProcessRecord] = []
        self.errors: List[ChildProcessExitError] = []
        self.draining = False
        self.finished = threading.Event()
        self._signum: Optional[int] = None
        # 正在启动的子进程数，启动完成前不能结束退出过程
        self._spawning = 0
        # 信号处理函数可能在主线程持有锁时被调用，需要可重入
        self._lock = threading.RLock()
        self._previous_handlers = {}

    def spawn(self, label, command, cwd=None, env=None, shell=True, color="green") -> Optional[ChildProcessRecord]:
        """启动子进程并转发它的输出，退出过程中返回 None"""
        if shell and not isinstance(command, str):
            command = " ".join(shlex.quote(arg) for arg in command)
        process_env = None
        if env:
            process_env = dict(os.environ)
            process_env.update(env)

        with self._lock:
            if self.draining:
                click.secho(f"⚠️ 正在退出，不再启动 {label}", fg="yellow")
                return None
            self._spawning += 1
        try:
            handle = subprocess.Popen(
                command,
                cwd=cwd,
                env=process_env,
                shell=shell,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                # 由管理器转发终端信号，子进程不直接接收 Ctrl+C
                start_new_session=(os.name != "nt"),
            )
        except BaseException:
            with self._lock:
                self._spawning -= 1
            self._exit_if_no_children()
            raise

        with self._lock:
            record = ChildProcessRecord(handle, label, color)
            self.children.append(record)
            self._spawning -= 1
            # 启动期间收到的信号没有转发给这个子进程
            late_signal = self._signum if self.draining else None

        record.threads = [
            threading.Thread(target=self._pipe, args=(record, handle.stdout, False), daemon=True),
            threading.Thread(target=self._pipe, args=(record, handle.stderr, True), daemon=True),
        ]
        for thread in record.threads:
            thread.start()
        threading.Thread(target=self._wait, args=(record,), daemon=True).start()
        if late_signal is not None:
            self._forward(record, late_signal)
        return record

    def _pipe(self, record, stream, error):
        for line in iter(stream.readline, ''):
            message = line.rstrip()
            if message:
                self.sink(record.label, message, record.color, error)
        stream.close()

    def _wait(self, record):
        returncode = record.handle.wait()
        for thread in record.threads:
            thread.join()

        with self._lock:
            if record in self.children:
                self.children.remove(record)
            draining = self.draining

        # 退出过程中被信号结束的子进程不算错误
        if returncode != 0 and not (draining and returncode < 0):
            error = ChildProcessExitError(record.label, returncode)
            self.errors.append(error)
            click.secho(f"❌ {error}", fg="red")

        self._exit_if_no_children()

    def handle_signal(self, signum, frame=None):
        """终止信号处理：转发给所有子进程，重复收到信号时只转发给仍在运行的子进程"""
        name = signal.Signals(signum).name
        with self._lock:
            repeated = self.draining
            self.draining = True
            self._signum = signum
            children = list(self.children)

        if repeated:
            click.secho(f"⏳ 收到 {name}，转发给仍在运行的 {len(children)} 个子进程...", fg="yellow")
        else:
            click.secho(f"🛑 收到 {name}，正在通知子进程...", fg="yellow")
        for record in children:
            self._forward(record, signum)
        self._exit_if_no_children()

    def _forward(self, record, signum):
        """把信号发送给子进程及其所有后代进程，已退出的子进程跳过"""
        if record.handle.poll() is not None:
            return
        try:
            parent = psutil.Process(record.pid)
            processes = parent.children(recursive=True) + [parent]
        except psutil.NoSuchProcess:
            return
        for process in processes:
            try:
                process.send_signal(signum)
            except psutil.NoSuchProcess:
                continue

    def _exit_if_no_children(self):
        with self._lock:
            if not self.draining or self.children or self._spawning or self.finished.is_set():
                return
            self.finished.set()
        click.secho("👋 没有运行中的子进程，退出主进程...", fg="bright_cyan")
        if self.on_exit is not None:
            self.on_exit(0)

    def install_signal_handlers(self, signals=TERMINATION_SIGNALS):
        """在主线程中注册信号处理函数"""
        for signum in signals:
            self._previous_handlers[signum] = signal.signal(signum, self.handle_signal)

    def restore_signal_handlers(self):
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers = {}

    def wait(self, timeout=None) -> bool:
        """等待退出完成"""
        return self.finished.wait(timeout)
