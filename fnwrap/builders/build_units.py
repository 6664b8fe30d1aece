# -*- coding: utf-8 -*-
"""
构建单元模块 - 为每个函数、init 模块和 index 模块维护增量编译句柄

不同构建单元可以并发编译；同一个构建单元同一时间只有一次编译，
编译进行中收到的增量构建请求会合并为编译结束后的一次重新编译。
"""

import os
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Callable, Dict, Optional

from ..errors import BuildError, UnitStateError
from .esbuild import Artifact
from .file_handler import write_artifact


class UnitState(Enum):
    UNBUILT = "unbuilt"
    BUILT = "built"
    DISPOSED = "disposed"


class BuildUnit(object):
    """构建单元"""

    name: str
    state: UnitState
    artifact: Optional[Artifact]

    def __init__(self, name):
        self.name = name
        self.state = UnitState.UNBUILT
        self.context = None
        self.build_input = None
        self.options = None
        self.artifact = None
        self.cond = threading.Condition()
        self.busy = False
        self.pending = False

    def __repr__(self):
        return f"BuildUnit({self.name!r}, {self.state.value})"


class BuildUnitManager:
    """
    构建单元管理器

    Args:
        compiler: 编译器，提供 context(name, build_input, options)
        on_build: 产物写入后的回调 on_build(unit_name, artifact)
    """

    def __init__(self, compiler, on_build: Optional[Callable] = None):
        self.compiler = compiler
        self.on_build = on_build
        self.units: Dict[str, BuildUnit] = {}
        self._lock = threading.Lock()

    def get(self, name) -> Optional[BuildUnit]:
        with self._lock:
            return self.units.get(name)

    def state(self, name) -> UnitState:
        unit = self.get(name)
        return unit.state if unit is not None else UnitState.UNBUILT

    def build(self, name, build_input, options, write=True) -> Optional[Artifact]:
        """
        完整编译一个构建单元，已有的编译句柄会被新的句柄替换

        编译失败时抛出 BuildError，之前的句柄和已写出的文件保持不变。
        构建过程中单元被释放时返回 None。
        """
        with self._lock:
            unit = self.units.get(name)
            if unit is None:
                unit = self.units[name] = BuildUnit(name)

        with unit.cond:
            while unit.busy:
                unit.cond.wait()
            unit.busy = True
        return self._drain(unit, lambda: self._build_once(unit, build_input, options, write), write)

    def rebuild(self, name, write=True) -> Optional[Artifact]:
        """
        使用已有句柄增量编译

        单元未构建或已释放时抛出 UnitStateError；
        已有编译进行中时合并请求并返回 None。
        """
        unit = self.get(name)
        if unit is None or unit.state is not UnitState.BUILT:
            raise UnitStateError(name, f"{name} 尚未构建，无法增量构建")

        with unit.cond:
            if unit.busy:
                unit.pending = True
                return None
            unit.busy = True
        return self._drain(unit, lambda: self._rebuild_once(unit, write), write)

    def dispose(self, name) -> bool:
        """释放构建单元的编译句柄，重复调用不会出错"""
        with self._lock:
            unit = self.units.pop(name, None)
        if unit is None:
            return False
        with unit.cond:
            unit.state = UnitState.DISPOSED
            unit.pending = False
            context, unit.context = unit.context, None
        if context is not None:
            context.dispose()
        return True

    def write(self, artifact):
        """写入产物的所有输出文件"""
        return write_artifact(artifact)

    def close(self):
        """释放所有构建单元"""
        for name in list(self.units):
            self.dispose(name)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _drain(self, unit, op, write):
        while True:
            error = None
            result = None
            try:
                result = op()
            except BuildError as e:
                error = e
            except BaseException:
                with unit.cond:
                    unit.busy = False
                    unit.pending = False
                    unit.cond.notify_all()
                raise

            with unit.cond:
                if unit.pending and unit.state is UnitState.BUILT:
                    # 编译期间又有新的请求，基于最新文件再编译一次
                    unit.pending = False
                    op = lambda: self._rebuild_once(unit, write)
                    continue
                unit.pending = False
                unit.busy = False
                unit.cond.notify_all()

            if error is not None:
                raise error
            return result

    def _build_once(self, unit, build_input, options, write):
        context = self.compiler.context(unit.name, build_input, options)
        try:
            artifact = context.rebuild()
        except BaseException:
            context.dispose()
            raise

        with unit.cond:
            if unit.state is UnitState.DISPOSED:
                context.dispose()
                return None
            old, unit.context = unit.context, context
            unit.build_input = build_input
            unit.options = options
            unit.state = UnitState.BUILT
            self._commit(unit, artifact, write)
        if old is not None:
            old.dispose()
        self._notify(unit, artifact)
        return artifact

    def _rebuild_once(self, unit, write):
        context = unit.context
        if unit.state is not UnitState.BUILT or context is None:
            raise UnitStateError(unit.name, f"{unit.name} 尚未构建，无法增量构建")
        artifact = context.rebuild()
        with unit.cond:
            if unit.state is UnitState.DISPOSED:
                return None
            self._commit(unit, artifact, write)
        self._notify(unit, artifact)
        return artifact

    def _commit(self, unit, artifact, write):
        if write and artifact.changed:
            self.write(artifact)
        unit.artifact = artifact

    def _notify(self, unit, artifact):
        if self.on_build is not None and artifact.changed:
            self.on_build(unit.name, artifact)


class UnitScheduler:
    """
    按构建单元排队执行任务

    同一个 key 的任务按提交顺序依次执行，不同 key 的任务并发执行。
    """

    def __init__(self, max_workers=None):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or min(8, (os.cpu_count() or 1) + 4),
            thread_name_prefix="fnwrap-unit",
        )
        self._queues: Dict[str, deque] = {}
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)

    def submit(self, key, fn, *args) -> Future:
        future = Future()
        with self._lock:
            queue = self._queues.setdefault(key, deque())
            queue.append((future, fn, args))
            start = len(queue) == 1
        if start:
            self._executor.submit(self._run, key)
        return future

    def _run(self, key):
        while True:
            with self._lock:
                future, fn, args = self._queues[key][0]
            if future.set_running_or_notify_cancel():
                try:
                    future.set_result(fn(*args))
                except BaseException as e:
                    future.set_exception(e)
            with self._lock:
                queue = self._queues[key]
                queue.popleft()
                if not queue:
                    del self._queues[key]
                    self._idle.notify_all()
                    return

    def join(self, timeout=None) -> bool:
        """等待所有任务执行完毕"""
        with self._idle:
            return self._idle.wait_for(lambda: not self._queues, timeout)

    def shutdown(self):
        self._executor.shutdown(wait=True)
