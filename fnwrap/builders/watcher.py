# -*- coding: utf-8 -*-
"""
文件监控模块 - 负责监控函数目录和依赖文件的变化，并转换为开发服务的消息
"""

import os
import queue
import threading
from typing import Callable, Dict, List, Optional, Set

from watchdog.events import FileCreatedEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .functions import FunctionRegistry, classify, directory_functions, is_init_path
from .messages import EVENT_KINDS, EventKind, FunctionEvent, InitEvent, Initial
from .resolver import DEPENDENCY_DIR


def should_ignore_path(path):
    """判断是否应该忽略该路径（编辑器临时文件等）"""
    basename = os.path.basename(path)
    return (basename.startswith('.') or
            path.endswith('~') or
            basename.startswith('.#') or
            basename.endswith('.swp') or  # vim临时文件
            basename.endswith('.tmp'))    # 其他临时文件


class FunctionsEventHandler(FileSystemEventHandler):
    """函数目录变化处理器，把文件事件转换为函数消息"""

    def __init__(self, build_config, emit: Callable):
        self.build_config = build_config
        self.emit = emit

    def _process_event(self, event, event_type):
        """处理事件的通用方法"""
        src_path = os.fsdecode(event.src_path)

        if event.is_directory:
            if event_type == 'deleted':
                self._directory_deleted(src_path)
            return
        if should_ignore_path(src_path):
            return

        # 对于删除事件，不检查文件是否存在
        if event_type != 'deleted' and not os.path.exists(src_path):
            return

        kind = EVENT_KINDS[event_type]
        if is_init_path(self.build_config, src_path):
            self.emit(InitEvent(kind))
            return

        fn = classify(self.build_config, src_path)
        if fn is not None:
            self.emit(FunctionEvent(kind, fn))

    def _directory_deleted(self, src_path):
        """函数子目录被删除时，为其中可能的入口文件发出删除消息"""
        for fn in directory_functions(self.build_config, src_path):
            self.emit(FunctionEvent(EventKind.REMOVE, fn))

    def on_created(self, event):
        self._process_event(event, 'created')

    def on_deleted(self, event):
        self._process_event(event, 'deleted')

    def on_modified(self, event):
        self._process_event(event, 'modified')

    def on_moved(self, event):
        """处理移动事件为删除+创建"""
        self._process_event(event, 'deleted')
        if not event.is_directory and getattr(event, 'dest_path', None):
            self._process_event(FileCreatedEvent(event.dest_path), 'created')


class FunctionsWatcher:
    """
    函数目录监控器

    启动后先发送一条 Initial 消息，之后按到达顺序发送函数和 init 模块的变化消息。
    监控器本身不维护函数列表。
    """

    def __init__(self, build_config, channel: Optional[queue.Queue] = None, observer_factory=Observer):
        self.build_config = build_config
        self.channel = channel if channel is not None else queue.Queue()
        self.observer_factory = observer_factory
        self.observer = None
        self.handler = FunctionsEventHandler(build_config, self._emit)
        self._lock = threading.Lock()
        self._initial_sent = False
        self._buffer: List = []

    def _emit(self, message):
        with self._lock:
            if not self._initial_sent:
                # Initial 发出前收到的事件先缓存
                self._buffer.append(message)
                return
            self.channel.put(message)

    def _watch_paths(self):
        paths = [(self.build_config.functions_src, True)]
        init_path = self.build_config.init_path
        if init_path:
            init_dir = os.path.dirname(init_path)
            relative = os.path.relpath(init_dir, self.build_config.functions_src)
            if relative.startswith(os.pardir) and os.path.isdir(init_dir):
                paths.append((init_dir, False))
        return paths

    def start(self):
        """开始监控，并发送 Initial 消息"""
        self.observer = self.observer_factory()
        for path, recursive in self._watch_paths():
            self.observer.schedule(self.handler, path=path, recursive=recursive)
        self.observer.start()

        try:
            functions = FunctionRegistry(self.build_config).discover()
        except Exception:
            self.stop()
            raise

        with self._lock:
            self.channel.put(Initial(functions))
            for message in self._buffer:
                self.channel.put(message)
            self._buffer = []
            self._initial_sent = True
        return self.channel

    def stop(self):
        """停止监控"""
        if self.observer:
            self.observer.stop()
            self.observer.join()
            self.observer = None


class DependencyEventHandler(FileSystemEventHandler):
    """依赖文件变化处理器"""

    def __init__(self, watcher):
        self.watcher = watcher

    def on_modified(self, event):
        if not event.is_directory:
            self.watcher.changed(os.fsdecode(event.src_path))

    def on_created(self, event):
        if not event.is_directory:
            self.watcher.changed(os.fsdecode(event.src_path))

    def on_moved(self, event):
        if not event.is_directory and getattr(event, 'dest_path', None):
            self.watcher.changed(os.fsdecode(event.dest_path))


class DependencyWatcher:
    """
    依赖文件监控器

    记录每个构建单元编译时用到的本地文件，文件变化时通知所有用到它的构建单元。
    """

    def __init__(self, on_change: Callable, ignore: Optional[Callable] = None, observer_factory=Observer):
        self.on_change = on_change
        self.ignore = ignore
        self.observer_factory = observer_factory
        self.observer = None
        self.handler = DependencyEventHandler(self)
        self._files: Dict[str, Set[str]] = {}
        self._units: Dict[str, Set[str]] = {}
        self._watches: Dict[str, object] = {}
        self._dir_refs: Dict[str, int] = {}
        self._lock = threading.Lock()

    def start(self):
        self.observer = self.observer_factory()
        self.observer.start()

    def stop(self):
        if self.observer:
            self.observer.stop()
            self.observer.join()
            self.observer = None

    def _watchable(self, path):
        if DEPENDENCY_DIR in path.split(os.sep):
            return False
        if self.ignore is not None and self.ignore(path):
            return False
        return True

    def on_build(self, unit, artifact):
        """构建成功后更新该单元的依赖文件"""
        paths = {os.path.normpath(path) for path in artifact.inputs if self._watchable(os.path.normpath(path))}
        with self._lock:
            old = self._units.get(unit, set())
            for path in old - paths:
                self._unlink(unit, path)
            for path in paths - old:
                units = self._files.get(path)
                if units is None:
                    units = self._files[path] = set()
                    self._ref_dir(os.path.dirname(path))
                units.add(unit)
            self._units[unit] = paths

    def on_stop(self, unit):
        """构建单元被释放时停止监控它的依赖文件"""
        with self._lock:
            for path in self._units.pop(unit, set()):
                self._unlink(unit, path)

    def watched_files(self, unit):
        with self._lock:
            return set(self._units.get(unit, set()))

    def changed(self, path):
        path = os.path.normpath(path)
        with self._lock:
            units = sorted(self._files.get(path, ()))
        for unit in units:
            self.on_change(unit, path)

    def _unlink(self, unit, path):
        units = self._files.get(path)
        if units is None:
            return
        units.discard(unit)
        if not units:
            del self._files[path]
            self._unref_dir(os.path.dirname(path))

    def _ref_dir(self, directory):
        count = self._dir_refs.get(directory, 0)
        self._dir_refs[directory] = count + 1
        if count == 0 and self.observer is not None and os.path.isdir(directory):
            self._watches[directory] = self.observer.schedule(self.handler, path=directory, recursive=False)

    def _unref_dir(self, directory):
        count = self._dir_refs.get(directory, 0) - 1
        if count > 0:
            self._dir_refs[directory] = count
            return
        self._dir_refs.pop(directory, None)
        watch = self._watches.pop(directory, None)
        if watch is not None and self.observer is not None:
            self.observer.unschedule(watch)
