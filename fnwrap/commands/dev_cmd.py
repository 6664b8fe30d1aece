# -*- coding: utf-8 -*-

"""
开发命令模块
"""
import os
import queue
import signal
import sys
import threading
from concurrent.futures import wait
from typing import Dict, List, Optional

import click
from rich.console import Console
from rich.table import Table

from ..builders.build_units import BuildUnitManager, UnitScheduler, UnitState
from ..builders.esbuild import BuildInput, BuildOptions, EsbuildCompiler
from ..builders.file_handler import remove_outputs
from ..builders.functions import FunctionIdentity, classify, is_init_path, reserved_names
from ..builders.index_file import INDEX_FILE, INIT_FILE, function_file, stringify_functions_index
from ..builders.messages import EventKind, FunctionEvent, InitEvent, Initial
from ..builders.watcher import DependencyWatcher, FunctionsWatcher
from ..config import BuildConfig, prepare_build
from ..errors import BuildError, ConfigurationError
from ..process.firebase import emulator_command
from ..process.presets import dev_server_for
from ..process.supervisor import ProcessSupervisor
from ..utils.utils import log

# 创建控制台对象
console = Console()

LABEL = "fnwrap"


class DevSession:
    """
    开发服务

    从消息队列中依次取出监控消息，维护函数列表，并按构建单元调度编译任务。
    同一个构建单元的任务按消息到达顺序执行，不同构建单元并发执行。
    """

    def __init__(self, build_config, compiler=None, supervisor=None, channel=None,
                 watch_dependencies=True, spawn_emulator=True, observer_factory=None):
        self.build_config = build_config
        self.channel = channel if channel is not None else queue.Queue()
        self.supervisor = supervisor or ProcessSupervisor()
        self.manager = BuildUnitManager(compiler or EsbuildCompiler(build_config.esbuild), on_build=self._on_build)
        self.scheduler = UnitScheduler()
        self.spawn_emulator = spawn_emulator
        self.observer_factory = observer_factory
        self.functions: List[FunctionIdentity] = []
        self.dependencies = None
        if watch_dependencies:
            kwargs = {"observer_factory": observer_factory} if observer_factory else {}
            self.dependencies = DependencyWatcher(self._on_dependency_change, ignore=self._handled_by_watcher, **kwargs)
        self._functions_lock = threading.Lock()
        self._index_text: Optional[str] = None

    # 消息处理

    def dispatch(self, message):
        """处理一条监控消息"""
        if isinstance(message, Initial):
            self._handle_initial(message)
        elif isinstance(message, FunctionEvent):
            self._handle_function(message)
        elif isinstance(message, InitEvent):
            self._handle_init(message)

    def _handle_initial(self, message):
        with self._functions_lock:
            self.functions = list(message.functions)
            functions = list(self.functions)

        click.secho(f"🔍 找到 {len(functions)} 个函数，开始构建...", fg="bright_blue")
        futures = {}
        for fn in functions:
            futures[fn.name] = self._submit(function_file(fn.name), self._build_function, fn)
        if self.build_config.init_path:
            futures[INIT_FILE] = self._submit(INIT_FILE, self._build_init)
        with console.status("[bold blue]正在构建函数..."):
            wait(list(futures.values()))
            # index 只导出构建成功的函数，等函数构建结束后再生成
            wait([self._schedule_index()])

        results = {name: future.exception() is None and future.result() for name, future in futures.items()}
        self._print_summary(functions, results)

        if self.spawn_emulator:
            args, cwd = emulator_command(self.build_config)
            self.supervisor.spawn("Firebase", args, cwd=cwd, color="yellow")

    def _handle_function(self, message):
        fn = message.function
        key = function_file(fn.name)

        if message.kind is EventKind.ADD:
            with self._functions_lock:
                existing = self._find(fn.name)
                if existing is None and fn.name not in reserved_names(self.build_config):
                    self.functions.append(fn)
            if existing is not None and existing.source_path != fn.source_path:
                click.secho(f"❌ 函数名冲突 {fn.name!r}: {existing.source_path} 和 {fn.source_path}，已忽略", fg="red")
            elif existing is not None:
                self._submit(key, self._rebuild_function, fn)
            elif fn.name in reserved_names(self.build_config):
                click.secho(f"❌ 函数名 {fn.name!r} 与构建产物冲突: {fn.source_path}，已忽略", fg="red")
            else:
                self._submit(key, self._add_function, fn)

        elif message.kind is EventKind.CHANGE:
            with self._functions_lock:
                current = self._find(fn.name)
            if current is not None and current.source_path == fn.source_path:
                self._submit(key, self._rebuild_function, fn)

        elif message.kind is EventKind.REMOVE:
            with self._functions_lock:
                current = self._find(fn.name)
                if current is None or current.source_path != fn.source_path:
                    return
                self.functions = [item for item in self.functions if item.name != fn.name]
            self._submit(key, self._remove_function, fn)

    def _handle_init(self, message):
        if not self.build_config.init_path:
            return
        if message.kind is EventKind.ADD:
            self._submit(INIT_FILE, self._add_init)
        elif message.kind is EventKind.CHANGE:
            self._submit(INIT_FILE, self._rebuild_init)
        elif message.kind is EventKind.REMOVE:
            self._submit(INIT_FILE, self._remove_init)

    def _submit(self, key, fn, *args):
        future = self.scheduler.submit(key, fn, *args)
        future.add_done_callback(self._report_failure)
        return future

    def _report_failure(self, future):
        error = future.exception()
        if error is not None:
            click.secho(f"❌ 构建任务出错: {error!r}", fg="red")

    def _find(self, name) -> Optional[FunctionIdentity]:
        for fn in self.functions:
            if fn.name == name:
                return fn
        return None

    # 构建任务，在调度线程中执行，错误只输出不抛出

    def _options(self, file, bundle=True):
        return BuildOptions(
            outfile=self.build_config.output_path(file),
            node=self.build_config.node,
            cwd=self.build_config.cwd,
            bundle=bundle,
        )

    def _run_build(self, key, build):
        try:
            build()
            return True
        except BuildError as e:
            click.secho(f"❌ {key} 构建失败:", fg="red")
            click.secho(e.describe(), fg="bright_red")
            return False

    def _build_function(self, fn):
        path = os.path.join(self.build_config.cwd, fn.source_path)
        key = function_file(fn.name)
        return self._run_build(key, lambda: self.manager.build(
            key, BuildInput.entry(path), self._options(key)))

    def _add_function(self, fn):
        log(LABEL, f"正在构建新函数 {click.style(fn.name, fg='blue')}...")
        if self._build_function(fn):
            click.secho(f"✅ 函数已构建: {fn.name}", fg="green")
            self._schedule_index()

    def _rebuild_function(self, fn):
        key = function_file(fn.name)
        if self.manager.state(key) is not UnitState.BUILT:
            # 上次构建失败，没有可用的增量句柄
            if self._build_function(fn):
                click.secho(f"✅ 函数已构建: {fn.name}", fg="green")
                self._schedule_index()
            return
        log(LABEL, f"正在重新构建 {click.style(key, fg='blue')}...")
        self._run_build(key, lambda: self.manager.rebuild(key))

    def _remove_function(self, fn):
        key = function_file(fn.name)
        self.manager.dispose(key)
        if self.dependencies is not None:
            self.dependencies.on_stop(key)
        outfile = self.build_config.output_path(key)
        removed = remove_outputs(outfile, outfile + ".map")
        click.secho(f"🗑️  函数已删除: {fn.name}", fg="yellow")
        for path in removed:
            click.secho(f"✅ 目标文件已删除: {path}", fg="green")
        self._schedule_index()

    def _build_init(self):
        init_path = self.build_config.init_path
        return self._run_build(INIT_FILE, lambda: self.manager.build(
            INIT_FILE, BuildInput.entry(init_path), self._options(INIT_FILE)))

    def _add_init(self):
        log(LABEL, f"正在构建 {click.style(INIT_FILE, fg='blue')}...")
        self._build_init()
        self._schedule_index()

    def _rebuild_init(self):
        if self.manager.state(INIT_FILE) is not UnitState.BUILT:
            self._build_init()
            return
        log(LABEL, f"正在重新构建 {click.style(INIT_FILE, fg='blue')}...")
        self._run_build(INIT_FILE, lambda: self.manager.rebuild(INIT_FILE))

    def _remove_init(self):
        self.manager.dispose(INIT_FILE)
        if self.dependencies is not None:
            self.dependencies.on_stop(INIT_FILE)
        log("Firebase", "init 模块已删除，如果修改了配置请重启开发服务。", color="red")

    def _build_index(self):
        """生成并编译 index 模块，只导出已构建的函数，内容没有变化时跳过"""
        with self._functions_lock:
            built = [fn for fn in self.functions
                     if self.manager.state(function_file(fn.name)) is UnitState.BUILT]
        text = stringify_functions_index(built, self.build_config)
        if text == self._index_text and self.manager.state(INDEX_FILE) is UnitState.BUILT:
            return True

        def build():
            self.manager.build(
                INDEX_FILE,
                BuildInput.virtual(text, self.build_config.functions_src, INDEX_FILE),
                self._options(INDEX_FILE, bundle=False),
            )
            self._index_text = text

        return self._run_build(INDEX_FILE, build)

    def _schedule_index(self):
        return self._submit(INDEX_FILE, self._build_index)

    # 依赖监控

    def _on_build(self, unit, artifact):
        if self.dependencies is not None and unit != INDEX_FILE:
            self.dependencies.on_build(unit, artifact)

    def _handled_by_watcher(self, path):
        return is_init_path(self.build_config, path) or classify(self.build_config, path) is not None

    def _on_dependency_change(self, unit, path):
        log(LABEL, f"依赖变化 {click.style(self.build_config.relative(path), fg='blue')}")
        if unit == INIT_FILE:
            self._submit(INIT_FILE, self._rebuild_init)
            return
        with self._functions_lock:
            fn = next((item for item in self.functions if function_file(item.name) == unit), None)
        if fn is not None:
            self._submit(unit, self._rebuild_function, fn)

    # 运行

    def _print_summary(self, functions, results: Dict[str, bool]):
        table = Table(title="函数构建结果")
        table.add_column("函数", style="cyan")
        table.add_column("入口", style="bright_black")
        table.add_column("状态")
        for fn in functions:
            table.add_row(fn.name, fn.source_path, "✅" if results.get(fn.name) else "❌")
        if INIT_FILE in results:
            table.add_row("init", self.build_config.relative(self.build_config.init_path),
                          "✅" if results[INIT_FILE] else "❌")
        console.print(table)

    def start_dev_server(self):
        """启动前端框架的开发服务器"""
        server = dev_server_for(self.build_config.preset)
        if server is not None:
            self.supervisor.spawn(server.label, server.args, cwd=self.build_config.cwd,
                                  env=server.env, color="green")

    def run(self, poll_interval=0.2):
        """运行开发服务，直到收到终止信号且所有子进程退出"""
        prepare_build(self.build_config)
        if threading.current_thread() is threading.main_thread():
            self.supervisor.install_signal_handlers()

        kwargs = {"observer_factory": self.observer_factory} if self.observer_factory else {}
        watcher = FunctionsWatcher(self.build_config, self.channel, **kwargs)
        try:
            if self.dependencies is not None:
                self.dependencies.start()
            watcher.start()
            click.secho("🔍 开始监控函数目录: ", fg="bright_blue", nl=False)
            click.secho(self.build_config.functions_src, fg="bright_cyan")
            self.start_dev_server()

            while not self.supervisor.finished.is_set():
                try:
                    message = self.channel.get(timeout=poll_interval)
                except queue.Empty:
                    continue
                self.dispatch(message)
        finally:
            watcher.stop()
            if self.dependencies is not None:
                self.dependencies.stop()
            if not self.supervisor.finished.is_set() and self.supervisor.children:
                # 异常退出时也要结束子进程
                self.supervisor.handle_signal(signal.SIGTERM)
                self.supervisor.wait(timeout=10)
            self.scheduler.join()
            self.scheduler.shutdown()
            self.manager.close()
            self.supervisor.restore_signal_handlers()
        return 0


@click.command()
@click.option('--cwd', default='.', type=click.Path(file_okay=False), help='项目目录')
@click.option('--config', 'config_path', default=None, help='配置文件路径')
@click.option('--project', default=None, help='Firebase 项目 ID')
@click.option('--app-env', default='development', help='应用环境')
def dev_cmd(cwd, config_path, project, app_env):
    """使用watch模式，实时构建函数，代码更新时自动重新构建，并启动 Firebase 模拟器"""
    try:
        build_config = BuildConfig.load(os.path.abspath(cwd), config_path, project=project, app_env=app_env)
        session = DevSession(build_config)
        code = session.run()
    except ConfigurationError as e:
        click.secho(f"❌ 配置错误: {e}", fg="red")
        sys.exit(1)
    sys.exit(code)
