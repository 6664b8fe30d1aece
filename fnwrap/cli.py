# -*- coding: utf-8 -*-

"""
命令行入口
"""
import click

from . import __version__
from .commands.dev_cmd import dev_cmd


@click.group()
@click.version_option(__version__, prog_name="fnwrap")
def cli():
    """fnwrap - Firebase 云函数开发构建工具"""


cli.add_command(dev_cmd, name='dev')


def main():
    cli()


if __name__ == '__main__':
    main()
