"""
CLI 模块

命令行接口实现。
"""

import asyncio
import sys
from pathlib import Path
from typing import Awaitable, Callable, TypeVar

import click
from loguru import logger

from modutil import __version__
from modutil.controller import SyncController
from modutil.exceptions import ModUtilError
from modutil.logger import setup_logger
from modutil.models import ModUtilConfig, TransferSnapshot
from modutil.utils import document_format, parse_document

T = TypeVar("T")


def load_config(config_path: str) -> ModUtilConfig:
    """加载配置文件，不存在时使用默认配置"""
    path = Path(config_path)

    if not path.exists():
        logger.debug(f"配置文件不存在，使用默认配置: {config_path}")
        return ModUtilConfig()

    fmt = document_format(config_path, default="")
    if not fmt:
        raise click.ClickException(f"不支持的配置文件格式: {path.suffix}")

    try:
        data = parse_document(path.read_text(encoding="utf-8"), fmt)
        return ModUtilConfig.from_dict(data)
    except ValueError as e:
        raise click.ClickException(f"配置文件无效: {e}")
    except ModUtilError as e:
        raise click.ClickException(str(e))


def run_with_controller(
    config: ModUtilConfig, action: Callable[[SyncController], Awaitable[T]]
) -> T:
    """在新的事件循环中创建控制器并执行操作"""

    async def runner() -> T:
        async with SyncController(config) as controller:
            return await action(controller)

    try:
        return asyncio.run(runner())
    except ModUtilError as e:
        raise click.ClickException(str(e))


def print_progress(snapshot: TransferSnapshot) -> None:
    if snapshot.is_complete:
        return
    line = snapshot.describe()
    if snapshot.rate > 0:
        line += f" - {snapshot.rate / 1024:.1f} KiB/s"
    click.echo(line)


@click.group()
@click.option(
    "-c",
    "--config",
    "config_path",
    default="modutil.toml",
    show_default=True,
    help="配置文件路径 (toml / json / yaml)",
)
@click.option("--debug", is_flag=True, help="启用调试模式")
@click.option("--log-file", help="额外写入的日志文件")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, config_path: str, debug: bool, log_file: str):
    """ModUtil - 游戏模组完整性检查与内容同步工具"""
    config = load_config(config_path)
    try:
        setup_logger(
            level="DEBUG" if debug else None,
            sink=sys.stderr,
            enqueue=False,
            log_file=log_file or config.paths.log_file,
        )
    except OSError as e:
        raise click.ClickException(f"Failed to open log file: {e}")
    ctx.obj = config


@main.command()
@click.pass_obj
def status(config: ModUtilConfig):
    """显示安装目录与已安装版本"""

    async def action(controller: SyncController):
        return controller.get_install_state()

    state = run_with_controller(config, action)
    click.echo(f"安装目录: {state.install_dir or '(未设置)'}")
    click.echo(f"已安装版本: {state.version}")


@main.command("set-dir")
@click.argument("path")
@click.option("--no-save", is_flag=True, help="只修改，不写入配置")
@click.pass_obj
def set_dir(config: ModUtilConfig, path: str, no_save: bool):
    """设置游戏安装目录"""

    async def action(controller: SyncController):
        controller.set_install_dir(path)
        if not no_save:
            controller.save_config()
        return controller.get_install_state()

    state = run_with_controller(config, action)
    click.echo(f"安装目录: {state.install_dir}")


@main.command()
@click.pass_context
def check(ctx: click.Context):
    """检查游戏文件完整性"""

    async def action(controller: SyncController):
        return await controller.run_integrity_check()

    report = run_with_controller(ctx.obj, action)
    for result in report.results:
        mark = "通过" if result.passed else "失败"
        line = f"{result.target}: {mark}"
        if result.error:
            line += f" ({result.error})"
        click.echo(line)
    click.echo("完整性检查: " + ("通过" if report.passed else "未通过"))
    if not report.passed:
        ctx.exit(1)


def _download(config: ModUtilConfig, name: str) -> None:
    async def action(controller: SyncController):
        start = getattr(controller, name)
        if await start() is None:
            return
        await controller.wait_for_transfer(on_tick=print_progress)

    run_with_controller(config, action)


def _install(config: ModUtilConfig, name: str) -> None:
    async def action(controller: SyncController):
        await getattr(controller, name)()
        return controller.get_install_state()

    state = run_with_controller(config, action)
    click.echo(f"已安装版本: {state.version}")


@main.command("download-base")
@click.pass_obj
def download_base(config: ModUtilConfig):
    """下载基础包"""
    _download(config, "download_base")


@main.command("install-base")
@click.pass_obj
def install_base(config: ModUtilConfig):
    """安装基础包"""
    _install(config, "install_base")


@main.command("download-update")
@click.pass_obj
def download_update(config: ModUtilConfig):
    """下载下一个更新包"""
    _download(config, "download_update")


@main.command("install-update")
@click.pass_obj
def install_update(config: ModUtilConfig):
    """安装下一个更新包"""
    _install(config, "install_update")


@main.command()
@click.option("--interval", default=1.0, show_default=True, help="进度刷新间隔（秒）")
@click.pass_obj
def sync(config: ModUtilConfig, interval: float):
    """下载并安装基础包及所有更新"""

    async def action(controller: SyncController):
        return await controller.sync(interval=interval, on_tick=print_progress)

    state = run_with_controller(config, action)
    click.echo(f"已安装版本: {state.version}")


if __name__ == "__main__":
    main()
