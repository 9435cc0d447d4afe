import json
import os
from typing import Optional

import aiohttp
import toml
import yaml

FORMATS = ("json", "toml", "yaml")


def join_url(base: str, *parts: str) -> str:
    """拼接 URL，避免重复或缺失的斜杠"""
    url = base.rstrip("/")
    for part in parts:
        url += "/" + part.strip("/")
    return url


def document_format(path: str, default: str = "json") -> str:
    """根据文件后缀判断文档格式"""
    suffix = os.path.splitext(path)[1].lower().lstrip(".")
    if suffix == "yml":
        return "yaml"
    if suffix in FORMATS:
        return suffix
    return default


def parse_document(text: str, format: str) -> dict:
    """
    解析 json / toml / yaml 文本

    Raises:
        ValueError: 文本无法解析或格式不支持
    """
    try:
        if format == "json":
            data = json.loads(text)
        elif format == "toml":
            data = toml.loads(text)
        elif format == "yaml":
            data = yaml.safe_load(text)
        else:
            raise ValueError(f"不支持的文档格式: {format}")
    except (json.JSONDecodeError, toml.TomlDecodeError, yaml.YAMLError) as e:
        raise ValueError(f"{format} 解析失败: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"{format} 文档顶层必须是对象")
    return data


def dump_document(data: dict, format: str) -> str:
    if format == "json":
        return json.dumps(data, indent=4, ensure_ascii=False)
    elif format == "toml":
        return toml.dumps(data)
    elif format == "yaml":
        return yaml.safe_dump(data, allow_unicode=True, sort_keys=False)
    raise ValueError(f"不支持的文档格式: {format}")


async def fetch_document(
    session: aiohttp.ClientSession, url: str, format: str
) -> Optional[dict]:
    """
    下载并解析远程文档

    Returns:
        解析后的字典；HTTP 状态码非 200 时返回 None

    Raises:
        aiohttp.ClientError: 网络错误
        ValueError: 内容无法解析
    """
    async with session.get(url) as response:
        if response.status != 200:
            return None
        return parse_document(await response.text(), format)
