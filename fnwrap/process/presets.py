# -*- coding: utf-8 -*-
"""
前端框架预设模块 - 各框架的开发服务器命令
"""

from typing import NamedTuple, Optional


class DevServer(NamedTuple):
    label: str
    args: list
    env: Optional[dict] = None


DEV_SERVERS = {
    "astro": DevServer("Astro", ["npx", "astro", "dev"]),
    "cra": DevServer("CRA", ["npx", "react-scripts", "start"]),
    "vite": DevServer("Vite", ["npx", "vite"]),
    "remix": DevServer("Remix", ["npx", "remix", "dev"], {"NODE_ENV": "development"}),
    "next": DevServer("Next.js", ["npx", "next", "dev"], {"NODE_ENV": "development"}),
}


def dev_server_for(preset) -> Optional[DevServer]:
    """返回预设对应的开发服务器，没有预设时返回 None"""
    if preset is None:
        return None
    return DEV_SERVERS.get(preset)
