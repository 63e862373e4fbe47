"""
LangLand 背景协调服务

浏览器扩展的后台进程: 消息路由、词族熟练度状态、AI 流式中继
"""

__version__ = "0.1.0"
