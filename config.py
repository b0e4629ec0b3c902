"""
Configuration module for the component lifecycle runtime.
Loads settings from environment variables or .env file.
组件生命周期运行时配置模块。
从环境变量或 .env 文件加载所有配置项。
"""

import os
from dotenv import load_dotenv

load_dotenv()  # 自动读取项目根目录的 .env 文件（若存在），优先级低于系统环境变量

# --- Logging ---
# --- 日志 ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()  # 默认日志级别，CLI 的 -v 会覆盖为 DEBUG

# --- Blocking entry points ---
# --- 阻塞式入口 ---
# start_system / stop_system 等待整体完成的最长秒数；0 表示无限等待
LIFECYCLE_TIMEOUT = float(os.getenv("LIFECYCLE_TIMEOUT", "30"))

# --- Demo ---
# --- 演示参数 ---
DEMO_DELAY_MS = int(os.getenv("DEMO_DELAY_MS", "500"))        # 演示中异步组件的模拟耗时（毫秒）
DEMO_FAIL_COMPONENT = os.getenv("DEMO_FAIL_COMPONENT", "")    # 演示中强制失败的组件名（空表示不失败）
