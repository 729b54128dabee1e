#!/usr/bin/env python3
"""
SkyFi MCP 服务器安装脚本
"""

from setuptools import setup, find_packages
import os
import sys

# 确保Python版本兼容性
if sys.version_info < (3, 9):
    raise RuntimeError("SkyFi MCP requires Python 3.9 or higher")

# 读取README文件
def read_readme():
    """读取README文件内容"""
    readme_path = os.path.join(os.path.dirname(__file__), "README.md")
    if os.path.exists(readme_path):
        with open(readme_path, "r", encoding="utf-8") as f:
            return f.read()
    return ""

# 读取requirements文件
def read_requirements():
    """读取requirements.txt文件"""
    requirements_path = os.path.join(os.path.dirname(__file__), "requirements.txt")
    requirements = []

    if os.path.exists(requirements_path):
        with open(requirements_path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                # 跳过注释和空行
                if line and not line.startswith("#"):
                    requirements.append(line)

    return requirements

# 项目元数据
PACKAGE_NAME = "skyfi-mcp-server"
VERSION = "0.1.0"
DESCRIPTION = "SkyFi 地理空间数据 MCP 服务器（JSON-RPC 2.0 over HTTP + SSE）"
LONG_DESCRIPTION = read_readme()
AUTHOR = "SkyFi MCP Team"
LICENSE = "MIT"

# 分类信息
CLASSIFIERS = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "License :: OSI Approved :: MIT License",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3.9",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Scientific/Engineering :: GIS",
    "Environment :: Web Environment",
]

# 关键词
KEYWORDS = [
    "mcp", "model-context-protocol", "json-rpc", "sse",
    "server-sent-events", "skyfi", "geospatial", "satellite-imagery"
]

# 入口点
ENTRY_POINTS = {
    "console_scripts": [
        "skyfi-mcp=skyfi_mcp.__main__:main",
    ],
    "mcp.servers": [
        "skyfi=skyfi_mcp.protocols.mcp_server:create_server",
    ],
}

# 测试依赖
TEST_REQUIRES = [
    "pytest>=7.4.3",
    "pytest-asyncio>=0.21.1",
    "pytest-mock>=3.12.0",
    "httpx>=0.25.2",
]

# 额外的安装要求
EXTRAS_REQUIRE = {
    "test": TEST_REQUIRES,
    "dev": TEST_REQUIRES + [
        "pytest-cov>=4.1.0",
        "black>=23.11.0",
        "isort>=5.12.0",
        "flake8>=6.1.0",
        "mypy>=1.7.0",
    ],
}

# Python要求
PYTHON_REQUIRES = ">=3.9"

# 安装要求
INSTALL_REQUIRES = read_requirements()

# 设置配置
setup(
    name=PACKAGE_NAME,
    version=VERSION,
    description=DESCRIPTION,
    long_description=LONG_DESCRIPTION,
    long_description_content_type="text/markdown",
    author=AUTHOR,
    license=LICENSE,
    classifiers=CLASSIFIERS,
    keywords=" ".join(KEYWORDS),

    # 包配置
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    include_package_data=True,
    zip_safe=False,

    # 依赖配置
    python_requires=PYTHON_REQUIRES,
    install_requires=INSTALL_REQUIRES,
    extras_require=EXTRAS_REQUIRE,

    # 入口点
    entry_points=ENTRY_POINTS,
)
