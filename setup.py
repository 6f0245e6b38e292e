"""Setup script for Bedrock Server Wrapper."""

from setuptools import find_namespace_packages, setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="bedrock-server-wrapper",
    version="1.0.0",
    author="squid-box",
    description="Process wrapper for the Minecraft Bedrock dedicated server with automatic backups",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/squid-box/MCBE-ServerWrapper",
    packages=find_namespace_packages(include=["bedrock_server_wrapper*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Games/Entertainment",
        "Topic :: System :: Archiving :: Backup",
        "Topic :: Utilities",
    ],
    python_requires=">=3.11",
    install_requires=[
        "aiohttp>=3.9.1",
        "tqdm>=4.66.1",
        "toml>=0.10.2",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "bedrock-server-wrapper=bedrock_server_wrapper.__main__:main",
        ],
    },
)
