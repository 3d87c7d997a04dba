[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "btclient"
version = "0.1.0"
description = "A small BitTorrent client: torrent parsing, HTTP tracker announce and multi-peer piece download"
requires-python = ">=3.10"
dependencies = []
keywords = ["bittorrent", "torrent", "tracker", "bencode", "peer-to-peer"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: End Users/Desktop",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: File Sharing",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
btclient = "btclient.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["btclient"]

[tool.pytest.ini_options]
addopts = "-ra"
