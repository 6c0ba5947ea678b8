[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sixfs"
version = "0.1.0"
description = "A small Unix-style file system with a write-ahead log, buffer cache, inodes, directories, pipes and a system-call layer"
requires-python = ">=3.10"
dependencies = []
keywords = ["filesystem", "inode", "write-ahead log", "buffer cache", "unix", "pipe"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
    "Topic :: Education",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["sixfs"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
