"""A small Unix-style file system: block devices, buffer cache, log, inodes, pipes and system calls."""

__version__ = "0.1.0"
__all__ = ["layout", "disk", "bio", "log", "console", "fs", "file", "syscalls"]