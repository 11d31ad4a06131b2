"""Package metadata for qino-store (src layout, console script `qino`)."""

from setuptools import find_packages, setup

setup(
    name="qino-store",
    version="0.1.0",
    description="Filesystem-backed research graph store with a debounced change notifier",
    python_requires=">=3.11",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "click>=8.1",
        "rich>=13",
        "inotify_simple>=1.3; sys_platform == 'linux'",
    ],
    extras_require={
        "test": ["pytest>=8"],
    },
    entry_points={
        "console_scripts": ["qino=qino.cli:cli"],
    },
)
