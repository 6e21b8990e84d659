from __future__ import annotations

from pathlib import Path

from setuptools import find_packages, setup


ROOT = Path(__file__).resolve().parent


def read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8")


VERSION = read_text(ROOT / "VERSION").strip()
README = read_text(ROOT / "README.md")


setup(
    name="flybuild",
    version=VERSION,
    description="Command-line client that runs builds on a remote orchestrator.",
    long_description=README,
    long_description_content_type="text/markdown",
    author="Flybuild Team",
    python_requires=">=3.8",
    packages=find_packages(include=["flybuild", "flybuild.*"]),
    include_package_data=True,
    install_requires=[
        "requests>=2.25",
        "PyYAML>=5.4",
        "websocket-client>=1.2",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "fly=flybuild.cli:main",
        ]
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3 :: Only",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX",
    ],
    keywords=["build", "orchestrator", "client", "ci"],
)
