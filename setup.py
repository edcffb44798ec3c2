#!/usr/bin/env python3
from setuptools import setup

setup(
    name="readthrough",
    version="1.0",
    packages=["readthrough", "readthrough.commands"],
    url="",
    license="",
    author="",
    author_email="",
    description="A local disk read-through cache for remote file storage",
    python_requires=">=3.6",
    install_requires=[
        "Django",
        "requests",
        "tqdm",
        "colorlog",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={"console_scripts": ["readthrough=readthrough.main:main"]},
)
