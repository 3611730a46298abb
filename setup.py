#!/usr/bin/python3
# Setup file for packclone
# Copyright (C) 2026 The packclone contributors
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later

from setuptools import setup

setup(
    name="packclone",
    version="0.1.0",
    description="Clone git repositories over the smart HTTP protocol",
    license="Apache-2.0 OR GPL-2.0-or-later",
    python_requires=">=3.10",
    packages=["packclone"],
    install_requires=["urllib3>=2.2.2"],
    entry_points={
        "console_scripts": ["packclone=packclone.cli:_main"],
    },
    test_suite="tests.test_suite",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Programming Language :: Python :: 3",
        "Operating System :: POSIX",
        "Topic :: Software Development :: Version Control :: Git",
    ],
)
