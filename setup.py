# -*- coding: utf-8 -*-
from setuptools import find_packages, setup

setup(
    name="rpmlock",
    version="0.4.0",
    author="rpmlock developers",
    description="Resolve, pin and verify RPM dependency sets for container image layers",
    license="GNU General Public License v3 or later (GPLv3+)",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    python_requires='>=3.10',
    install_requires=[
        "aiohttp>=3.9",
        "click>=8.1",
        "opentelemetry-api>=1.20",
        "opentelemetry-sdk>=1.20",
        "opentelemetry-exporter-otlp-proto-grpc>=1.20",
        "pydantic>=2.4",
        "PyYAML>=6.0",
        "tenacity>=8.2",
    ],
    extras_require={
        "tests": [
            "pytest>=7",
        ],
    },
    entry_points={
        'console_scripts': [
            'rpmlock = rpmlocklib.cli.__main__:main',
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Environment :: Console",
        "Operating System :: POSIX :: Linux",
        "License :: OSI Approved :: GNU General Public License v3 or later (GPLv3+)",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Build Tools",
        "Topic :: System :: Software Distribution",
        "Natural Language :: English",
    ],
)
