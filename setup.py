"""
shardkv - Lock resolution for a sharded transactional key-value store

Client-side cleanup of locks left behind by stalled or crashed transactions,
with region-aware routing, retries and structured logging.
"""

import os
import re
from setuptools import setup, find_packages

# Read the README for the long description
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Get package version
with open(os.path.join("shardkv", "__init__.py"), "r", encoding="utf-8") as f:
    version_match = re.search(r'^__version__ = ["\']([^\"\']+)[\"\']', f.read(), re.MULTILINE)
    if version_match:
        VERSION = version_match.group(1)
    else:
        raise RuntimeError("Unable to find version string in shardkv/__init__.py")

# Core dependencies
install_requires = [
    "pydantic>=1.8.0,<3.0.0",
    "typing-extensions>=4.0.0",
]

# Optional dependencies
extras_require = {
    # Development and testing
    "dev": [
        "pytest>=7.0.0",
        "pytest-asyncio>=0.20.0",
        "pytest-cov>=4.0.0",
        "black>=22.0.0",
        "isort>=5.0.0",
        "mypy>=0.990",
    ],
}

setup(
    name="shardkv",
    version=VERSION,
    author="shardkv developers",
    description="Lock resolution for a sharded, Percolator-style transactional key-value store",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={
        "shardkv": ["py.typed"],
    },
    python_requires=">=3.8",
    install_requires=install_requires,
    extras_require=extras_require,
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Database",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Framework :: AsyncIO",
        "Typing :: Typed",
    ],
    keywords=[
        "key-value",
        "transactions",
        "percolator",
        "distributed-database",
        "asyncio",
    ],
    zip_safe=False,
)
