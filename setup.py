"""
Blockchain indexing and on-chain tool billing for the WowSeoWeb3 dashboard
"""

from setuptools import find_packages, setup

with open("README.md", encoding="utf-8") as f:
    long_description = f.read()

with open("requirements.txt", encoding="utf-8") as f:
    requirements = f.read().splitlines()

setup(
    name="wowseo",
    version="0.1.0",
    author="WowSeoWeb3",
    description="Blockchain indexing and on-chain tool billing for the WowSeoWeb3 dashboard",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/wowseoweb3/wowseo-py",
    packages=find_packages(),
    package_data={
        "": ["../requirements.txt", "abi/*.json"],
    },
    install_requires=requirements,
    extras_require={
        "test": ["pytest", "httpx"],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
)
