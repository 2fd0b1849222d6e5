"""
IndexProof

Attests local package files against signed remote package indexes.
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="indexproof",
    version="0.1.0",
    author="IndexProof Contributors",
    description="Attest local packages against signed package indexes",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: System Administrators",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Topic :: Security",
        "Topic :: System :: Software Distribution",
    ],
    python_requires=">=3.10",
    install_requires=[
        # Otherwise stdlib only (gpgv is invoked as a subprocess)
        "zstandard>=0.22",  # control.tar.zst members in Ubuntu .deb files
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "indexproof=indexproof.cli.main:main",
        ],
    },
)
