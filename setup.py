"""
dalgen - Data-Access-Layer Generator
Install: pip install -e .
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="dalgen",
    version="0.1.0",
    author="Diegoproggramer",
    author_email="",
    description="Generate SQLAlchemy Core data-access packages from a live database schema",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["dalgen", "dalgen.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Code Generators",
        "Topic :: Database",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2.0.0",
        "pyyaml>=6.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "sqlalchemy>=2.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "dalgen=dalgen.cli:cli_main",
        ],
    },
    keywords="sqlalchemy, generator, orm, database, code-generator, introspection",
)
