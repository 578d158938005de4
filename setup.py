from setuptools import setup, find_packages

setup(
    name="codebase_context",
    version="1.0.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "requests",
        "pyyaml",
        "numpy>=1.24",
        "tqdm>=4.60",
        # Reference extraction grammars
        "tree-sitter>=0.22",
        "tree-sitter-javascript",
        "tree-sitter-typescript",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "codebase-context=codebase_context.cli:main",
        ],
    },
    description="Persistent semantic and identifier-reference index of a source tree.",
)
