from setuptools import setup, find_packages

setup(
    name="doc_sync",
    version="1.0.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "requests",
        "pyyaml",
        # Code graph
        "networkx>=3.0",
        "tree-sitter>=0.25",
        "tree-sitter-python",
        "tree-sitter-javascript",
        "tree-sitter-typescript",
        "tree-sitter-java",
        "watchdog>=3.0",
        "tqdm>=4.60",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "doc-sync=doc_sync.cli:main",
        ],
    },
    description="Incremental code knowledge graph, documentation and retrieval engine.",
)
