from setuptools import setup, find_packages

setup(
    name="mazelang",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["maze"],
    package_data={"mazelang": ["grammar.lark"]},
    install_requires=[
        "lark",
        "pydantic>=2.0",
        "networkx>=3.0",
        "loguru>=0.7",
        "opentelemetry-api",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "maze=maze:main",
        ],
    },
    python_requires=">=3.10",
)
