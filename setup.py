from setuptools import setup, find_packages

setup(
    name="stepgraph",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages("src", exclude=["tests", "tests.*"]),
    install_requires=[
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
        "mirascope>=1.0,<2",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    python_requires=">=3.10",
    # Add metadata for PyPI
    description="stateful graph execution with supersteps, reducers, checkpoints and time travel",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
)
