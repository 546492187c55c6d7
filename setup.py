from setuptools import setup, find_packages

setup(
    name="association_finder",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "aiohttp>=3.9.0",
        "duckdb>=0.9.0",
        "pyarrow>=14.0.1",
        "pyyaml>=6.0.0",
        "pytz>=2023.3",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
        ],
    },
    python_requires=">=3.8",
)
