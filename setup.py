from setuptools import setup, find_packages

setup(
    name="civicwatch",
    version="1.0.0",
    description="Duplicate report detection and map marker selection for citizen issue reporting",
    author="Civicwatch contributors",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "requests>=2.31.0",
        "python-dateutil>=2.8.0",
        "rich>=13.0.0",
        "pyyaml>=6.0.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "civicwatch=civicwatch.cli:main",
        ],
    },
    python_requires=">=3.9",
)
