from setuptools import setup, find_namespace_packages

setup(
    name="stackup",
    version="0.1.0",
    packages=find_namespace_packages(where="src", include=["stackup", "stackup.*"]),
    package_dir={"": "src"},
    install_requires=[
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
        "pyyaml>=6.0",
        "click>=8.0",
        "psutil>=5.9",
        "tenacity>=8.2",
        "python-dotenv>=1.0",
        "docker>=6.0",
        "structlog>=23.1",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "stackup=stackup.CLI.main:main",
        ],
    },
)
