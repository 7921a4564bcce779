"""
Setup script for the adminer job admission service
"""
from setuptools import setup, find_packages

setup(
    name="adminer",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    package_data={"adminer": ["data/*.yaml"]},
    include_package_data=True,
    python_requires=">=3.10,<3.14",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn>=0.27",
        "pydantic>=2.5",
        "SQLAlchemy>=2.0",
        "psycopg2-binary>=2.9",
        "alembic>=1.13",
        "APScheduler>=3.10,<4",
        "PyYAML>=6.0",
        "python-dotenv>=1.0",
        "httpx>=0.26",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
        ],
    },
)
