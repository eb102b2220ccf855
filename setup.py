from setuptools import setup, find_packages

setup(
    name="autocompliance",
    version="0.1.0",
    packages=find_packages(include=["autocompliance", "autocompliance.*"]),
    install_requires=[
        "fastapi",
        "uvicorn",
        "sqlalchemy>=2.0",
        "alembic",
        "psycopg2-binary",
        "python-dotenv",
        "pydantic>=2",
        "pydantic-settings",
        "celery",
        "kombu",
        "prometheus-client",
        "prometheus-fastapi-instrumentator",
        "firebase-admin",
        "python-dateutil",
        "tzdata",
    ],
    extras_require={
        "test": [
            "pytest",
            "httpx",
        ],
    },
)
