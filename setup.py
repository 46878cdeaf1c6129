from setuptools import setup, find_packages


setup(
    name="fadebot",
    version="0.1.0",
    description="Multi-round engagement session engine for a degrading-awareness DM bot",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pydantic>=2.5",
        "pydantic-settings>=2.7",
        "typer>=0.12",
        "apscheduler>=3.10,<4",
        "sqlmodel>=0.0.16",
        "sqlalchemy>=2.0",
        "fastapi>=0.111.0",
        "uvicorn[standard]>=0.30.0",
        "openai>=1.30",
        "tzdata",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "httpx>=0.27",
        ]
    },
    entry_points={
        "console_scripts": [
            "fadebot=fadebot.cli:app",
            "fadebot-web=fadebot.web:main",
        ]
    },
    python_requires=">=3.11",
)
