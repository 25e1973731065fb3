# setup.py
from setuptools import setup, find_packages

setup(
    name="aeo_scout",
    version="0.1.0",
    description="Асинхронный обходчик и оценщик сайтов для answer engine optimization",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={
        "aeo_scout": ["data/*.yaml", "templates/*.j2"],
    },
    install_requires=[
        "aiohttp>=3.9",
        "beautifulsoup4>=4.12",
        "lxml>=5.0",
        "pydantic>=2.5",
        "PyYAML>=6.0",
        "click>=8.1",
        "jinja2>=3.1",
        "openai>=1.30",
        "tiktoken>=0.7",
        "playwright>=1.40",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "aeo-scout=aeo_scout.cli:cli",
        ],
    },
    python_requires=">=3.11",
)
