"""Set up the repogate package."""
import json
from pathlib import Path

from setuptools import find_packages, setup

DESCRIPTION = (
    "An authenticated HTTP gateway that lets automated callers commit"
    " files to git branches atomically."
)

REQUIREMENTS = [
    "fastapi>=0.100.0",
    "pydantic>=2.6.1",
    "typing-extensions>=3.7.4.3",  # required by pydantic
    "python-dotenv>=0.19.0",
    "uvicorn>=0.23.2",
    "httpx>=0.24.0",
    "dulwich>=0.21.0",
]

ROOT_DIR = Path(__file__).parent.resolve()
README_FILE = ROOT_DIR / "README.md"
LONG_DESCRIPTION = README_FILE.read_text(encoding="utf-8")
VERSION_FILE = ROOT_DIR / "repogate" / "VERSION"
VERSION = json.loads(VERSION_FILE.read_text(encoding="utf-8"))["version"]


setup(
    name="repogate",
    version=VERSION,
    description=DESCRIPTION,
    long_description=LONG_DESCRIPTION,
    long_description_content_type="text/markdown",
    license="MIT",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={"repogate": ["VERSION"]},
    python_requires=">=3.9",
    include_package_data=True,
    install_requires=REQUIREMENTS,
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    zip_safe=False,
    entry_points={"console_scripts": ["repogate = repogate.__main__:main"]},
)
