import os.path
from setuptools import find_packages, setup

# the directory containing this file
ROOT = os.path.dirname(__file__)

# the text of the README file
with open(os.path.join(ROOT, "README.md"), "r") as f:
    README = f.read()

setup(
    name="writerside-to-confluence",
    version="0.3.0",
    description="Publish Writerside and Authord documentation to a single Confluence page",
    long_description=README,
    long_description_content_type="text/markdown",
    author="wr2conf authors",
    license="MIT",
    classifiers=[
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
    ],
    packages=find_packages(exclude=("tests",)),
    include_package_data=True,
    python_requires=">=3.10",
    install_requires=[
        "cattrs",
        "lxml",
        "markdown",
        "orjson",
        "pymdown-extensions",
        "pyyaml",
        "requests",
    ],
    entry_points={
        "console_scripts": [
            "confluence-single=wr2conf.__main__:main",
        ],
    },
)
