# setup.py
from setuptools import find_packages, setup

setup(
    name="dynamostream",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "boto3",
        "pydantic",
        "ulid-py",
        "moto",
        "boto3-stubs[dynamodb]",
    ],
    extras_require={
        "test": ["pytest", "pytest-asyncio"],
    },
    author="James Brock",
    author_email="contact@dysomni.com",
    description="Lazy paginated streams and limit-free batch operations for dynamodb",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/my_package",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.11",
)
