from setuptools import find_packages, setup  # noqa

extras_require = {
    "test": [
        "mock",
        "pytest",
    ],
}

__version__ = "0.0.0+develop"

setup(
    name="layerkit",
    version=__version__,
    maintainer="Layerkit Contributors",
    packages=find_packages(
        include=["layerkit", "layerkit.*"],
        exclude=["docs", "tests*"],
    ),
    include_package_data=True,
    description="Container image builds from ordered build instructions",
    long_description=open("README.md", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    entry_points={
        "console_scripts": [
            "layerkit=layerkit.clis.main:main",
        ]
    },
    install_requires=[
        # Please maintain an alphabetical order in the following list
        "click>=6.6,<9.0",
        "dataclasses-json>=0.5.2",
        "diskcache>=5.2.1",
        "docker>=4.4.0",
        "docker-image-py>=0.1.10",
        "python-json-logger>=2.0.0",
        "pyyaml!=6.0.0,!=5.4.0,!=5.4.1",  # pyyaml is broken with cython 3: https://github.com/yaml/pyyaml/issues/601
        "requests>=2.18.4,<3.0.0",
        "rich",
    ],
    extras_require=extras_require,
    license="apache2",
    python_requires=">=3.8",
    classifiers=[
        "Intended Audience :: Developers",
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3",
        "Topic :: Software Development :: Build Tools",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
)
