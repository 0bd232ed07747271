import os

from setuptools import find_packages, setup


def read_version():
    ns = {}
    with open(os.path.join("src", "scarank", "version.py")) as f:
        exec(f.read(), ns)
    return ns["version"]


setup(
    name="scarank",
    version=read_version(),
    description="Template-based key rank estimation for side-channel traces.",
    package_dir={"": "src"},
    packages=find_packages("src"),
    python_requires=">=3.10",
    install_requires=[
        "numpy>=1.22",
        "scipy>=1.8",
        "tqdm",
    ],
    extras_require={
        "test": ["pytest"],
        "docs": ["sphinx", "furo"],
    },
)
