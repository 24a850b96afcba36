"""
Setup file.
"""

from setuptools import find_packages, setup

KEYWORDS = "release orchestration cargo rust crates.io github multi-repository pipeline"

if __name__ == "__main__":
    setup(
        name="relchain",
        version="0.1.0",
        description="Release orchestration for a chain of dependent Rust components",
        keywords=KEYWORDS,
        package_dir={"": "src"},
        packages=find_packages(where="src"),
        python_requires=">=3.11.4",
        install_requires=[
            "requests>=2.31.0",
            "tqdm>=4.66.0",
            "psutil>=5.9.0",
        ],
        extras_require={
            "test": [
                "pytest>=7.4.0",
            ],
        },
        entry_points={
            "console_scripts": [
                "relchain=relchain.cli:main",
            ],
        },
        include_package_data=True)
