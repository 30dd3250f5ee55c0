from pathlib import Path

from setuptools import find_packages, setup

ROOT = Path(__file__).parent
README = (ROOT / "README.md").read_text(encoding="utf-8") if (ROOT / "README.md").exists() else ""

setup(
    name="pyimgtensor",
    version="0.1.0",
    description="Image <-> tensor buffers with layout, crop, augmentation and quantization ops for ML pipelines",
    long_description=README,
    long_description_content_type="text/markdown",
    author="pyimgtensor Contributors",
    packages=find_packages(exclude=("tests", "tests.*")),
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.19",
        "Pillow>=8.0.0",
        "opencv-python>=4.5.0",
    ],
    extras_require={
        "torch": [
            "torch>=1.9.0",
        ],
        "yaml": [
            "PyYAML>=5.4",
        ],
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "pytest-xdist>=3.0.0",
        ],
        "all": [
            "pyimgtensor[torch,yaml,dev]",
        ],
    },
    include_package_data=True,
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Topic :: Scientific/Engineering :: Image Recognition",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
    keywords=[
        "computer-vision",
        "machine-learning",
        "image-processing",
        "tensor",
        "quantization",
        "augmentation",
    ],
    entry_points={
        "console_scripts": [
            "pyimgtensor-inspect=pyimgtensor.inspect_cli:main",
        ],
    },
)
