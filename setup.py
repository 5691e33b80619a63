"""
Setup configuration for the Receipt Print Agent
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README
readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text() if readme_path.exists() else ""

setup(
    name="receipt-print-agent",
    version="1.0.0",
    description="Polling print agent for thermal receipt printers, with its update feed service",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Receipt Print Agent Team",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.9",
    install_requires=[
        "Flask>=2.3.3",
        "requests>=2.31.0,<3.0",
        "rich>=13.7.0",
        # ESC/POS rendering
        "python-escpos>=3.0",
        "numpy>=1.24.3",
        "Pillow>=10.1.0",
        # raw printing through the Windows spooler
        "pywin32>=306; sys_platform == 'win32'",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.3",
            "pytest-cov>=4.1.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "printagent=printagent.cli:main",
        ]
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
