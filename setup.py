"""Setup script for calendarsync."""

from pathlib import Path

from setuptools import find_packages, setup

# Read the README file
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

# Read requirements, routing test-only lines to the dev extra
requirements_file = Path(__file__).parent / "requirements.txt"
requirements = []
dev_requirements = []

if requirements_file.exists():
    content = requirements_file.read_text().strip()
    lines = content.split("\n")

    for line in lines:
        line = line.strip()
        # Skip empty lines and comments
        if not line or line.startswith("#"):
            continue

        requirement = line.split("#", 1)[0].strip()
        if "pytest" in line or "development" in line.lower() or "testing" in line.lower():
            dev_requirements.append(requirement)
        else:
            requirements.append(requirement)

setup(
    name="calendarsync",
    version="0.1.0",
    description="ICS calendar feed sync, reconciliation and recurrence expansion",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="CalendarSync Team",
    # Package configuration
    packages=find_packages(exclude=["tests*", "docs*"]),
    include_package_data=True,
    # Dependencies
    install_requires=requirements,
    extras_require={
        "dev": dev_requirements,
    },
    python_requires=">=3.11",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX :: Linux",
        "Operating System :: MacOS",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Office/Business :: Scheduling",
        "Framework :: AsyncIO",
    ],
    keywords="calendar ics icalendar rrule recurrence sync async",
    entry_points={
        "console_scripts": [
            "calendarsync=calendarsync.__main__:main",
        ],
    },
    package_data={
        "calendarsync": ["py.typed"],
    },
    zip_safe=False,
    platforms=["linux", "macos"],
)
