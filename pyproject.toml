[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "avmc"
version = "0.1.0"
description = "Organise video files by catalogue code: scrape metadata, write NFO/poster/fanart sidecars and move files into a tidy library."
requires-python = ">=3.10"
keywords = ["video", "media-library", "nfo", "kodi", "jellyfin", "emby", "scraper"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Video",
]
dependencies = [
    "requests>=2.28",
    "beautifulsoup4>=4.11",
    "pillow>=9.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
    "responses>=0.23",
]

[project.scripts]
avmc = "avmc.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["avmc"]

[tool.pytest.ini_options]
addopts = "-ra"
