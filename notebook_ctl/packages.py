"""
Installation of packages for modules a session failed to import.
"""

import logging
import subprocess
import sys

logger = logging.getLogger(__name__)

# Import names whose distribution is published under a different name.
MODULE_TO_PACKAGE = {
    "bs4": "beautifulsoup4",
    "cv2": "opencv-python",
    "dateutil": "python-dateutil",
    "PIL": "pillow",
    "sklearn": "scikit-learn",
    "yaml": "pyyaml",
}


def package_name(module: str) -> str:
    return MODULE_TO_PACKAGE.get(module, module)


def install_command(manager: str, packages: list[str]) -> list[str]:
    """Build the command line that installs ``packages`` with ``manager``."""
    if manager == "pip":
        return [sys.executable, "-m", "pip", "install", *packages]
    if manager == "uv":
        return ["uv", "pip", "install", "--python", sys.executable, *packages]
    if manager in ("rye", "poetry", "pixi"):
        return [manager, "add", *packages]
    raise ValueError(f"Unsupported package manager: {manager}")


def install_packages(manager: str, modules) -> list[str]:
    """
    Install the distributions providing ``modules``.

    Each package is installed separately so one failure does not block
    the others.

    Returns:
        The modules whose package installed successfully
    """
    installed = []
    for module in sorted(modules):
        command = install_command(manager, [package_name(module)])
        logger.info("Installing %s: %s", module, " ".join(command))
        try:
            proc = subprocess.run(command, capture_output=True, text=True)
        except OSError as e:
            logger.error("Could not run %s: %s", command[0], e)
            continue
        if proc.returncode == 0:
            installed.append(module)
        else:
            logger.error("Failed to install %s: %s", module, proc.stderr.strip())
    return installed
