"""Package-manager command tables used by the healer and fleet updates."""

from __future__ import annotations

import shutil
from enum import Enum


class PackageManager(str, Enum):
    APT = "apt"
    DNF = "dnf"
    PACMAN = "pacman"
    APK = "apk"
    UNKNOWN = "unknown"


_INSTALL = {
    PackageManager.APT: "sudo apt install -y {}",
    PackageManager.DNF: "sudo dnf install -y {}",
    PackageManager.PACMAN: "sudo pacman -S --noconfirm {}",
    PackageManager.APK: "sudo apk add {}",
}

_UPDATE = {
    PackageManager.APT: "sudo apt update && sudo apt upgrade -y",
    PackageManager.DNF: "sudo dnf update -y",
    PackageManager.PACMAN: "sudo pacman -Syu --noconfirm",
    PackageManager.APK: "sudo apk update && sudo apk upgrade",
}

_LOCK_CLEANUP = {
    PackageManager.APT: (
        "sudo rm /var/lib/apt/lists/lock && sudo rm /var/cache/apt/archives/lock"
        " && sudo dpkg --configure -a"
    ),
    PackageManager.DNF: "sudo rm -f /var/lib/dnf/rpmdb_lock.pid && sudo rpm --rebuilddb",
    PackageManager.PACMAN: "sudo rm -f /var/lib/pacman/db.lck",
    PackageManager.APK: "sudo rm -f /lib/apk/db/lock",
}

# Binary names whose distribution package is named differently.
_PACKAGE_ALIASES = {
    ("obs", PackageManager.APT): "obs-studio",
    ("docker", PackageManager.APT): "docker.io",
    ("docker", PackageManager.DNF): "docker-ce",
}

OS_FAMILY_PACKAGE_MANAGERS = {
    "fedora": PackageManager.DNF,
    "rhel": PackageManager.DNF,
    "centos": PackageManager.DNF,
    "ubuntu": PackageManager.APT,
    "debian": PackageManager.APT,
    "alpine": PackageManager.APK,
    "arch": PackageManager.PACMAN,
}

_DETECTION_ORDER = (
    ("apt-get", PackageManager.APT),
    ("dnf", PackageManager.DNF),
    ("pacman", PackageManager.PACMAN),
    ("apk", PackageManager.APK),
)


def normalize_package(name: str, manager: PackageManager) -> str:
    return _PACKAGE_ALIASES.get((name, manager), name)


def install_command(name: str, manager: PackageManager) -> str:
    template = _INSTALL.get(manager)
    if template is None:
        return f"echo 'Please install {name} manually'"
    return template.format(normalize_package(name, manager))


def update_command(manager: PackageManager) -> str | None:
    return _UPDATE.get(manager)


def lock_cleanup_command(manager: PackageManager) -> str | None:
    return _LOCK_CLEANUP.get(manager)


def detect_package_manager() -> PackageManager:
    for binary, manager in _DETECTION_ORDER:
        if shutil.which(binary):
            return manager
    return PackageManager.UNKNOWN


def parse_package_manager(value: str | None) -> PackageManager:
    if not value:
        return PackageManager.UNKNOWN
    try:
        return PackageManager(value.strip().lower())
    except ValueError:
        return PackageManager.UNKNOWN


def fleet_update_commands() -> dict[str, str]:
    """Per-OS-family update commands for fleet dispatch."""
    commands: dict[str, str] = {}
    for os_family, manager in OS_FAMILY_PACKAGE_MANAGERS.items():
        command = update_command(manager)
        if command is not None:
            commands[os_family] = command
    return commands
