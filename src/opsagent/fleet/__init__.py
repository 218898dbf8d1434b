"""Multi-target dispatch."""

from .dispatcher import FleetDispatcher, screen_commands
from .inventory import InventoryError, load_inventory, render_status
from .models import FleetReport, FleetResult, FleetStatus, FleetTarget
from .ssh import SshRunner

__all__ = [
    "FleetDispatcher",
    "FleetReport",
    "FleetResult",
    "FleetStatus",
    "FleetTarget",
    "InventoryError",
    "SshRunner",
    "load_inventory",
    "render_status",
    "screen_commands",
]
