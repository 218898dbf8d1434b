"""JSON fleet inventory."""

from __future__ import annotations

import json
from pathlib import Path

from opsagent.fleet.models import FleetTarget


class InventoryError(Exception):
    """The inventory file is missing or malformed."""


def load_inventory(path: str | Path) -> list[FleetTarget]:
    """Read ``{"targets": {name: {...}}}`` into targets sorted by name."""
    inventory_path = Path(path)
    try:
        with inventory_path.open("r", encoding="utf-8") as fh:
            parsed = json.load(fh)
    except FileNotFoundError as exc:
        msg = f"Inventory not found: {inventory_path}"
        raise InventoryError(msg) from exc
    except (OSError, json.JSONDecodeError) as exc:
        msg = f"Could not read inventory {inventory_path}: {exc}"
        raise InventoryError(msg) from exc

    targets = parsed.get("targets") if isinstance(parsed, dict) else None
    if not isinstance(targets, dict):
        msg = f"Inventory {inventory_path} has no 'targets' object"
        raise InventoryError(msg)

    loaded: list[FleetTarget] = []
    for name, entry in sorted(targets.items()):
        if not isinstance(entry, dict):
            msg = f"Inventory target {name!r} must be an object"
            raise InventoryError(msg)
        address = entry.get("ip") or entry.get("address")
        if not isinstance(address, str) or not address.strip():
            msg = f"Inventory target {name!r} has no address"
            raise InventoryError(msg)
        loaded.append(
            FleetTarget(
                name=name,
                address=address.strip(),
                os_family=_optional_string(entry.get("os_type")),
                user=_optional_string(entry.get("user")),
                port=_optional_port(entry.get("port")),
                last_success=_optional_string(entry.get("last_success")),
            )
        )
    return loaded


def render_status(targets: list[FleetTarget]) -> str:
    if not targets:
        return "Inventory is empty."
    rows = [("NAME", "ADDRESS", "OS", "LAST VERIFIED")]
    for target in targets:
        address = f"{target.user}@{target.address}" if target.user else target.address
        if target.port:
            address = f"{address}:{target.port}"
        rows.append(
            (target.name, address, target.os_family or "unknown", target.last_success or "never")
        )
    widths = [max(len(row[index]) for row in rows) for index in range(len(rows[0]))]
    return "\n".join(
        "  ".join(cell.ljust(widths[index]) for index, cell in enumerate(row)).rstrip()
        for row in rows
    )


def _optional_string(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _optional_port(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int) and 0 < value < 65536:
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return _optional_port(int(value.strip()))
    return None
