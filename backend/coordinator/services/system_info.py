"""Render an agent metrics snapshot into the prompt's system-information block.

The block layout is fixed so that identical snapshots always produce identical
prompts; the agent's own collector renders the same layout.
"""

import math
from typing import Any

GIB = 1024 * 1024 * 1024


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _num(value: Any) -> str:
    """Format a metric the way it was reported: 12.0 -> '12', 12.5 -> '12.5'."""
    if not value:
        return "0"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _text(value: Any) -> str:
    return str(value) if value else "unknown"


def _as_number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def format_system_info(metrics: dict[str, Any]) -> str:
    os_info = metrics.get("os_info") or {}
    load_avg = metrics.get("load_averages") or {}
    network = metrics.get("network_stats") or {}
    filesystems = metrics.get("filesystem_info") or []
    block_devices = metrics.get("block_devices") or []

    lines = [
        "SYSTEM INFORMATION:",
        f"Hostname: {_text(os_info.get('name'))}",
        f"OS: {_text(os_info.get('platform_version'))} ({_text(os_info.get('kernel_arch'))})",
        f"Kernel: {_text(metrics.get('kernel_version'))}",
        f"CPU Usage: {_num(metrics.get('cpu_percent'))}%",
        f"Memory: {_num(metrics.get('memory_mb'))}MB used",
        "Load Average: "
        f"{_num(load_avg.get('load1'))}, {_num(load_avg.get('load5'))}, {_num(load_avg.get('load15'))}",
        f"Network: {_num(network.get('network_in_kbps'))} KB/s in, "
        f"{_num(network.get('network_out_kbps'))} KB/s out",
        f"IP: {_text(metrics.get('ip_address'))}",
    ]

    if isinstance(filesystems, list) and filesystems:
        lines.append("Filesystems:")
        for fs in filesystems:
            used = _as_number(fs.get("used"))
            total = _as_number(fs.get("total"))
            used_pct = _round_half_up(used / total * 100) if total > 0 else 0
            lines.append(
                f"  {fs.get('mountpoint')}: {used_pct}% used "
                f"({_round_half_up(used / GIB)}GB/{_round_half_up(total / GIB)}GB)"
            )

    if isinstance(block_devices, list) and block_devices:
        lines.append("Block Devices:")
        for dev in block_devices:
            lines.append(f"  {dev.get('name')}: {_round_half_up(_as_number(dev.get('size')) / GIB)}GB")

    return "\n".join(lines) + "\n"
