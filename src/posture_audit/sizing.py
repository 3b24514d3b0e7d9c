"""
VM right-sizing against a static size table.

Sizes are grouped into families ordered by capacity. A VM that is mostly
idle is pointed at the next smaller size of its family; one that runs hot,
or is short on memory, at the next larger one. Sizes outside the table get
no recommendation.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .records import VMRecord
from .settings import CPU_HIGH_THRESHOLD, CPU_LOW_THRESHOLD, MEMORY_LOW_THRESHOLD


@dataclass(frozen=True)
class VMSize:
    name: str
    family: str
    vcpus: int
    memory_gb: float


VM_SIZES: Dict[str, VMSize] = {size.name: size for size in (
    # B-series burstable
    VMSize("Standard_B1s", "B", 1, 1),
    VMSize("Standard_B1ms", "B", 1, 2),
    VMSize("Standard_B2s", "B", 2, 4),
    VMSize("Standard_B2ms", "B", 2, 8),
    VMSize("Standard_B4ms", "B", 4, 16),
    VMSize("Standard_B8ms", "B", 8, 32),
    # D-series general purpose
    VMSize("Standard_D2s_v3", "Dsv3", 2, 8),
    VMSize("Standard_D4s_v3", "Dsv3", 4, 16),
    VMSize("Standard_D8s_v3", "Dsv3", 8, 32),
    VMSize("Standard_D16s_v3", "Dsv3", 16, 64),
    VMSize("Standard_D2s_v5", "Dsv5", 2, 8),
    VMSize("Standard_D4s_v5", "Dsv5", 4, 16),
    VMSize("Standard_D8s_v5", "Dsv5", 8, 32),
    VMSize("Standard_D16s_v5", "Dsv5", 16, 64),
    # E-series memory optimised
    VMSize("Standard_E2s_v3", "Esv3", 2, 16),
    VMSize("Standard_E4s_v3", "Esv3", 4, 32),
    VMSize("Standard_E8s_v3", "Esv3", 8, 64),
    VMSize("Standard_E16s_v3", "Esv3", 16, 128),
    # F-series compute optimised
    VMSize("Standard_F2s_v2", "Fsv2", 2, 4),
    VMSize("Standard_F4s_v2", "Fsv2", 4, 8),
    VMSize("Standard_F8s_v2", "Fsv2", 8, 16),
    VMSize("Standard_F16s_v2", "Fsv2", 16, 32),
)}


@dataclass(frozen=True)
class SizingRecommendation:
    vm_name: str
    current_size: str
    recommended_size: Optional[str]
    action: str          # downsize | upsize | keep | unknown
    reason: str

    def to_dict(self) -> dict:
        return {
            'vm_name': self.vm_name,
            'current_size': self.current_size,
            'recommended_size': self.recommended_size or '',
            'action': self.action,
            'reason': self.reason,
        }


def family_sizes(family: str) -> List[VMSize]:
    """Sizes of one family, smallest first."""
    return sorted(
        (size for size in VM_SIZES.values() if size.family == family),
        key=lambda size: (size.vcpus, size.memory_gb),
    )


def _neighbours(size_name: str) -> Tuple[Optional[VMSize], Optional[VMSize]]:
    size = VM_SIZES[size_name]
    sizes = family_sizes(size.family)
    index = sizes.index(size)
    smaller = sizes[index - 1] if index > 0 else None
    larger = sizes[index + 1] if index + 1 < len(sizes) else None
    return smaller, larger


def memory_gb(size_name: str) -> Optional[float]:
    """Memory of a size from the table, None for unknown sizes."""
    size = VM_SIZES.get(size_name)
    return size.memory_gb if size else None


def recommend_size(record: VMRecord, low_cpu: float = CPU_LOW_THRESHOLD,
                   high_cpu: float = CPU_HIGH_THRESHOLD,
                   low_memory: float = MEMORY_LOW_THRESHOLD) -> SizingRecommendation:
    """
    Right-sizing advice for one VM.

    Memory pressure wins over low CPU: a VM short on memory is never
    downsized.
    """
    def advice(action: str, target: Optional[VMSize], reason: str) -> SizingRecommendation:
        return SizingRecommendation(
            vm_name=record.vm_name,
            current_size=record.vm_size,
            recommended_size=target.name if target else None,
            action=action,
            reason=reason,
        )

    if record.vm_size not in VM_SIZES:
        return advice("unknown", None, f"Size {record.vm_size} is not in the size table")
    if record.cpu_average is None:
        return advice("unknown", None, "No CPU metrics available")

    smaller, larger = _neighbours(record.vm_size)
    cpu = record.cpu_average
    memory = record.available_memory_percent
    memory_pressure = memory is not None and memory < low_memory

    if cpu > high_cpu or memory_pressure:
        reason = (f"Average CPU {cpu:.1f}% above {high_cpu:.0f}%" if cpu > high_cpu
                  else f"Only {memory:.1f}% memory available")
        if larger is None:
            return advice("keep", None, f"{reason}; already the largest {VM_SIZES[record.vm_size].family} size")
        return advice("upsize", larger, reason)

    if cpu < low_cpu:
        reason = f"Average CPU {cpu:.1f}% below {low_cpu:.0f}%"
        if smaller is None:
            return advice("keep", None, f"{reason}; already the smallest {VM_SIZES[record.vm_size].family} size")
        return advice("downsize", smaller, reason)

    return advice("keep", None, f"Average CPU {cpu:.1f}% within {low_cpu:.0f}-{high_cpu:.0f}%")
