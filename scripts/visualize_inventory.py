#!/usr/bin/env python3
"""
KETI MIG Slice Inventory 시각화

Controller API (/inventory) 에서 SliceInventory 를 가져와
노드/GPU 별 slice 점유 상태를 그립니다.
- allocation: 상태별 색상 (creating, created, ungated, deleting, deleted)
- prepared: node agent 가 실제로 만든 slice (빗금)
"""

import argparse
import os
import sys
from datetime import datetime

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import matplotlib.patches as mpatches
import requests

from keti_mig.inventory import AllocationStatus, SliceInventory

DEFAULT_API_URL = os.environ.get('KETI_CONTROLLER_URL', 'http://127.0.0.1:8081')

# A100 / H100: 8 memory slices per GPU
GPU_SLOTS = 8

STATUS_COLORS = {
    AllocationStatus.CREATING: '#FFD966',
    AllocationStatus.CREATED: '#9FC5E8',
    AllocationStatus.UNGATED: '#6AA84F',
    AllocationStatus.DELETING: '#E69138',
    AllocationStatus.DELETED: '#CCCCCC',
}


def get_inventory(api_url: str):
    """Controller API 에서 inventory 조회"""
    response = requests.get(f"{api_url}/inventory", timeout=5)
    response.raise_for_status()
    return [SliceInventory.from_object(item) for item in response.json().get('items', [])]


def visualize_inventory(records, output_path="slice_inventory.png"):
    """노드/GPU 별 slice 점유 상태"""
    rows = []
    for record in sorted(records, key=lambda r: r.name):
        for device_id in record.device_ids():
            rows.append((record, device_id))

    if not rows:
        print("No GPUs in inventory")
        return None

    fig, ax = plt.subplots(figsize=(12, 1 + 0.8 * len(rows)))
    fig.suptitle(f'KETI MIG Slice Inventory\n{datetime.now().strftime("%Y-%m-%d %H:%M:%S")}',
                 fontsize=14, fontweight='bold')

    labels = []
    for y, (record, device_id) in enumerate(rows):
        labels.append(f"{record.name}\n{device_id[:12]}")

        # Free background
        ax.barh(y, GPU_SLOTS, left=0, color='#EEEEEE', edgecolor='black', linewidth=1)

        for allocation in record.allocations.values():
            if allocation.device_id != device_id:
                continue
            color = STATUS_COLORS.get(allocation.status, 'white')
            ax.barh(y, allocation.size, left=allocation.start, color=color,
                    edgecolor='black', linewidth=1)
            ax.text(allocation.start + allocation.size / 2, y,
                    f"{allocation.workload_name}\n{allocation.profile}",
                    ha='center', va='center', fontsize=8, fontweight='bold')

        for prepared in record.prepared.values():
            if prepared.parent_device_id != device_id:
                continue
            ax.barh(y, prepared.size, left=prepared.start, color='none',
                    edgecolor='black', hatch='//', linewidth=0)

    ax.set_yticks(range(len(rows)))
    ax.set_yticklabels(labels, fontsize=9)
    ax.set_xlim(0, GPU_SLOTS)
    ax.set_xlabel("Memory slice index", fontsize=12)
    ax.grid(True, alpha=0.3, axis='x')

    legend = [mpatches.Patch(color=c, label=s.value) for s, c in STATUS_COLORS.items()]
    legend.append(mpatches.Patch(facecolor='white', edgecolor='black', hatch='//', label='prepared'))
    ax.legend(handles=legend, loc='upper right', fontsize=8)

    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches='tight')
    plt.close()
    print(f"Saved: {output_path}")
    return output_path


def main():
    parser = argparse.ArgumentParser(description='KETI MIG slice inventory visualization')
    parser.add_argument('--url', default=DEFAULT_API_URL, help='Controller API URL')
    parser.add_argument('--output', default='slice_inventory.png', help='Output PNG path')
    args = parser.parse_args()

    print("=" * 60)
    print("KETI MIG Slice Inventory Visualization")
    print("=" * 60)

    print(f"\n[1] Fetching inventory from {args.url}...")
    try:
        records = get_inventory(args.url)
    except requests.exceptions.RequestException as e:
        print(f"    Failed to get inventory: {e}")
        sys.exit(1)

    for record in records:
        print(f"    {record.name}: {len(record.allocations)} allocations, "
              f"{len(record.prepared)} prepared slices")

    print("\n[2] Generating visualization...")
    visualize_inventory(records, args.output)


if __name__ == "__main__":
    main()
