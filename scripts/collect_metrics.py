#!/usr/bin/env python3
"""
Clock Metrics Collection Script

Collects /clock from every node of a running cluster and summarizes how far
the clocks are apart and how they drift.

Usage:
    python collect_metrics.py --nodes 8000,8001,8002 --output clock_report.json
"""

import asyncio
import aiohttp
import argparse
import json
from datetime import datetime
from typing import List, Dict, Any


class MetricsCollector:
    def __init__(self, nodes: List[str], host: str = "127.0.0.1"):
        self.nodes = nodes
        self.host = host
        self.metrics = {
            "collection_time": None,
            "nodes": {},
            "clock_summary": {},
        }

    async def collect_clock_status(self, session: aiohttp.ClientSession, node: str) -> Dict[str, Any]:
        """Collect /clock endpoint data from a node"""
        url = f"http://{self.host}:{node}/clock"
        try:
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=5)) as resp:
                if resp.status == 200:
                    return await resp.json()
                else:
                    return {"error": f"HTTP {resp.status}"}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return {"error": str(e)}

    async def collect_all_metrics(self):
        """Collect clock status from all nodes in parallel"""
        print("Collecting clock status from cluster...")
        self.metrics["collection_time"] = datetime.now().isoformat()

        async with aiohttp.ClientSession() as session:
            results = await asyncio.gather(
                *(self.collect_clock_status(session, node) for node in self.nodes)
            )
        self.metrics["nodes"] = dict(zip(self.nodes, results))

        self._generate_summary()
        print("Metrics collection complete\n")

    def _generate_summary(self):
        reachable = {node: data for node, data in self.metrics["nodes"].items() if "error" not in data}

        master_time = None
        for data in reachable.values():
            if data.get("role") == "master":
                master_time = data["clock"]["time_ms"]
                break

        offsets = {}
        if master_time is not None:
            for node, data in reachable.items():
                offsets[node] = data["clock"]["time_ms"] - master_time

        drift_rates = [data["clock"]["drift_rate"] for data in reachable.values()]
        adjustments = [data["clock"].get("adjustment_count", 0) for data in reachable.values()]

        self.metrics["clock_summary"] = {
            "total_nodes": len(self.nodes),
            "reachable_nodes": len(reachable),
            "has_master": master_time is not None,
            "offsets_from_master_ms": offsets,
            "max_abs_offset_ms": max((abs(o) for o in offsets.values()), default=0),
            "avg_drift_rate": sum(drift_rates) / len(drift_rates) if drift_rates else 0,
            "min_drift_rate": min(drift_rates, default=0),
            "max_drift_rate": max(drift_rates, default=0),
            "total_adjustments": sum(adjustments),
        }

    def print_report(self):
        """Print human-readable metrics report"""
        print("=" * 70)
        print("CLOCK SYNCHRONIZATION REPORT")
        print("=" * 70)

        print(f"\nCollection Time: {self.metrics['collection_time']}")

        summary = self.metrics["clock_summary"]
        print(f"\nCluster Summary:")
        print(f"   Total Nodes: {summary['total_nodes']}")
        print(f"   Reachable Nodes: {summary['reachable_nodes']}")
        print(f"   Master Present: {'Yes' if summary['has_master'] else 'No'}")
        print(f"   Max Offset From Master: {summary['max_abs_offset_ms']} ms")
        print(f"   Drift Rate Range: {summary['min_drift_rate']:.4f} - {summary['max_drift_rate']:.4f}")
        print(f"   Average Drift Rate: {summary['avg_drift_rate']:.4f}")
        print(f"   Total Adjustments: {summary['total_adjustments']}")

        print(f"\nPer-Node Details:")
        for node, data in self.metrics["nodes"].items():
            print(f"\n   Node {node}:")
            if "error" in data:
                print(f"      Error: {data['error']}")
                continue
            clock = data.get("clock", {})
            print(f"      Name: {data.get('name', 'N/A')} ({data.get('role', 'N/A')})")
            print(f"      Time: {clock.get('iso_time', 'N/A')}")
            print(f"      Drift Rate: {clock.get('drift_rate', 0):.4f}")
            print(f"      Last Adjustment: {clock.get('last_adjustment_ms', 0)} ms")
            print(f"      Known Peers: {data.get('peer_count', 0)}")
            offset = summary["offsets_from_master_ms"].get(node)
            if offset is not None:
                print(f"      Offset From Master: {offset} ms")

        print("\n" + "=" * 70)

    def save_results(self, filename: str):
        """Save metrics to JSON file"""
        with open(filename, 'w') as f:
            json.dump(self.metrics, f, indent=2)
        print(f"Metrics saved to {filename}")


def main():
    parser = argparse.ArgumentParser(description="Collect clock metrics from a clocksync cluster")
    parser.add_argument("--nodes", type=str, default="8000,8001,8002",
                        help="Comma-separated list of operator API ports")
    parser.add_argument("--host", type=str, default="127.0.0.1")
    parser.add_argument("--output", type=str, default="clock_report.json",
                        help="Output JSON file for metrics")
    parser.add_argument("--quiet", action="store_true",
                        help="Suppress console output")

    args = parser.parse_args()

    nodes = [n.strip() for n in args.nodes.split(",") if n.strip()]

    collector = MetricsCollector(nodes, host=args.host)
    asyncio.run(collector.collect_all_metrics())

    if not args.quiet:
        collector.print_report()

    collector.save_results(args.output)
    return 0


if __name__ == "__main__":
    exit(main())
