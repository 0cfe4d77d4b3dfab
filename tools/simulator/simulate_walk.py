#!/usr/bin/env python3
"""GeoPuzzle walk simulator.

Walks a device along a route's pieces in order, streaming interpolated
positions to the server, and prints what was collected.

Usage:
    # Walk the newest route with a persisted device id
    python -m tools.simulator.simulate_walk --server http://localhost:8000

    # A specific route, 5 m steps, noisy GPS, three walkers at once
    python -m tools.simulator.simulate_walk --route <route-id> --step-m 5 --jitter-m 8 --devices 3
"""

from __future__ import annotations

import argparse
import asyncio
import math
import random
import time
import uuid
from dataclasses import dataclass

import httpx

from geopuzzle.core.device import FileDeviceIdentity
from geopuzzle.core.geo import distance_meters
from geopuzzle.core.models import Coordinate

# Approximate: 1 degree latitude ≈ 111,000 m
_M_PER_DEG = 111_000.0


@dataclass
class WalkResult:
    device_id: str
    positions_sent: int = 0
    errors: int = 0
    collected: int = 0
    completed: bool = False


def interpolate_path(points: list[Coordinate], step_m: float) -> list[Coordinate]:
    """Points every ``step_m`` meters along the polyline, endpoints included."""
    if not points:
        return []
    path = [points[0]]
    for a, b in zip(points, points[1:]):
        steps = max(1, math.ceil(distance_meters(a, b) / step_m))
        for i in range(1, steps + 1):
            t = i / steps
            path.append(Coordinate(a.lat + (b.lat - a.lat) * t, a.lng + (b.lng - a.lng) * t))
    return path


def jitter(point: Coordinate, meters: float) -> Coordinate:
    """Simulated GPS noise: a uniform offset within ``meters``."""
    if meters <= 0:
        return point
    angle = random.uniform(0, 2 * math.pi)
    dist = random.uniform(0, meters)
    dlat = dist * math.cos(angle) / _M_PER_DEG
    dlng = dist * math.sin(angle) / (_M_PER_DEG * math.cos(math.radians(point.lat)))
    return Coordinate(point.lat + dlat, point.lng + dlng)


async def pick_route(client: httpx.AsyncClient, server: str, route_id: str | None) -> dict:
    if route_id is None:
        resp = await client.get(f"{server}/api/v1/routes")
        resp.raise_for_status()
        routes = resp.json()["routes"]
        if not routes:
            raise SystemExit("No routes on the server; create one first.")
        route_id = routes[0]["id"]
    resp = await client.get(f"{server}/api/v1/routes/{route_id}")
    resp.raise_for_status()
    return resp.json()


async def walk(
    client: httpx.AsyncClient,
    server: str,
    device_id: str,
    bundle: dict,
    step_m: float,
    jitter_m: float,
    interval: float,
) -> WalkResult:
    result = WalkResult(device_id=device_id)
    base = f"{server}/api/v1/walk/{device_id}"

    resp = await client.post(f"{base}/route", json={"route_id": bundle["route"]["id"]})
    resp.raise_for_status()
    resp = await client.post(f"{base}/start")
    if resp.status_code != 200:
        print(f"  [{device_id[:8]}] start refused: {resp.json().get('message')}")
        result.errors += 1
        return result

    start = Coordinate.from_dict(bundle["route"]["center"])
    waypoints = [start] + [Coordinate(p["lat"], p["lng"]) for p in bundle["pieces"]]
    for point in interpolate_path(waypoints, step_m):
        payload = jitter(point, jitter_m).to_dict()
        payload["accuracy_m"] = round(max(jitter_m, 3.0), 1)
        payload["timestamp_ms"] = int(time.time() * 1000)
        try:
            resp = await client.post(f"{base}/position", json=payload)
        except httpx.RequestError:
            result.errors += 1
            continue
        if resp.status_code != 200:
            result.errors += 1
            continue
        result.positions_sent += 1
        state = resp.json()
        if state["collected_count"] > result.collected:
            print(f"  [{device_id[:8]}] collected {state['collected_count']}/{state['piece_count']}")
            result.collected = state["collected_count"]
        if state["completed"]:
            result.completed = True
            break
        await asyncio.sleep(interval)

    await client.post(f"{base}/stop")
    return result


async def run_simulation(args: argparse.Namespace) -> None:
    async with httpx.AsyncClient(timeout=10.0) as client:
        bundle = await pick_route(client, args.server, args.route)
        if args.devices == 1:
            device_ids = [FileDeviceIdentity(args.device_file).device_id()]
        else:
            device_ids = [str(uuid.uuid4()) for _ in range(args.devices)]

        print(f"Walking route {bundle['route']['name']!r} ({len(bundle['pieces'])} pieces)")
        print(f"  Devices: {len(device_ids)}")
        print(f"  Step: {args.step_m} m, jitter: {args.jitter_m} m")
        print(f"  Server: {args.server}")
        print()

        started = time.monotonic()
        results = await asyncio.gather(*[
            walk(client, args.server, d, bundle, args.step_m, args.jitter_m, args.interval)
            for d in device_ids
        ])
        elapsed = time.monotonic() - started

        print(f"\nSimulation complete in {elapsed:.1f}s")
        for r in results:
            status = "completed" if r.completed else f"{r.collected} collected"
            print(f"  {r.device_id[:8]}: {r.positions_sent} positions, {r.errors} errors, {status}")

        resp = await client.get(f"{args.server}/api/v1/stats")
        if resp.status_code == 200:
            stats = resp.json()
            print("\nServer stats:")
            print(f"  Positions received: {stats['positions_received']}")
            print(f"  Pieces collected: {stats['pieces_collected']}")
            print(f"  Routes completed: {stats['routes_completed']}")


def main():
    parser = argparse.ArgumentParser(description="GeoPuzzle walk simulator")
    parser.add_argument("--server", default="http://localhost:8000", help="Server URL")
    parser.add_argument("--route", default=None, help="Route id (default: newest route)")
    parser.add_argument("--devices", type=int, default=1, help="Number of simulated walkers")
    parser.add_argument("--device-file", default=".geopuzzle/device_id",
                        help="Where a single walker keeps its device id")
    parser.add_argument("--step-m", type=float, default=10.0, help="Distance between positions")
    parser.add_argument("--jitter-m", type=float, default=0.0, help="GPS noise radius in meters")
    parser.add_argument("--interval", type=float, default=0.2, help="Seconds between positions")

    args = parser.parse_args()
    asyncio.run(run_simulation(args))


if __name__ == "__main__":
    main()
