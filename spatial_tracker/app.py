"""
Offline replay of recorded detection events.

Usage:
    python -m spatial_tracker.app --config configs/default.yaml \\
        --topology topology.json --events events.jsonl --journeys out/journeys.jsonl

Events are replayed on a virtual clock, so transit windows and timeouts
behave exactly as they would live.
"""

import argparse
import logging
import numbers

from rich import print
from rich.table import Table

from .config import load_config
from .correlation.timers import VirtualScheduler
from .io.sink import JourneyWriter
from .io.streams import load_json, read_events
from .service import SpatialAwarenessService
from .topology.repository import JsonFileTopologyStore, TopologyRepository

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Replay detection events through the spatial tracker")
    p.add_argument('--config', type=str, default=None)
    p.add_argument('--topology', type=str, required=True)
    p.add_argument('--events', type=str, required=True)
    p.add_argument('--journeys', type=str, default=None)
    p.add_argument('--save-topology', type=str, default=None,
                   help="write the (learned) topology here after replay")
    p.add_argument('--log-level', type=str, default='INFO')
    return p.parse_args(argv)


def replay(service: SpatialAwarenessService, scheduler: VirtualScheduler, events) -> int:
    """Feed events in order, advancing the virtual clock to each timestamp."""
    count = 0
    last_ts = None
    for raw in events:
        ts = raw.get('timestamp') if isinstance(raw, dict) else None
        if isinstance(ts, numbers.Number):
            if last_ts is not None and ts < last_ts:
                logger.warning("Out-of-order event at %s (previous %s)", ts, last_ts)
            else:
                scheduler.advance_to(ts)
                last_ts = ts
        service.handle_detection_event(raw)
        count += 1

    # Let open transits run out
    if last_ts is not None:
        scheduler.advance_to(last_ts + service.config.tracking.lost_timeout_ms + 1)
    service.runner.join()
    return count


def journeys_table(service: SpatialAwarenessService) -> Table:
    table = Table(title="Journeys")
    table.add_column("Global ID")
    table.add_column("Class")
    table.add_column("State")
    table.add_column("Path")
    table.add_column("Handoffs", justify="right")
    topology = service.topology
    for obj in sorted(service.registry.all(), key=lambda o: o.first_seen):
        names = []
        for cam_id in obj.cameras_visited:
            cam = topology.get_camera(cam_id)
            names.append(cam.name if cam else cam_id)
        table.add_row(obj.global_id, obj.label or obj.class_name, obj.state.value,
                      " → ".join(names), str(len(obj.journey)))
    return table


def suggestions_table(service: SpatialAwarenessService) -> Table:
    table = Table(title="Connection suggestions")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Typical (s)", justify="right")
    table.add_column("Observations", justify="right")
    table.add_column("Confidence", justify="right")
    for s in service.get_connection_suggestions():
        table.add_row(s.from_camera_name, s.to_camera_name,
                      f"{s.transit_time.typical / 1000:.1f}", str(s.observation_count),
                      f"{s.confidence:.2f}")
    return table


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s [%(levelname)s] %(message)s",
    )

    cfg = load_config(args.config)
    repository = TopologyRepository()
    repository.replace(load_json(args.topology))
    if args.save_topology:
        repository.store = JsonFileTopologyStore(args.save_topology)

    scheduler = VirtualScheduler()
    service = SpatialAwarenessService(cfg, repository=repository, scheduler=scheduler)

    print('[bold green]Replaying detection events[/bold green]')
    service.start()
    try:
        count = replay(service, scheduler, read_events(args.events))
    finally:
        service.close()

    print(journeys_table(service))
    print(suggestions_table(service))
    stats = service.get_stats()
    print(f"[bold]{count}[/bold] events, "
          f"[bold]{stats['engine']['cross_camera_matches']}[/bold] cross-camera matches, "
          f"[bold]{stats['alerts']}[/bold] alerts")

    if args.journeys:
        with JourneyWriter(args.journeys) as writer:
            for obj in service.registry.all():
                writer.write(obj.to_dict())

    if args.save_topology:
        repository.store.save(repository.topology.to_blob())
    print('[bold green]Done.[/bold green]')


if __name__ == '__main__':
    main()
