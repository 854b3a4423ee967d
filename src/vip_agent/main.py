"""Entry point for the standalone vip agent."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from threading import Event

from vip_events import HandlerRegistry
from vip_events.handlers import build_reconciler_adapter
from vip_operator.allocator import VIPAllocator
from vip_operator.appliance import ApplianceClient
from vip_operator.exceptions import OperatorError
from vip_operator.pool import FilePoolSource, PoolSource, StaticPoolSource, load_pool
from vip_operator.publisher import LocalDirectoryPublisher, Publisher, SSHPublisher
from vip_operator.reconciler import ServiceReconciler
from vip_operator.store import AllocationStore, FileRecordStore
from vip_operator.vrid import VRIDAllocator

from .catalog import ServiceCatalog
from .config import AgentConfig, ApplianceConfig, PoolConfig, load_config
from .watchers import FileServiceWatcher
from .workqueue import WorkQueue

LOG = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )
    # asyncssh logs every channel at INFO.
    logging.getLogger("asyncssh").setLevel(logging.WARNING)


def build_publisher(config: ApplianceConfig) -> Publisher:
    if config.type == "local":
        return LocalDirectoryPublisher(config.root, execute=config.execute)
    return SSHPublisher(
        config.host,
        config.user,
        port=config.port,
        client_keys=[str(config.private_key)] if config.private_key else None,
        known_hosts=str(config.known_hosts) if config.known_hosts else None,
        timeout=config.timeout,
    )


def build_pool_source(config: PoolConfig) -> PoolSource:
    if config.path is not None:
        return FilePoolSource(config.path)
    return StaticPoolSource({config.key: config.text or ""})


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the vip agent")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("/etc/vip-operator/agent.yaml"),
        help="Path to the agent configuration file",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    config: AgentConfig = load_config(args.config)
    operator = config.operator

    records = FileRecordStore(config.state_dir)
    pool_source = build_pool_source(config.pool)
    publisher = build_publisher(config.appliance)

    try:
        store = AllocationStore(records)
        store.load()
        allocator = VIPAllocator(store, load_pool(pool_source, config.pool.key))

        vrids = VRIDAllocator(
            records, publisher, max_vrid=operator.max_vrid, lock=store.lock
        )
        pair = vrids.bootstrap(operator.cluster_name)
    except OperatorError:
        LOG.exception("failed to initialise allocation state")
        return 1
    LOG.info("Cluster %s uses VRIDs %s", operator.cluster_name, pair)

    catalog = ServiceCatalog(status_path=config.status_file)
    reconciler = ServiceReconciler(
        operator,
        allocator,
        vrids,
        ApplianceClient(publisher, operator),
        catalog,
        catalog,
    )

    stop_event = Event()
    queue = WorkQueue(reconciler.reconcile, workers=config.workers, stop_event=stop_event)

    registry = HandlerRegistry()
    registry.register("vip", build_reconciler_adapter(reconciler, queue=queue))

    watchers = []
    for watcher_cfg in config.watchers:
        if watcher_cfg.type == "file":
            watcher = FileServiceWatcher(
                registry=registry,
                catalog=catalog,
                path=watcher_cfg.path,
                interval=watcher_cfg.interval,
                stop_event=stop_event,
            )
        else:
            raise ValueError(f"unsupported watcher type '{watcher_cfg.type}'")
        # Perform an initial poll so we react immediately
        try:
            watcher.poll()
        except Exception:  # pragma: no cover - logged inside watcher
            LOG.exception("initial poll failed for watcher %s", watcher_cfg.path)
        watchers.append(watcher)

    if not watchers:
        LOG.warning("no watchers configured; agent will idle")

    # Allocations whose service vanished while we were down get released.
    for allocation in store.allocations():
        queue.add(allocation.owner)

    queue.start()
    for watcher in watchers:
        watcher.start()

    def _shutdown(signum, frame):  # pragma: no cover - signal handler
        LOG.info("received signal %s, shutting down", signum)
        stop_event.set()

    def _reload_pool(signum, frame):  # pragma: no cover - signal handler
        try:
            allocator.reload_pool(load_pool(pool_source, config.pool.key))
        except OperatorError:
            LOG.exception("pool reload failed; keeping the current pool")
            return
        for watcher in watchers:
            watcher.resync()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGHUP, _reload_pool)

    try:
        while not stop_event.is_set():
            stop_event.wait(1.0)
    except KeyboardInterrupt:  # pragma: no cover - fallback if signal not set
        stop_event.set()

    queue.stop()
    for watcher in watchers:
        watcher.join()
    queue.join(timeout=5.0)

    LOG.info("vip agent stopped")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
