"""Leasekeeper CLI: create, inspect, extend and reconcile leased instances.

Usage examples::

    leasekeeper create --public-key ~/.ssh/id_rsa.pub --duration 2h --image-id ami-0abc
    leasekeeper extend --instance-id i-0abc --duration 30m
    leasekeeper service --log-level debug
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path

from leasekeeper.base import ComputeBlueprint, InstanceRecord, InstanceRequest, StoreBlueprint
from leasekeeper.base.config import DefaultsConfig, ReconcilerConfig, StoreConfig
from leasekeeper.base.exceptions import LeasekeeperError, RecordNotFoundError, StoreError
from leasekeeper.base.logger import LeaseLogger
from leasekeeper.base.record import utcnow
from leasekeeper.base.supported import STOPPED, STOPPING
from leasekeeper.durations import (
    format_duration,
    parse_duration,
    validate_availability_zone,
    validate_instance_type,
)
from leasekeeper.reconcile import Reconciler, apply_sync, detect_drift
from leasekeeper.storage import FileStore


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the ``leasekeeper`` CLI.

    Returns:
        Configured :class:`~argparse.ArgumentParser`.
    """
    defaults = DefaultsConfig()
    parser = argparse.ArgumentParser(
        prog="leasekeeper",
        description="Time-boxed EC2 instances that stop when their lease runs out",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Shortcut for --log-level debug")
    parser.add_argument("--store", type=str, default=None, help="Path to the JSON record store")
    parser.add_argument("--region", "-r", type=str, default=None, help="AWS region")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("create", help="Launch a new leased instance")
    p.add_argument("--public-key", "-k", required=True, help="Path to SSH public key file")
    p.add_argument("--instance-type", "-t", default=defaults.instance_type, help="EC2 instance type")
    p.add_argument("--duration", "-d", default=defaults.duration, help="Lease length (e.g. 1h, 30m, 2h30m)")
    p.add_argument("--availability-zone", "-z", default=defaults.availability_zone, help="Availability zone")
    p.add_argument("--image-id", default=defaults.image_id, help="AMI to launch")
    p.add_argument("--subnet-id", default=None, help="Subnet to launch into")
    p.add_argument(
        "--security-group-id",
        dest="security_group_ids",
        action="append",
        default=[],
        help="Security group to attach (repeatable)",
    )
    p.set_defaults(handler=_cmd_create)

    p = sub.add_parser("status", help="Show live provider status")
    p.add_argument("--instance-id", "-i", required=True)
    p.set_defaults(handler=_cmd_status)

    p = sub.add_parser("list", help="List instances, latest expiry first")
    p.add_argument(
        "--live",
        action="store_true",
        help="Discover managed instances from the provider instead of the store",
    )
    p.set_defaults(handler=_cmd_list)

    p = sub.add_parser("show", help="Show connection details from the store")
    p.add_argument("--instance-id", "-i", default=None, help="Instance to show (default: all)")
    p.set_defaults(handler=_cmd_show)

    p = sub.add_parser("sync", help="Copy live state and addresses into the store")
    p.add_argument("--instance-id", "-i", default=None, help="Instance to sync (default: all)")
    p.set_defaults(handler=_cmd_sync)

    p = sub.add_parser("extend", help="Extend an instance's lease")
    p.add_argument("--instance-id", "-i", required=True)
    p.add_argument("--duration", "-d", required=True, help="Additional time (e.g. 1h, 30m)")
    p.set_defaults(handler=_cmd_extend)

    p = sub.add_parser("stop", help="Stop an instance now")
    p.add_argument("--instance-id", "-i", required=True)
    p.set_defaults(handler=_cmd_stop)

    p = sub.add_parser("terminate", help="Terminate an instance and forget it")
    p.add_argument("--instance-id", "-i", required=True)
    p.set_defaults(handler=_cmd_terminate)

    p = sub.add_parser("reconcile", help="Run a single reconciliation pass")
    p.set_defaults(handler=_cmd_reconcile)

    p = sub.add_parser("service", help="Reconcile continuously until interrupted")
    p.add_argument("--interval", type=float, default=None, help="Seconds between passes")
    p.add_argument("--workers", type=int, default=None, help="Records reconciled in parallel")
    p.set_defaults(handler=_cmd_service)

    return parser


# ── wiring ────────────────────────────────────────────────────────────


def _store(ns: argparse.Namespace) -> StoreBlueprint:
    return FileStore(StoreConfig(path=ns.store).path)


def _compute(ns: argparse.Namespace) -> ComputeBlueprint:
    from leasekeeper.factory import universal_factory

    config = {"region_name": ns.region} if ns.region else {}
    return universal_factory("aws", config, username=DefaultsConfig().username)


def _print_record(record: InstanceRecord) -> None:
    now = utcnow()
    print(f"Instance ID: {record.id}")
    print(f"  Type: {record.instance_type}")
    print(f"  State: {record.state}")
    print(f"  Launch Time: {record.launch_time.isoformat()}")
    print(f"  Duration: {format_duration(record.lease_duration)}")
    print(f"  Expires At: {record.expires_at.isoformat()}")
    if record.availability_zone:
        print(f"  Availability Zone: {record.availability_zone}")
    if record.public_ip:
        print(f"  Public IP: {record.public_ip}")
    if record.private_ip:
        print(f"  Private IP: {record.private_ip}")
    if record.is_expired(now):
        print("  Status: EXPIRED")
    else:
        print(f"  Time Remaining: {format_duration(record.remaining(now))}")


# ── commands ──────────────────────────────────────────────────────────


def _cmd_create(ns: argparse.Namespace, log: LeaseLogger) -> None:
    key_path = Path(ns.public_key).expanduser()
    if not key_path.is_file():
        raise ValueError(f"public key file does not exist: {ns.public_key}")
    validate_instance_type(ns.instance_type)
    validate_availability_zone(ns.availability_zone)
    duration = parse_duration(ns.duration)
    if not ns.image_id:
        raise ValueError("--image-id is required (or set LEASEKEEPER_IMAGE_ID)")

    request = InstanceRequest(
        instance_type=ns.instance_type,
        lease_duration=duration,
        image_id=ns.image_id,
        public_key_path=str(key_path),
        availability_zone=ns.availability_zone,
        subnet_id=ns.subnet_id,
        security_group_ids=ns.security_group_ids,
    )
    compute = _compute(ns)
    compute.validate_credentials()

    print("Creating instance:")
    print(f"  Instance Type: {request.instance_type}")
    print(f"  Duration: {format_duration(duration)}")
    print(f"  Availability Zone: {request.availability_zone}")
    record = compute.create_instance(request)

    try:
        _store(ns).save(record)
    except StoreError as e:
        log.warning("Instance created but not saved", instance_id=record.id, error=e)

    print("\nInstance created successfully!")
    print(f"  Instance ID: {record.id}")
    print(f"  State: {record.state}")
    print(f"  Expires at: {record.expires_at.isoformat()}")
    print(f"\nUse 'leasekeeper status --instance-id {record.id}' to check status")


def _cmd_status(ns: argparse.Namespace, log: LeaseLogger) -> None:
    status = _compute(ns).get_instance_status(ns.instance_id)
    print("Instance Status:")
    print(f"  ID: {status.id}")
    print(f"  State: {status.state}")
    print(f"  Ready: {str(status.ready).lower()}")
    if status.public_ip:
        print(f"  Public IP: {status.public_ip}")
        print(f"  SSH Command: ssh {status.username}@{status.public_ip}")
    if status.private_ip:
        print(f"  Private IP: {status.private_ip}")


def _cmd_list(ns: argparse.Namespace, log: LeaseLogger) -> None:
    source = _compute(ns).list_instances() if ns.live else _store(ns).list_all()
    records = sorted(source, key=lambda r: r.expires_at, reverse=True)
    if not records:
        print("No managed instances found.")
        return
    print("Managed Instances:\n")
    for record in records:
        _print_record(record)
        print()


def _cmd_show(ns: argparse.Namespace, log: LeaseLogger) -> None:
    store = _store(ns)
    records = [store.get(ns.instance_id)] if ns.instance_id else store.list_all()
    if not records:
        print("No instances found in storage.")
        print("Create one first: leasekeeper create --public-key ~/.ssh/id_rsa.pub")
        return
    for record in records:
        _print_record(record)
        print(f"  Key Pair: {record.key_name or '-'}")
        print(f"  Username: {record.username or '-'}")
        if record.connection_string:
            print(f"  Connection: {record.connection_string}")
        print(f"  Ready: {str(record.is_ready).lower()}")
        if record.ssh_command:
            print(f"  SSH Command: {record.ssh_command}")
        elif record.needs_ip_update:
            print("  Public IP not assigned yet; run 'leasekeeper sync'")
        print()


def _cmd_sync(ns: argparse.Namespace, log: LeaseLogger) -> None:
    compute, store = _compute(ns), _store(ns)
    ids = [ns.instance_id] if ns.instance_id else [r.id for r in store.list_all()]
    failed = 0
    for instance_id in ids:
        try:
            status = compute.get_instance_status(instance_id)
            record = store.update(instance_id, lambda r: apply_sync(r, detect_drift(r, status)))
        except LeasekeeperError as e:
            if ns.instance_id:
                raise
            failed += 1
            log.warning("Failed to sync instance", event="sync_failed", instance_id=instance_id, error=e)
            continue
        print(f"Instance {instance_id} synced: PublicIP={record.public_ip or '-'}, State={record.state}")
    print(f"Sync completed ({len(ids) - failed}/{len(ids)} instance(s)).")


def _cmd_extend(ns: argparse.Namespace, log: LeaseLogger) -> None:
    duration = parse_duration(ns.duration)
    store = _store(ns)
    before = store.get(ns.instance_id)
    record = store.update(ns.instance_id, lambda r: r.extended(duration))

    print("Instance lease extended successfully!")
    print(f"  Instance ID: {record.id}")
    print(f"  Previous expiry: {before.expires_at.isoformat()}")
    print(f"  New expiry: {record.expires_at.isoformat()}")
    print(f"  Extended by: {format_duration(duration)}")
    if record.state in (STOPPED, STOPPING) and not record.is_expired():
        print("\nNote: the instance is stopped; the running service will start it again.")
        print("Start the service with: leasekeeper service")


def _cmd_stop(ns: argparse.Namespace, log: LeaseLogger) -> None:
    _compute(ns).stop_instance(ns.instance_id)
    try:
        record = _store(ns).update(
            ns.instance_id, lambda r: r.model_copy(update={"state": STOPPING})
        )
    except RecordNotFoundError:
        print(f"Instance {ns.instance_id} is stopping (not tracked locally).")
        return
    print(f"Instance {ns.instance_id} is stopping.")
    if not record.is_expired():
        print(
            f"Note: its lease runs for another {format_duration(record.remaining())}; "
            "a running service will start it again."
        )


def _cmd_terminate(ns: argparse.Namespace, log: LeaseLogger) -> None:
    print(f"Terminating instance {ns.instance_id}...")
    _compute(ns).terminate_instance(ns.instance_id)
    _store(ns).delete(ns.instance_id)
    print(f"Instance {ns.instance_id} has been terminated and removed from storage.")


def _cmd_reconcile(ns: argparse.Namespace, log: LeaseLogger) -> None:
    report = Reconciler(_compute(ns), _store(ns), logger=log).run_once()
    print(
        f"Reconciled {report.records} instance(s): {report.stopped} stopped, "
        f"{report.started} started, {report.synced} synced, "
        f"{report.skipped} skipped, {report.errors} error(s)."
    )


def _cmd_service(ns: argparse.Namespace, log: LeaseLogger) -> None:
    config = ReconcilerConfig(interval=ns.interval, max_workers=ns.workers)
    compute = _compute(ns)
    compute.validate_credentials()
    reconciler = Reconciler.from_config(compute, _store(ns), config, logger=log)

    stop_requested = threading.Event()

    def _request_stop(signum: int, frame: object) -> None:
        stop_requested.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    reconciler.start()
    print(f"Leasekeeper service started (every {config.interval:g}s). Press Ctrl+C to stop.")
    stop_requested.wait()
    reconciler.stop()
    print("Service stopped.")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.

    Parses arguments, configures logging and runs the chosen command.
    Failures are printed to stderr with exit status 1.

    Args:
        argv: Optional argument list (defaults to ``sys.argv``).
    """
    parser = _build_parser()
    ns = parser.parse_args(argv)

    log = LeaseLogger("leasekeeper")
    log.set_level("debug" if ns.verbose else ns.log_level)

    try:
        ns.handler(ns, log)
    except (LeasekeeperError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
