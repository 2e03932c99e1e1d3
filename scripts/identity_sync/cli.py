"""CLI entry point: reconcile, run, variants."""

from __future__ import annotations

import argparse
import logging
import sys

from scripts.identity_sync.config import load_config
from scripts.identity_sync.controller import ConvergenceController
from scripts.identity_sync.index import WorkloadIndex
from scripts.identity_sync.logging_config import configure_logging
from scripts.identity_sync.models import ObjectKey
from scripts.identity_sync.schemas import GRANT_VARIANTS, IDENTITY_VARIANTS
from scripts.identity_sync.store import KubeStore

logger = logging.getLogger("identity_sync.cli")


def cmd_reconcile(args: argparse.Namespace) -> None:
    """Run a single convergence cycle for one identity."""
    config = load_config()
    configure_logging(config.log_level)
    store = KubeStore.from_config(config.kube)

    try:
        index = WorkloadIndex()
        index.rebuild(store)
        controller = ConvergenceController(store, index, config.controller)
        key = ObjectKey(args.namespace or "", args.name)
        result = controller.reconcile(key)

        requeue = f"{result.requeue_after}s" if result.requeue_after is not None else "none"
        print(f"identity:            {key}")
        print(f"outcome:             {result.outcome.value}")
        print(f"bindings changed:    {result.bindings_changed}")
        print(f"grants changed:      {'yes' if result.grants_changed else 'no'}")
        print(f"workloads restarted: {result.workloads_restarted}")
        print(f"next check:          {requeue}")
        if result.error is not None:
            print(f"error:               {result.error}")
            sys.exit(1)
    finally:
        store.close()


def cmd_run(args: argparse.Namespace) -> None:
    """Start watches and the scheduling loop."""
    from scripts.identity_sync.scheduler import Dispatcher
    from scripts.identity_sync.watcher import Watcher

    config = load_config()
    configure_logging(config.log_level)
    store = KubeStore.from_config(config.kube)

    watcher = None
    try:
        index = WorkloadIndex()
        index.rebuild(store)
        controller = ConvergenceController(store, index, config.controller)
        dispatcher = Dispatcher(controller, store, config.scheduler)
        watcher = Watcher(store, dispatcher, index, config.scheduler)
        watcher.start()
        dispatcher.start()
    finally:
        if watcher is not None:
            watcher.stop()
        store.close()


def cmd_variants(args: argparse.Namespace) -> None:
    """Show the schema variants tried for identities and grants."""
    fmt = "{:<10}  {:<40}  {:<9}  {:<24}  {:<10}  {}"
    print(fmt.format("ROLE", "GROUP", "VERSION", "PLURAL", "SCOPE", "WRITE FIELD"))
    print("-" * 110)
    for role, variants in (("identity", IDENTITY_VARIANTS), ("grant", GRANT_VARIANTS)):
        for v in variants:
            print(fmt.format(
                role,
                v.group,
                v.version,
                v.plural,
                "namespaced" if v.namespaced else "cluster",
                v.principal_field if role == "grant" else "-",
            ))


def main() -> None:
    """Main CLI entry point."""
    configure_logging()

    parser = argparse.ArgumentParser(
        prog="identity-sync",
        description="Sync workload identity client and principal ids onto ServiceAccounts and RoleAssignments",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # reconcile command
    rec_parser = subparsers.add_parser("reconcile", help="Run one convergence cycle")
    rec_parser.add_argument("name", help="UserAssignedIdentity name")
    rec_parser.add_argument(
        "--namespace", "-n",
        default="",
        help="Namespace of a namespaced identity (omit for cluster scope)",
    )
    rec_parser.set_defaults(func=cmd_reconcile)

    # run command
    run_parser = subparsers.add_parser("run", help="Start the watch and scheduling loop")
    run_parser.set_defaults(func=cmd_run)

    # variants command
    var_parser = subparsers.add_parser("variants", help="List known schema variants")
    var_parser.set_defaults(func=cmd_variants)

    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
