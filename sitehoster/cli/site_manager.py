#!/usr/bin/env python3
# Copyright 2025 ApeCloud, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
CLI for running and inspecting the site-hoster controller

Usage:
    python -m sitehoster.cli.site_manager --help
    python -m sitehoster.cli.site_manager run --leader-elect --scheduler celery
    python -m sitehoster.cli.site_manager reconcile --namespace default --name blog
    python -m sitehoster.cli.site_manager render --namespace default --name blog
    python -m sitehoster.cli.site_manager status --namespace default
"""

import argparse
import json
import logging
import sys
import threading
from typing import Optional

import yaml

from sitehoster.config import parse_bind_address, settings, setup_logging
from sitehoster.site.children import ChildImages
from sitehoster.site.reconciler import SiteReconciler
from sitehoster.store.accessors import SiteClient, SiteConfigClient
from sitehoster.store.base import ResourceStore

logger = logging.getLogger(__name__)


def build_reconciler(store: ResourceStore, telemetry=None) -> SiteReconciler:
    return SiteReconciler(
        store,
        setting_name=settings.setting_name,
        telemetry=telemetry,
        images=ChildImages(builder_image=settings.builder_image, proxy_image=settings.proxy_image),
        requeue_after=settings.requeue_after,
    )


def reconcile_site(store: ResourceStore, namespace: str, name: str) -> int:
    """Run a single pass for one Site"""
    result = build_reconciler(store).reconcile(namespace, name)
    if result.error is not None:
        logger.error(f"Reconcile of site {namespace}/{name} failed: {result.error}")
        return 1
    logger.info(f"Site {namespace}/{name} reconciled")
    return 0


def render_site(store: ResourceStore, namespace: str, name: str) -> str:
    """Desired children of a Site as a multi-document YAML stream"""
    site = SiteClient(store).get(name, namespace)
    site_config = SiteConfigClient(store).get(settings.setting_name, namespace)
    manifests = [manifest for _, manifest in build_reconciler(store).desired_children(site, site_config)]
    return yaml.safe_dump_all(manifests, sort_keys=False)


def site_status(store: ResourceStore, namespace: Optional[str] = None) -> str:
    sites = SiteClient(store).list(namespace=namespace, all_namespaces=namespace is None)
    rows = []
    for site in sites:
        status = site.status
        rows.append(
            {
                "namespace": site.namespace,
                "name": site.name,
                "type": site.spec.type.value,
                "url": site.spec.url,
                "lastbuild": status.last_build if status else None,
                "commit": status.commit if status else None,
                "status": status.status.value if status and status.status else None,
            }
        )
    return json.dumps(rows, indent=2, ensure_ascii=False)


def run_controller(args) -> int:
    """Run the watch loop with metrics and health probe servers until terminated"""
    import uvicorn
    from prometheus_client import start_http_server

    from sitehoster.app import create_app
    from sitehoster.concurrent_control import create_lock
    from sitehoster.controller.watcher import SiteWatcher
    from sitehoster.site.telemetry import PrometheusTelemetry
    from sitehoster.store.kubernetes import KubernetesResourceStore
    from sitehoster.tasks.scheduler import create_reconcile_scheduler

    store = KubernetesResourceStore()
    if args.scheduler == "local":
        scheduler = create_reconcile_scheduler(
            "local",
            build_reconciler(store, PrometheusTelemetry()),
            lock_retry_countdown=settings.lock_retry_countdown,
            fatal_requeue_after=settings.fatal_requeue_after,
        )
    else:
        scheduler = create_reconcile_scheduler("celery")

    leader_lock = None
    if settings.leader_elect:
        leader_lock = create_lock(
            "redis",
            key=settings.leader_election_id,
            redis_url=settings.redis_url,
            expire_time=settings.lock_expire_time,
            retry_times=0,
        )

    watcher = SiteWatcher(
        store,
        scheduler,
        setting_name=settings.setting_name,
        namespace=settings.namespace,
        leader_lock=leader_lock,
        lease_renew_interval=settings.lock_expire_time / 3,
    )

    metrics_host, metrics_port = parse_bind_address(settings.metrics_bind_address)
    start_http_server(metrics_port, addr=metrics_host)
    logger.info(f"Serving metrics on {settings.metrics_bind_address}")

    probe_host, probe_port = parse_bind_address(settings.health_probe_bind_address)
    server = uvicorn.Server(
        uvicorn.Config(
            create_app(ready=watcher.ready.is_set),
            host=probe_host,
            port=probe_port,
            log_level="debug" if settings.debug else "warning",
        )
    )

    def watch():
        try:
            watcher.run()
        except Exception as e:
            logger.error(f"Watcher failed: {e}", exc_info=True)
            watcher.lost_leadership = True
        finally:
            server.should_exit = True

    thread = threading.Thread(target=watch, name="site-watcher", daemon=True)
    thread.start()
    logger.info("Starting site-hoster controller")
    try:
        server.run()
    finally:
        watcher.stop()
        scheduler.shutdown()
    return 1 if watcher.lost_leadership else 0


def main(argv=None):
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--debug", action="store_true", help="Enable debug logging")
    common.add_argument("--setting-name", default=None, help="Name of the SiteConfig to use (default: settings)")

    parser = argparse.ArgumentParser(description="Site Hoster controller CLI")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Run command
    run_parser = subparsers.add_parser("run", parents=[common], help="Run the controller")
    run_parser.add_argument("--metrics-bind-address", default=None, help="Address the metrics endpoint binds to")
    run_parser.add_argument(
        "--health-probe-bind-address", default=None, help="Address the probe endpoint binds to"
    )
    run_parser.add_argument(
        "--leader-elect", action="store_true", help="Ensure there is only one active controller"
    )
    run_parser.add_argument("--namespace", default=None, help="Only watch this namespace")
    run_parser.add_argument("--scheduler", choices=["local", "celery"], default="local", help="Reconcile dispatcher")

    # Reconcile command
    reconcile_parser = subparsers.add_parser("reconcile", parents=[common], help="Reconcile one site now")
    reconcile_parser.add_argument("--namespace", required=True, help="Site namespace")
    reconcile_parser.add_argument("--name", required=True, help="Site name")

    # Render command
    render_parser = subparsers.add_parser(
        "render", parents=[common], help="Print the desired children of a site as YAML"
    )
    render_parser.add_argument("--namespace", required=True, help="Site namespace")
    render_parser.add_argument("--name", required=True, help="Site name")

    # Status command
    status_parser = subparsers.add_parser("status", parents=[common], help="Print sites with their build status")
    status_parser.add_argument("--namespace", default=None, help="Only list this namespace")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    settings.debug = settings.debug or args.debug
    setup_logging(settings.debug)
    if args.setting_name:
        settings.setting_name = args.setting_name

    try:
        if args.command == "run":
            if args.metrics_bind_address:
                settings.metrics_bind_address = args.metrics_bind_address
            if args.health_probe_bind_address:
                settings.health_probe_bind_address = args.health_probe_bind_address
            if args.namespace:
                settings.namespace = args.namespace
            settings.leader_elect = settings.leader_elect or args.leader_elect
            return run_controller(args)

        from sitehoster.store.kubernetes import KubernetesResourceStore

        store = KubernetesResourceStore()
        if args.command == "reconcile":
            return reconcile_site(store, args.namespace, args.name)
        elif args.command == "render":
            print(render_site(store, args.namespace, args.name), end="")
        elif args.command == "status":
            print(site_status(store, args.namespace))
        else:
            print(f"Unknown command: {args.command}")
            return 1
    except Exception as e:
        logger.error(f"Command failed: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
