#!/usr/bin/env python3
"""
CLI tool for the Machine Controller
Provides a kubectl-like interface for machines and their provider objects
"""

import json
import os
import time

import click
import requests
import yaml
from tabulate import tabulate

API_BASE_URL = os.getenv("MACHINECTL_API_URL", "http://localhost:8000")


class MachineControllerCLI:
    """CLI client for the Machine Controller API"""

    def __init__(self, base_url: str = API_BASE_URL):
        self.base_url = base_url.rstrip("/")

    def _make_request(self, method: str, endpoint: str, **kwargs):
        """Make HTTP request to the API"""
        url = f"{self.base_url}{endpoint}"
        try:
            response = requests.request(method, url, timeout=30, **kwargs)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            click.echo(f"Error: {e}", err=True)
            if getattr(e, "response", None) is not None:
                try:
                    error_detail = e.response.json()
                    click.echo(f"Detail: {error_detail}", err=True)
                except ValueError:
                    click.echo(f"Response: {e.response.text}", err=True)
            return None

    def apply(self, obj: dict):
        """Create a machine, or create/replace a provider object"""
        if obj.get("kind") == "Machine":
            metadata = obj.get("metadata") or {}
            body = {
                "name": metadata.get("name"),
                "namespace": metadata.get("namespace") or "default",
                "spec": obj.get("spec") or {},
                "finalizers": metadata.get("finalizers") or [],
            }
            return self._make_request("POST", "/api/v1/machines", json=body)
        return self._make_request("PUT", "/api/v1/objects", json=obj)


def load_documents(filename: str):
    """Load one or more objects from a YAML or JSON file"""
    with open(filename, "r") as f:
        if filename.endswith(".json"):
            data = json.load(f)
            return data if isinstance(data, list) else [data]
        return [doc for doc in yaml.safe_load_all(f) if doc]


def format_addresses(status: dict) -> str:
    return ",".join(a.get("address", "") for a in status.get("addresses") or [])


@click.group()
@click.option("--server", "-s", default=API_BASE_URL, help="API server URL")
@click.pass_context
def cli(ctx, server):
    """Machine Controller CLI - kubectl-like interface for machines"""
    ctx.obj = MachineControllerCLI(server)


@cli.command()
@click.option(
    "--filename", "-f", type=click.Path(exists=True), required=True, help="File"
)
@click.pass_obj
def apply(client, filename):
    """Apply machines and provider objects from a YAML/JSON file"""
    for obj in load_documents(filename):
        kind = obj.get("kind", "?")
        name = (obj.get("metadata") or {}).get("name", "?")
        if client.apply(obj) is not None:
            click.echo(f"{kind.lower()}/{name} applied")


@cli.command()
@click.option("--namespace", "-n", default=None, help="Namespace (default: all)")
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "wide"]), default="table"
)
@click.pass_obj
def get(client, namespace, output):
    """List machines"""
    params = {"namespace": namespace} if namespace else {}
    result = client._make_request("GET", "/api/v1/machines", params=params)
    if result is None:
        return

    if output == "json":
        click.echo(json.dumps(result, indent=2))
        return

    headers = ["NAMESPACE", "NAME", "PHASE", "READY", "PROVIDERID"]
    if output == "wide":
        headers += ["ADDRESSES", "FINALIZERS"]

    rows = []
    for machine in result:
        metadata = machine.get("metadata", {})
        status = machine.get("status", {})
        row = [
            metadata.get("namespace"),
            metadata.get("name"),
            status.get("phase", ""),
            "✓" if status.get("ready") else "✗",
            status.get("providerID", ""),
        ]
        if output == "wide":
            row += [format_addresses(status), ",".join(metadata.get("finalizers", []))]
        rows.append(row)

    click.echo(tabulate(rows, headers=headers, tablefmt="plain"))


@cli.command()
@click.argument("name")
@click.option("--namespace", "-n", default="default", help="Namespace")
@click.option("--output", "-o", type=click.Choice(["json", "yaml"]), default="yaml")
@click.pass_obj
def describe(client, name, namespace, output):
    """Describe a machine"""
    result = client._make_request(
        "GET", f"/api/v1/namespaces/{namespace}/machines/{name}"
    )

    if result:
        if output == "yaml":
            click.echo(yaml.safe_dump(result, default_flow_style=False))
        else:
            click.echo(json.dumps(result, indent=2))


@cli.command()
@click.argument("name")
@click.option("--namespace", "-n", default="default", help="Namespace")
@click.confirmation_option(prompt="Are you sure you want to delete this machine?")
@click.pass_obj
def delete(client, name, namespace):
    """Delete a machine (its provider objects are deleted first)"""
    result = client._make_request(
        "DELETE", f"/api/v1/namespaces/{namespace}/machines/{name}"
    )

    if result:
        click.echo(result.get("message", "Machine marked for deletion"))


@cli.command("delete-object")
@click.argument("api_version")
@click.argument("kind")
@click.argument("name")
@click.option("--namespace", "-n", default="default", help="Namespace")
@click.pass_obj
def delete_object(client, api_version, kind, name, namespace):
    """Delete a provider object, e.g. infrastructure.cluster.x-k8s.io/v1alpha2 DockerMachine m1"""
    result = client._make_request(
        "DELETE", f"/apis/{api_version}/namespaces/{namespace}/{kind}/{name}"
    )

    if result:
        click.echo(result.get("message", "Object marked for deletion"))


@cli.command()
@click.argument("name")
@click.option("--namespace", "-n", default="default", help="Namespace")
@click.option("--follow", "-f", is_flag=True, help="Follow status updates")
@click.option("--interval", "-i", default=5, help="Polling interval in seconds")
@click.pass_obj
def status(client, name, namespace, follow, interval):
    """Show status of a machine"""

    def show_status():
        result = client._make_request(
            "GET", f"/api/v1/namespaces/{namespace}/machines/{name}"
        )
        if not result:
            return False
        machine_status = result.get("status", {})
        metadata = result.get("metadata", {})
        click.echo(f"Machine: {namespace}/{name}")
        click.echo(f"Phase: {machine_status.get('phase', 'N/A')}")
        click.echo(f"Ready: {machine_status.get('ready', False)}")
        click.echo(f"Bootstrap Ready: {machine_status.get('bootstrapReady', False)}")
        click.echo(f"Provider ID: {machine_status.get('providerID', 'N/A')}")
        click.echo(f"Addresses: {format_addresses(machine_status) or 'N/A'}")
        if machine_status.get("failureReason") or machine_status.get("failureMessage"):
            click.echo(
                f"Failure: {machine_status.get('failureReason', '')} "
                f"{machine_status.get('failureMessage', '')}".rstrip()
            )
        if metadata.get("deletionTimestamp"):
            click.echo(f"Deleting since: {metadata['deletionTimestamp']}")
            click.echo(f"Finalizers: {', '.join(metadata.get('finalizers', []))}")
        return True

    if not show_status():
        return

    if follow:
        try:
            while True:
                time.sleep(interval)
                click.clear()
                if not show_status():
                    break
        except KeyboardInterrupt:
            click.echo("\nStopped following")


@cli.command()
@click.option("--kind", "-k", default=None, help="Only events for this kind")
@click.option("--namespace", "-n", default=None, help="Only events in this namespace")
@click.pass_obj
def watch(client, kind, namespace):
    """Stream object events"""
    params = {k: v for k, v in (("kind", kind), ("namespace", namespace)) if v}
    try:
        with requests.get(
            f"{client.base_url}/api/v1/events", params=params, stream=True
        ) as response:
            response.raise_for_status()
            for line in response.iter_lines(decode_unicode=True):
                if not line or not line.startswith("data: "):
                    continue
                event = json.loads(line[len("data: ") :])
                click.echo(
                    f"{event['timestamp']} {event['event_type']:<9} "
                    f"{event['kind']} {event['namespace']}/{event['name']}"
                )
    except requests.exceptions.RequestException as e:
        click.echo(f"Error: {e}", err=True)
    except KeyboardInterrupt:
        click.echo("\nStopped watching")


if __name__ == "__main__":
    cli()
