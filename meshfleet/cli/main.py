"""Operator CLI for a mesh fleet."""

import json
import logging
import sys

import click
import requests

from ..agent.client import CoordinatorClient
from ..config import LOG_FORMAT, CoordinatorSettings, NodeSettings
from ..models import CommandType, NodeAction

logger = logging.getLogger(__name__)


@click.group()
@click.option('--url', default='http://127.0.0.1:3000', show_default=True,
              envvar='MESHFLEET_URL', help='Coordinator base URL')
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, url, debug):
    """Mesh Fleet CLI - query and operate a fleet coordinator."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT
    )
    ctx.ensure_object(dict)
    ctx.obj['client'] = CoordinatorClient(url)


def _call(fn, *args, **kwargs):
    """Call the coordinator, turning transport errors into a CLI error."""
    try:
        return fn(*args, **kwargs)
    except requests.HTTPError as e:
        try:
            message = e.response.json().get('error', str(e))
        except ValueError:
            message = str(e)
        raise click.ClickException(message)
    except requests.RequestException as e:
        raise click.ClickException(f"Coordinator unreachable: {e}")


@cli.command()
@click.pass_context
def status(ctx):
    """Show coordinator status."""
    data = _call(ctx.obj['client'].get_status)
    coordinator = data.get('coordinator', {})
    nodes = data.get('nodes', {})

    click.echo("=== Coordinator ===\n")
    click.echo(f"Address:  {coordinator.get('address')}")
    click.echo(f"Version:  {coordinator.get('version')}")
    click.echo(f"Uptime:   {coordinator.get('uptime', 0):.0f}s")
    click.echo(f"Clients:  {coordinator.get('clientCount', 0)}")
    click.echo(f"\nNodes ({nodes.get('total', 0)}):")
    for key in ('online', 'warning', 'offline', 'error', 'blocked'):
        click.echo(f"  {key:<8} {nodes.get(key, 0)}")


@cli.command()
@click.option('--json', 'as_json', is_flag=True, help='Print raw JSON')
@click.pass_context
def nodes(ctx, as_json):
    """List known nodes."""
    data = _call(ctx.obj['client'].get_nodes)
    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    if not data:
        click.echo("No nodes known")
        return

    for node in data:
        name = node.get('info', {}).get('hostname', '')
        click.echo(f"{node['id']:<20} {node['address']:<18} {node['status']:<8} {name}")


@cli.command()
@click.option('--performance', 'minutes', type=float, default=None,
              help='Show the performance window over this many minutes')
@click.pass_context
def stats(ctx, minutes):
    """Show the latest stats snapshot."""
    client = ctx.obj['client']
    if minutes is not None:
        data = _call(client.get_performance, minutes)
        if data is None:
            click.echo("No samples in window")
            return
    else:
        data = _call(client.get_stats)
    click.echo(json.dumps(data, indent=2))


@cli.command()
@click.argument('node_id')
@click.argument('action', type=click.Choice([a.value for a in NodeAction]))
@click.pass_context
def action(ctx, node_id, action):
    """Run ACTION on NODE_ID."""
    data = _call(ctx.obj['client'].node_action, node_id, action)
    result = data.get('result')
    if action == NodeAction.RESTART.value:
        click.echo("Restart is advisory; queue a restart command to reach the node.")
    click.echo(f"✓ {action} {node_id}: {json.dumps(result)}")


@cli.command()
@click.argument('node_id')
@click.argument('command_type', type=click.Choice([c.value for c in CommandType]))
@click.option('--interval', type=int, help='Heartbeat interval in milliseconds (update_config)')
@click.option('--max-failures', type=int, help='Failures before rediscovery (update_config)')
@click.pass_context
def command(ctx, node_id, command_type, interval, max_failures):
    """Queue COMMAND_TYPE for NODE_ID's next heartbeat."""
    config = {}
    if interval is not None:
        config['heartbeatInterval'] = interval
    if max_failures is not None:
        config['maxFailures'] = max_failures

    _call(ctx.obj['client'].queue_command, node_id, command_type, config)
    click.echo(f"✓ Queued {command_type} for {node_id}")


@cli.command()
@click.option('--host', help='Host to bind to')
@click.option('--port', type=int, help='HTTP port')
@click.option('--realtime-port', type=int, help='Websocket port')
@click.option('--coordinator-address', help='Coordinator mesh address')
def coordinator(host, port, realtime_port, coordinator_address):
    """Run a coordinator in the foreground."""
    from ..coordinator.service import run

    overrides = {
        'host': host,
        'port': port,
        'realtime_port': realtime_port,
        'coordinator_address': coordinator_address,
    }
    settings = CoordinatorSettings(**{k: v for k, v in overrides.items() if v is not None})
    sys.exit(run(settings))


@cli.command()
@click.option('--coordinator', 'candidates', multiple=True, help='Coordinator address or URL')
@click.option('--node-id', help='Node ID')
@click.option('--interval', type=float, help='Heartbeat interval in seconds')
def node(candidates, node_id, interval):
    """Run a node agent in the foreground."""
    from ..agent.heartbeat import run

    overrides = {
        'coordinator_candidates': list(candidates) or None,
        'node_id': node_id,
        'heartbeat_interval': interval,
    }
    settings = NodeSettings(**{k: v for k, v in overrides.items() if v is not None})
    sys.exit(run(settings))


def main():
    """Entry point for CLI."""
    cli()


if __name__ == '__main__':
    main()
