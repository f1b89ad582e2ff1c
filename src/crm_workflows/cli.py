"""
CRM workflow engine CLI
"""
import click
import asyncio
import json
import logging
from pathlib import Path

from .config import Settings
from .core.parser import WorkflowParser
from .exceptions import WorkflowParseError
from .runtime import build_runtime, build_in_memory_runtime


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


@click.group()
@click.option('--log-level', default='INFO', help='Logging level')
def cli(log_level):
    """CRM workflow engine CLI"""
    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)


@cli.command()
@click.option('--host', default=None, help='Host to bind to (API_HOST)')
@click.option('--port', default=None, type=int, help='Port to bind to (API_PORT)')
@click.option('--reload', is_flag=True, help='Enable auto-reload')
def serve(host, port, reload):
    """Start the API server"""
    import uvicorn

    settings = Settings.from_env()
    host = host or settings.api_host
    port = port or settings.api_port

    click.echo(f"Starting API server on {host}:{port}")
    uvicorn.run(
        "crm_workflows.api:app",
        host=host,
        port=port,
        reload=reload or settings.api_reload
    )


def _load_workflow(workflow_file):
    try:
        workflow = WorkflowParser().parse_file(workflow_file)
    except WorkflowParseError as e:
        raise click.ClickException(str(e))

    errors = workflow.validate()
    if errors:
        raise click.ClickException("Invalid workflow:\n  " + "\n  ".join(errors))
    return workflow


@cli.command()
@click.argument('workflow_file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
def validate(workflow_file):
    """Parse and validate a workflow file"""
    workflow = _load_workflow(workflow_file)
    click.echo(
        f"Workflow '{workflow.name or workflow.id}' is valid: "
        f"{len(workflow.nodes)} nodes, {len(workflow.edges)} edges, "
        f"trigger event {workflow.trigger_event() or '-'}"
    )


@cli.command()
@click.argument('workflow_file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--context', 'context_json', default='{}', help='Trigger context as JSON')
@click.option('--fast-forward', is_flag=True, help='Resume wait nodes immediately instead of stopping')
def run(workflow_file, context_json, fast_forward):
    """Run a workflow in memory with logging capabilities"""
    workflow = _load_workflow(workflow_file)
    try:
        context = json.loads(context_json)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint='--context')

    async def _run():
        runtime = build_in_memory_runtime(Settings.from_env())
        try:
            await runtime.workflow_store.save(workflow)
            execution = await runtime.coordinator.start(workflow.id, context)

            while fast_forward and not execution.is_terminal_state():
                pending = await runtime.continuation_store.list_for_execution(execution.id)
                if not pending:
                    break
                await runtime.scheduler.tick(now=max(c.run_at for c in pending))
                execution = await runtime.execution_store.get(execution.id)

            pending = await runtime.continuation_store.list_for_execution(execution.id)
            return {
                "execution": execution.to_dict(),
                "pending_continuations": [
                    {"next_node_id": c.next_node_id, "run_at": c.run_at.isoformat()}
                    for c in pending
                ],
                "emails_sent": runtime.email_sender.sent,
                "sms_sent": runtime.sms_sender.sent,
                "tasks_created": runtime.task_store.tasks,
            }
        finally:
            await runtime.close()

    result = asyncio.run(_run())
    click.echo(json.dumps(result, indent=2, default=str))


@cli.command()
@click.option('--interval', default=None, type=float, help='Seconds between ticks (SCHEDULER_INTERVAL_SECONDS)')
@click.option('--once', is_flag=True, help='Run a single tick and exit')
def scheduler(interval, once):
    """Run the continuation scheduler against DATABASE_URL"""
    settings = Settings.from_env()
    if interval:
        settings.scheduler_interval = interval

    async def _run():
        runtime = await build_runtime(settings)
        try:
            if once:
                resumed = await runtime.scheduler.tick()
                click.echo(f"Resumed {resumed} continuation(s)")
                return

            await runtime.scheduler.start()
            click.echo(f"Scheduler running every {settings.scheduler_interval}s, Ctrl+C to stop")
            await asyncio.Event().wait()
        finally:
            await runtime.close()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        click.echo("Scheduler stopped")


def main():
    """Main entry point"""
    cli()


if __name__ == '__main__':
    main()
