"""
Approval Engine CLI
"""
import asyncio
import json
import logging

import click
from dotenv import load_dotenv

from .config import load_settings
from .core.loader import TemplateLoader
from .core.validator import validate_template
from .exceptions import WorkflowEngineError
from .services import open_services


def _configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def _run(coro):
    try:
        return asyncio.run(coro)
    except WorkflowEngineError as e:
        raise click.ClickException(str(e))


@click.group()
@click.option('--config', 'config_path', default=None, help='Path to a workflow.yaml settings file')
@click.pass_context
def cli(ctx, config_path):
    """Approval Engine CLI"""
    load_dotenv()
    settings = load_settings(config_path)
    _configure_logging(settings.log_level)
    ctx.obj = settings


@cli.command()
@click.option('--host', default=None, help='Host to bind to')
@click.option('--port', default=None, type=int, help='Port to bind to')
@click.pass_obj
def serve(settings, host, port):
    """Start the API server"""
    import uvicorn
    from .api.app import create_app

    host = host or settings.api_host
    port = port or settings.api_port
    click.echo(f"Starting API server on {host}:{port}")
    uvicorn.run(create_app(settings), host=host, port=port, log_level=settings.log_level.lower())


@cli.command('init-db')
@click.pass_obj
def init_db(settings):
    """Create the database schema"""
    async def _init():
        services = await open_services(settings, create_tables=True)
        await services.close()

    _run(_init())
    click.echo("Database schema created")


@cli.command()
@click.argument('template_file', type=click.Path(exists=True, dir_okay=False))
def validate(template_file):
    """Validate a template definition file without storing it"""
    try:
        template = TemplateLoader().parse(template_file)
    except WorkflowEngineError as e:
        raise click.ClickException(str(e))

    result = validate_template(template)
    if result.is_valid:
        click.echo(f"Template '{template.name}' is valid ({len(template.steps)} steps)")
        return

    for issue in result.errors:
        click.echo(f"{issue.code}: {issue.message}", err=True)
    raise click.ClickException(f"Template '{template.name}' has {len(result.errors)} error(s)")


@cli.command()
@click.argument('template_file', type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def load(settings, template_file):
    """Store a template definition file in the database"""
    loader = TemplateLoader()

    async def _load():
        template = loader.parse(template_file)
        services = await open_services(settings)
        try:
            template_id = await loader.install(template, services.template_store)
            result = await services.template_store.validate_template(template_id)
            return template_id, result
        finally:
            await services.close()

    template_id, result = _run(_load())
    click.echo(f"Created template: {template_id}")
    if not result.is_valid:
        click.echo(f"Warning: template fails validation: {sorted(result.codes())}", err=True)


@cli.command()
@click.pass_obj
def sweep(settings):
    """Run a single timeout sweep"""
    async def _sweep():
        services = await open_services(settings)
        try:
            return await services.sweeper.sweep_once()
        finally:
            await services.close()

    report = _run(_sweep())
    click.echo(json.dumps(report.to_dict(), indent=2))


@cli.command()
@click.argument('template_id')
@click.option('--bottlenecks', is_flag=True, help='Also report slow steps')
@click.option('--threshold', type=float, default=None, help='Multiple of the median dwell time')
@click.pass_obj
def metrics(settings, template_id, bottlenecks, threshold):
    """Print completion metrics of a template"""
    async def _metrics():
        services = await open_services(settings)
        try:
            output = {"metrics": (await services.analyzer.get_metrics(template_id)).to_dict()}
            if bottlenecks:
                report = await services.analyzer.get_bottlenecks(template_id, threshold=threshold)
                output["bottlenecks"] = report.to_dict()
            return output
        finally:
            await services.close()

    click.echo(json.dumps(_run(_metrics()), indent=2, default=str))


def main():
    """Main entry point"""
    cli()


if __name__ == '__main__':
    main()
