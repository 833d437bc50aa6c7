"""Command line entry point for doiflow."""

import json
import logging
import sys
from typing import Callable, Optional

import click

from doiflow.__version__ import __version__
from doiflow.db.association_store import AssociationStoreError, JSONAssociationStore
from doiflow.lifecycle.events import DOIEvents, attach_audit_logger
from doiflow.lifecycle.manager import DOILifecycleManager, OperationResult
from doiflow.metadata.content import ContentItemNotFoundError, JSONContentSource
from doiflow.utils.config import ConfigurationError, ServiceConfig


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None):
    """Configure logging for the application."""
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


def _run(action: Callable[[str], OperationResult], item_id: str):
    try:
        result = action(item_id)
    except ContentItemNotFoundError as e:
        raise click.ClickException(str(e))
    except AssociationStoreError as e:
        logging.getLogger(__name__).error(f"Association for item {item_id} not saved after remote success: {e}")
        raise click.ClickException(
            f"Die Operation war beim DOI-Dienst erfolgreich, aber die lokale Zuordnung "
            f"konnte nicht gespeichert werden: {e}"
        )

    click.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    if not result.is_success:
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option('--env-file', type=click.Path(exists=True, dir_okay=False), help='.env file with DOIFLOW_* settings')
@click.option('--items', 'items_path', type=click.Path(exists=True, dir_okay=False), required=True,
              help='JSON file with content items')
@click.option('--store', 'store_path', type=click.Path(dir_okay=False), default='doi_associations.json',
              show_default=True, help='JSON file with DOI associations')
@click.option('--log-file', type=click.Path(dir_okay=False), help='Also write the log to this file')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def main(ctx, env_file, items_path, store_path, log_file, verbose):
    """
    doiflow - manage DataCite DOIs for content items.

    Every command acts on a single content item.
    """
    setup_logging(logging.DEBUG if verbose else logging.INFO, log_file)
    logger = logging.getLogger(__name__)

    try:
        config = ServiceConfig.from_env(env_file)
        associations = JSONAssociationStore(store_path)
    except (ConfigurationError, AssociationStoreError) as e:
        logger.error(f"Startup failed: {e}")
        raise click.ClickException(str(e))

    events = DOIEvents()
    attach_audit_logger(events)

    ctx.obj = DOILifecycleManager.from_config(
        config,
        JSONContentSource(items_path),
        associations,
        events=events
    )
    logger.debug(f"doiflow {__version__} ready ({config.service_url})")


@main.command()
@click.argument('item_id')
@click.pass_obj
def inspect(manager: DOILifecycleManager, item_id):
    """Show DOI metadata and fields that differ from the item."""
    _run(manager.open_for_inspection, item_id)


@main.command()
@click.argument('item_id')
@click.pass_obj
def save(manager: DOILifecycleManager, item_id):
    """Create a draft DOI, or update the existing DOI's metadata."""
    _run(manager.save_metadata, item_id)


@main.command()
@click.argument('item_id')
@click.pass_obj
def create(manager: DOILifecycleManager, item_id):
    """Create a draft DOI for the item."""
    _run(manager.create_doi, item_id)


@main.command()
@click.argument('item_id')
@click.pass_obj
def update(manager: DOILifecycleManager, item_id):
    """Resubmit the item's metadata to its DOI."""
    _run(manager.update_doi, item_id)


@main.command()
@click.argument('item_id')
@click.pass_obj
def register(manager: DOILifecycleManager, item_id):
    """Move a draft DOI to registered (cannot be deleted afterwards)."""
    _run(manager.register_doi, item_id)


@main.command()
@click.argument('item_id')
@click.pass_obj
def publish(manager: DOILifecycleManager, item_id):
    """Make the DOI findable."""
    _run(manager.publish_doi, item_id)


@main.command()
@click.argument('item_id')
@click.pass_obj
def hide(manager: DOILifecycleManager, item_id):
    """Hide a findable DOI (back to registered)."""
    _run(manager.hide_doi, item_id)


@main.command()
@click.argument('item_id')
@click.confirmation_option(prompt='Delete this draft DOI permanently?')
@click.pass_obj
def delete(manager: DOILifecycleManager, item_id):
    """Delete a draft DOI."""
    _run(manager.delete_doi, item_id)


if __name__ == "__main__":
    main()
