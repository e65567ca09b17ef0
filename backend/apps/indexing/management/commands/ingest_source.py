"""
Django management command to ingest a file or URL into a workspace.

Usage:
    python manage.py ingest_source path/to/notes.pdf
    python manage.py ingest_source https://example.com/docs --workspace <uuid>
"""
import mimetypes
import uuid
from pathlib import Path

from asgiref.sync import async_to_sync
from django.core.management.base import BaseCommand, CommandError

from apps.indexing.ingest import IngestionError, ingest_file, ingest_url
from apps.workspaces.models import Workspace
from apps.workspaces.services import get_or_create_default_workspace


class Command(BaseCommand):
    help = 'Ingest a local file (.pdf, .csv, .txt) or a URL as an evidence source'

    def add_arguments(self, parser):
        parser.add_argument('target', help='File path or http(s) URL')
        parser.add_argument(
            '--workspace',
            help='Workspace id (defaults to the default workspace)',
        )

    def handle(self, *args, **options):
        target = options['target']

        if options['workspace']:
            try:
                uuid.UUID(options['workspace'])
            except ValueError:
                raise CommandError(f"Invalid workspace id: {options['workspace']}")
            if not Workspace.objects.filter(id=options['workspace']).exists():
                raise CommandError(f"Workspace {options['workspace']} not found")
            workspace_id = options['workspace']
        else:
            workspace_id = str(async_to_sync(get_or_create_default_workspace)().id)

        try:
            if target.startswith(('http://', 'https://')):
                self.stdout.write(f'Crawling {target}...')
                result = async_to_sync(ingest_url)(workspace_id, target)
            else:
                path = Path(target)
                if not path.is_file():
                    raise CommandError(f'No such file: {target}')
                content_type, _ = mimetypes.guess_type(path.name)
                self.stdout.write(f'Ingesting {path.name}...')
                result = async_to_sync(ingest_file)(
                    workspace_id, path.name, content_type or '', path.read_bytes()
                )
        except IngestionError as e:
            raise CommandError(str(e))

        self.stdout.write(self.style.SUCCESS(
            f'Stored source {result.source.id} ("{result.source.name}") '
            f'with {result.chunk_count} chunks'
        ))
