# Generated migration for Workspace and EvidenceSource models

from django.db import migrations, models
import django.db.models.deletion
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='Workspace',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(help_text='Display name (unique)', max_length=255, unique=True)),
                ('description', models.TextField(blank=True, default='', help_text='Optional description')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'workspaces',
                'ordering': ['created_at'],
            },
        ),
        migrations.CreateModel(
            name='EvidenceSource',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(help_text='Human-readable name derived from the URL or file name', max_length=255)),
                ('kind', models.CharField(choices=[('url', 'Web page'), ('pdf', 'PDF document'), ('csv', 'CSV file'), ('txt', 'Text file')], help_text='Kind of ingested item', max_length=10)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('workspace', models.ForeignKey(help_text='Owning workspace', on_delete=django.db.models.deletion.CASCADE, related_name='sources', to='workspaces.workspace')),
            ],
            options={
                'db_table': 'evidence_sources',
                'ordering': ['-created_at'],
            },
        ),
        migrations.AddIndex(
            model_name='evidencesource',
            index=models.Index(fields=['workspace', 'created_at'], name='evidence_so_workspa_1c2f4e_idx'),
        ),
    ]
