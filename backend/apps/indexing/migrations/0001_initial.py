# Generated migration for EvidenceChunk

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import pgvector.django
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('workspaces', '0001_initial'),
    ]

    operations = [
        pgvector.django.VectorExtension(),
        migrations.CreateModel(
            name='EvidenceChunk',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('content', models.TextField(help_text='The text content of this chunk')),
                ('embedding', pgvector.django.VectorField(dimensions=getattr(settings, 'EMBEDDING_DIMENSION', 768), help_text='Vector embedding of the chunk content')),
                ('metadata', models.JSONField(blank=True, default=dict, help_text='Free-form metadata copied into citations')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('source', models.ForeignKey(help_text='The source this chunk was cut from', on_delete=django.db.models.deletion.CASCADE, related_name='chunks', to='workspaces.evidencesource')),
            ],
            options={
                'db_table': 'evidence_chunks',
                'ordering': ['created_at', 'id'],
            },
        ),
        migrations.AddIndex(
            model_name='evidencechunk',
            index=models.Index(fields=['source', 'created_at'], name='evidence_ch_source__8d1e2a_idx'),
        ),
    ]
